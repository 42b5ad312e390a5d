from timesup import db
import json


class SessionSnapshot(db.Model):
    """The persisted session tuple, one row per snapshot name."""
    __tablename__ = 'session_snapshot'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False, index=True)
    payload = db.Column(db.Text, nullable=False)  # JSON-encoded snapshot
    updated_at = db.Column(db.Float, nullable=True)

    def to_dict(self):
        return {
            'name': self.name,
            'snapshot': json.loads(self.payload) if self.payload else None,
            'updated_at': self.updated_at,
        }

"""Write-through snapshot storage for reload recovery."""
import json
import logging
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from timesup import db
from timesup.models import SessionSnapshot

logger = logging.getLogger(__name__)


class SnapshotRepository:
    """Stores the whole session tuple as one named JSON record.

    Must be used inside an application context.
    """

    def __init__(self, name: str):
        self.name = name

    def save(self, snapshot: dict) -> None:
        try:
            row = SessionSnapshot.query.filter_by(name=self.name).first()
            if not row:
                row = SessionSnapshot(name=self.name)
            row.payload = json.dumps(snapshot)
            row.updated_at = time.time()
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error(f"[snapshot-save] name={self.name} failed: {exc}")

    def load(self) -> Optional[dict]:
        try:
            row = SessionSnapshot.query.filter_by(name=self.name).first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning(f"[snapshot-load] name={self.name} unavailable: {exc}")
            return None
        if not row:
            return None
        try:
            snapshot = json.loads(row.payload)
        except ValueError as exc:
            logger.warning(f"[snapshot-load] name={self.name} corrupt payload: {exc}")
            return None
        return snapshot if isinstance(snapshot, dict) else None

    def clear(self) -> None:
        SessionSnapshot.query.filter_by(name=self.name).delete()
        db.session.commit()

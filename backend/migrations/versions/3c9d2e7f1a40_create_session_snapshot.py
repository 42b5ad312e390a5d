"""create session_snapshot

Revision ID: 3c9d2e7f1a40
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9d2e7f1a40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'session_snapshot' in set(insp.get_table_names()):
        return
    op.create_table(
        'session_snapshot',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_session_snapshot_name'), 'session_snapshot', ['name'], unique=True)


def downgrade():
    op.drop_index(op.f('ix_session_snapshot_name'), table_name='session_snapshot')
    op.drop_table('session_snapshot')

"""add_violation_lookup_index

Duplicate detection reads a session's recent violations by type and
client timestamp on every batch.

Revision ID: 8d41e6b0c2f5
Revises: 3f9c1d2a7b10
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "8d41e6b0c2f5"
down_revision: Union[str, Sequence[str], None] = "3f9c1d2a7b10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute(sa.text(
        "CREATE INDEX IF NOT EXISTS idx_proctoring_logs_recent "
        "ON proctoring_logs(session_id, timestamp_ms)"
    ))
    op.execute(sa.text(
        "CREATE INDEX IF NOT EXISTS idx_proctoring_logs_type "
        "ON proctoring_logs(session_id, violation_type, timestamp_ms)"
    ))


def downgrade() -> None:
    op.execute(sa.text("DROP INDEX IF EXISTS idx_proctoring_logs_type"))
    op.execute(sa.text("DROP INDEX IF EXISTS idx_proctoring_logs_recent"))

"""initial_schema_baseline

Creates every table from app/db/schema.sql.

Revision ID: 3f9c1d2a7b10
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from pathlib import Path

from alembic import op
import sqlalchemy as sa


revision: str = "3f9c1d2a7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "app" / "db" / "schema.sql"


def _adapt_sql(sql: str, dialect_name: str) -> str:
    """Adapt DDL for the target database dialect."""
    if dialect_name == "postgresql":
        sql = sql.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "SERIAL PRIMARY KEY")
    return sql


def _statements(schema_sql: str):
    for statement in schema_sql.split(";"):
        lines = [
            line for line in statement.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        cleaned = "\n".join(lines).strip()
        if cleaned:
            yield cleaned


def upgrade() -> None:
    """Run schema.sql statement by statement (CREATE ... IF NOT EXISTS throughout)."""
    dialect_name = op.get_bind().dialect.name
    for statement in _statements(SCHEMA_PATH.read_text()):
        op.execute(sa.text(_adapt_sql(statement, dialect_name)))


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    tables = [
        "proctoring_logs",
        "proctoring_sessions",
        "answers",
        "candidate_assessments",
        "section_questions",
        "sections",
        "assessments",
        "questions",
        "candidates",
        "agents",
    ]
    for table in tables:
        op.execute(sa.text(f"DROP TABLE IF EXISTS {table}"))

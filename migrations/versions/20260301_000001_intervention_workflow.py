"""Intervention workflow schema from intervention_engine.db

Revision ID: 20260301_000001
Revises:
Create Date: 2026-03-01 00:00:01
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from intervention_engine.db import _SCHEMA, _column_types


# revision identifiers, used by Alembic.
revision: str = "20260301_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _resolve_backend(connection: Connection) -> str:
    dialect = (connection.dialect.name or "").lower()
    if dialect.startswith("postgres"):
        return "postgres"
    return "sqlite"


def upgrade() -> None:
    connection = op.get_bind()
    types = _column_types(_resolve_backend(connection))
    for statement in _SCHEMA:
        connection.exec_driver_sql(statement.format(**types))


def downgrade() -> None:
    tables = [
        "status_events",
        "closure_artifacts",
        "time_slot_responses",
        "time_slots",
        "quotes",
        "quote_requests",
        "intervention_assignments",
        "interventions",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table}")

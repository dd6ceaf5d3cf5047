"""Base schema: properties, users and roles, corporate accounts, guests, rooms,
reservations, outbox.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-09-28
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "001_initial.sql"

# Reverse dependency order
_TABLES = (
    "outbox_events",
    "reservations",
    "rooms",
    "guests",
    "corporate_accounts",
    "user_property_roles",
    "users",
    "properties",
)


def upgrade() -> None:
    # CREATE EXTENSION must run as a single driver-level statement batch.
    conn = op.get_bind()
    conn.exec_driver_sql(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    conn = op.get_bind()
    for table in _TABLES:
        conn.exec_driver_sql(f"DROP TABLE IF EXISTS {table};")

"""Folio ledger: folios, append-only folio_items, folio_payments, tax_configurations.

Revision ID: 002_folio_ledger
Revises: 001_initial_schema
Create Date: 2026-09-30
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "002_folio_ledger"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "002_folio_ledger.sql"


def upgrade() -> None:
    # DO/$$ function bodies need the driver-level executor.
    conn = op.get_bind()
    conn.exec_driver_sql(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP TABLE IF EXISTS tax_configurations;")
    conn.exec_driver_sql("DROP TABLE IF EXISTS folio_payments;")
    conn.exec_driver_sql("DROP TRIGGER IF EXISTS trg_folio_items_append_only ON folio_items;")
    conn.exec_driver_sql("DROP FUNCTION IF EXISTS folio_items_append_only();")
    conn.exec_driver_sql("DROP TABLE IF EXISTS folio_items;")
    conn.exec_driver_sql("DROP TABLE IF EXISTS folios;")
    conn.exec_driver_sql("DROP TABLE IF EXISTS folio_counters;")

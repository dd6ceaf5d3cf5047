"""Night audit records, sealed once completed.

Revision ID: 003_night_audit
Revises: 002_folio_ledger
Create Date: 2026-10-02
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "003_night_audit"
down_revision = "002_folio_ledger"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "003_night_audit.sql"


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP TRIGGER IF EXISTS trg_night_audits_sealed ON night_audits;")
    conn.exec_driver_sql("DROP FUNCTION IF EXISTS night_audits_sealed();")
    conn.exec_driver_sql("DROP TABLE IF EXISTS night_audits;")

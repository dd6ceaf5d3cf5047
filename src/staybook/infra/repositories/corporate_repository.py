"""Corporate accounts repository.

Uses raw SQL with psycopg2 (no ORM). The account's current balance is only
changed while its row is locked.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.corporate import CorporateAccount
from staybook.infra.db import for_update

_ACCOUNT_SELECT = """
    SELECT id, property_id, company_name, account_code, current_balance_cents,
           credit_limit_cents, payment_terms, is_active
    FROM corporate_accounts
    WHERE property_id = %s AND id = %s
"""


def _account_row(row: tuple) -> CorporateAccount:
    return CorporateAccount(
        id=str(row[0]),
        property_id=row[1],
        company_name=row[2],
        account_code=row[3],
        current_balance_cents=row[4],
        credit_limit_cents=row[5],
        payment_terms=row[6],
        is_active=row[7],
    )


def get_account(cur: PgCursor, *, property_id: str, account_id: str) -> CorporateAccount | None:
    cur.execute(_ACCOUNT_SELECT, (property_id, account_id))
    row = cur.fetchone()
    return _account_row(row) if row else None


def lock_account(cur: PgCursor, *, property_id: str, account_id: str) -> CorporateAccount | None:
    """SELECT ... FOR UPDATE on a corporate account (before any balance change)."""
    row = for_update(cur, _ACCOUNT_SELECT, (property_id, account_id))
    return _account_row(row) if row else None


def apply_balance_delta(cur: PgCursor, *, account_id: str, delta_cents: int) -> int:
    """Add delta_cents to the current balance.

    Returns:
        The new current balance.
    """
    cur.execute(
        """
        UPDATE corporate_accounts
        SET current_balance_cents = current_balance_cents + %s,
            updated_at = now()
        WHERE id = %s
        RETURNING current_balance_cents
        """,
        (delta_cents, account_id),
    )
    return cur.fetchone()[0]


def linked_guest_ids(
    cur: PgCursor,
    *,
    property_id: str,
    account_id: str,
    guest_ids: list[str],
) -> set[str]:
    """The subset of guest_ids that belong to the account."""
    if not guest_ids:
        return set()
    cur.execute(
        """
        SELECT id FROM guests
        WHERE property_id = %s
          AND corporate_account_id = %s
          AND id::text = ANY(%s)
        """,
        (property_id, account_id, list(guest_ids)),
    )
    return {str(r[0]) for r in cur.fetchall()}


def list_outstanding_folios(
    cur: PgCursor,
    *,
    property_id: str,
    account_id: str,
) -> list[dict[str, Any]]:
    """Open folios with a positive balance whose guest belongs to the account."""
    cur.execute(
        """
        SELECT f.id, f.folio_number, f.guest_id, f.reservation_id,
               f.total_cents, f.paid_cents, f.balance_cents, f.created_at
        FROM folios f
        JOIN guests g ON g.id = f.guest_id
        WHERE f.property_id = %s
          AND g.corporate_account_id = %s
          AND f.status = 'open'
          AND f.balance_cents > 0
        ORDER BY f.created_at
        """,
        (property_id, account_id),
    )
    return [
        {
            "folio_id": str(r[0]),
            "folio_number": r[1],
            "guest_id": str(r[2]) if r[2] else None,
            "reservation_id": str(r[3]) if r[3] else None,
            "total_cents": r[4],
            "paid_cents": r[5],
            "balance_cents": r[6],
            "created_at": r[7].isoformat(),
        }
        for r in cur.fetchall()
    ]

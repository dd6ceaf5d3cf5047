"""Folio payments repository — payments, refunds and their soft voids.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.folio import PaymentLine
from staybook.infra.db import for_update

_PAYMENT_COLUMNS = """
    id, folio_id, property_id, kind, amount_cents, method, reference_number,
    notes, corporate_account_id, corporate_direction, voided, voided_at,
    voided_by, void_reason, recorded_by, created_at
"""


def _payment_row(row: tuple) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "folio_id": str(row[1]),
        "property_id": row[2],
        "kind": row[3],
        "amount_cents": row[4],
        "method": row[5],
        "reference_number": row[6],
        "notes": row[7],
        "corporate_account_id": str(row[8]) if row[8] else None,
        "corporate_direction": row[9],
        "voided": row[10],
        "voided_at": row[11].isoformat() if row[11] else None,
        "voided_by": row[12],
        "void_reason": row[13],
        "recorded_by": row[14],
        "created_at": row[15].isoformat() if hasattr(row[15], "isoformat") else str(row[15]),
    }


def insert_payment(
    cur: PgCursor,
    *,
    folio_id: str,
    property_id: str,
    kind: str,
    amount_cents: int,
    method: str,
    reference_number: str | None = None,
    notes: str | None = None,
    corporate_account_id: str | None = None,
    corporate_direction: str | None = None,
    recorded_by: str | None = None,
) -> dict[str, Any]:
    """Insert a payment or refund row.

    Args:
        cur: Database cursor (within transaction).
        folio_id: Folio UUID (already locked by the caller).
        property_id: Property identifier.
        kind: payment or refund.
        amount_cents: Positive amount in minor units.
        method: Payment method.
        corporate_account_id: Account the payment is attributed to, if any.
        corporate_direction: billed / received (required with an account).
        recorded_by: User who recorded it.

    Returns:
        Dict with the created payment fields.
    """
    cur.execute(
        f"""
        INSERT INTO folio_payments (
            folio_id, property_id, kind, amount_cents, method, reference_number,
            notes, corporate_account_id, corporate_direction, recorded_by
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING {_PAYMENT_COLUMNS}
        """,
        (
            folio_id,
            property_id,
            kind,
            amount_cents,
            method,
            reference_number,
            notes,
            corporate_account_id,
            corporate_direction,
            recorded_by,
        ),
    )
    return _payment_row(cur.fetchone())


def get_payment(cur: PgCursor, *, property_id: str, payment_id: str) -> dict[str, Any] | None:
    cur.execute(
        f"SELECT {_PAYMENT_COLUMNS} FROM folio_payments WHERE property_id = %s AND id = %s",
        (property_id, payment_id),
    )
    row = cur.fetchone()
    return _payment_row(row) if row else None


def lock_payment(cur: PgCursor, *, property_id: str, payment_id: str) -> dict[str, Any] | None:
    row = for_update(
        cur,
        f"SELECT {_PAYMENT_COLUMNS} FROM folio_payments WHERE property_id = %s AND id = %s",
        (property_id, payment_id),
    )
    return _payment_row(row) if row else None


def mark_payment_voided(
    cur: PgCursor,
    *,
    payment_id: str,
    voided_by: str | None,
    reason: str,
) -> dict[str, Any] | None:
    """Soft-void a payment.

    Returns:
        The updated payment, or None if it was already voided.
    """
    cur.execute(
        f"""
        UPDATE folio_payments
        SET voided = true,
            voided_at = now(),
            voided_by = %s,
            void_reason = %s,
            updated_at = now()
        WHERE id = %s AND voided = false
        RETURNING {_PAYMENT_COLUMNS}
        """,
        (voided_by, reason, payment_id),
    )
    row = cur.fetchone()
    return _payment_row(row) if row else None


def list_payments(cur: PgCursor, *, folio_id: str) -> list[dict[str, Any]]:
    cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM folio_payments
        WHERE folio_id = %s
        ORDER BY created_at, id
        """,
        (folio_id,),
    )
    return [_payment_row(r) for r in cur.fetchall()]


def payment_lines(cur: PgCursor, *, folio_id: str) -> list[PaymentLine]:
    """The (kind, amount, voided) projection used to derive totals."""
    cur.execute(
        """
        SELECT kind, amount_cents, voided
        FROM folio_payments
        WHERE folio_id = %s
        """,
        (folio_id,),
    )
    return [PaymentLine(kind=r[0], amount_cents=r[1], voided=r[2]) for r in cur.fetchall()]


def payments_on_date(
    cur: PgCursor,
    *,
    property_id: str,
    business_date: date,
    timezone: str,
) -> list[tuple[str, str, int]]:
    """(method, kind, amount_cents) per method and kind for non-voided
    payments recorded on a local calendar date."""
    cur.execute(
        """
        SELECT method, kind, COALESCE(SUM(amount_cents), 0)
        FROM folio_payments
        WHERE property_id = %s
          AND voided = false
          AND (created_at AT TIME ZONE %s)::date = %s
        GROUP BY method, kind
        """,
        (property_id, timezone, business_date),
    )
    return [(r[0], r[1], int(r[2])) for r in cur.fetchall()]


def corporate_payment_totals(
    cur: PgCursor,
    *,
    property_id: str,
    corporate_account_id: str,
) -> dict[str, int]:
    """Sum of non-voided attributed payments per direction."""
    cur.execute(
        """
        SELECT
            COALESCE(SUM(amount_cents) FILTER (WHERE corporate_direction = 'billed'), 0),
            COALESCE(SUM(amount_cents) FILTER (WHERE corporate_direction = 'received'), 0),
            COUNT(*)
        FROM folio_payments
        WHERE property_id = %s
          AND corporate_account_id = %s
          AND voided = false
        """,
        (property_id, corporate_account_id),
    )
    row = cur.fetchone()
    return {
        "billed_cents": int(row[0]),
        "received_cents": int(row[1]),
        "payment_count": row[2],
    }


def corporate_statement_lines(
    cur: PgCursor,
    *,
    property_id: str,
    corporate_account_id: str,
    start: date,
    end: date,
    timezone: str,
) -> list[dict[str, Any]]:
    """Attributed payments of an account recorded between two local dates
    (inclusive), newest first, with their folio and guest."""
    cur.execute(
        """
        SELECT p.id, p.folio_id, f.folio_number, p.amount_cents, p.method,
               p.corporate_direction, p.reference_number, p.notes, p.voided,
               p.created_at, f.reservation_id, r.confirmation_number,
               g.first_name, g.last_name
        FROM folio_payments p
        JOIN folios f ON f.id = p.folio_id
        LEFT JOIN guests g ON g.id = f.guest_id
        LEFT JOIN reservations r ON r.id = f.reservation_id
        WHERE p.property_id = %s
          AND p.corporate_account_id = %s
          AND (p.created_at AT TIME ZONE %s)::date BETWEEN %s AND %s
        ORDER BY p.created_at DESC, p.id
        """,
        (property_id, corporate_account_id, timezone, start, end),
    )
    return [
        {
            "payment_id": str(r[0]),
            "folio_id": str(r[1]),
            "folio_number": r[2],
            "amount_cents": r[3],
            "method": r[4],
            "direction": r[5],
            "reference_number": r[6],
            "notes": r[7],
            "voided": r[8],
            "created_at": r[9].isoformat(),
            "reservation_id": str(r[10]) if r[10] else None,
            "confirmation_number": r[11],
            "guest_name": f"{r[12]} {r[13]}" if r[12] else None,
        }
        for r in cur.fetchall()
    ]

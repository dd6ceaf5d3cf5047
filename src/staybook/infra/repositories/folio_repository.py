"""Folio repository — persistence for folios and their line items.

Uses raw SQL with psycopg2 (no ORM). Line items are only ever inserted;
corrections are new rows pointing at the row they reverse.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.folio import FolioTotals, LedgerLine
from staybook.infra.db import for_update

_FOLIO_COLUMNS = """
    id, property_id, guest_id, reservation_id, folio_number, status,
    subtotal_cents, tax_cents, service_charge_cents, total_cents,
    paid_cents, balance_cents, version, opened_by, closed_at, closed_by,
    created_at, updated_at
"""

_ITEM_COLUMNS = """
    fi.id, fi.folio_id, fi.item_type, fi.description, fi.quantity,
    fi.unit_price_cents, fi.amount_cents, fi.service_date, fi.parent_item_id,
    fi.reverses_item_id, fi.room_id, fi.tax_code, fi.tax_rate, fi.is_inclusive,
    fi.posted_by, fi.created_at,
    EXISTS (SELECT 1 FROM folio_items r WHERE r.reverses_item_id = fi.id) AS reversed
"""


def _iso(value: Any) -> str | None:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def _opt_str(value: Any) -> str | None:
    return str(value) if value is not None else None


def _folio_row(row: tuple) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "property_id": row[1],
        "guest_id": _opt_str(row[2]),
        "reservation_id": _opt_str(row[3]),
        "folio_number": row[4],
        "status": row[5],
        "subtotal_cents": row[6],
        "tax_cents": row[7],
        "service_charge_cents": row[8],
        "total_cents": row[9],
        "paid_cents": row[10],
        "balance_cents": row[11],
        "version": row[12],
        "opened_by": row[13],
        "closed_at": _iso(row[14]),
        "closed_by": row[15],
        "created_at": _iso(row[16]),
        "updated_at": _iso(row[17]),
    }


def _item_row(row: tuple) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "folio_id": str(row[1]),
        "item_type": row[2],
        "description": row[3],
        "quantity": row[4],
        "unit_price_cents": row[5],
        "amount_cents": row[6],
        "service_date": _iso(row[7]),
        "parent_item_id": _opt_str(row[8]),
        "reverses_item_id": _opt_str(row[9]),
        "room_id": _opt_str(row[10]),
        "tax_code": row[11],
        "tax_rate": str(row[12]) if row[12] is not None else None,
        "is_inclusive": row[13],
        "posted_by": row[14],
        "created_at": _iso(row[15]),
        "reversed": row[16],
    }


# ── Folios ───────────────────────────────────────────────


def next_folio_sequence(cur: PgCursor, *, property_id: str) -> int:
    """Allocate the next folio number sequence for a property.

    The counter row is locked by the upsert until the caller commits, so
    folio numbers are gap-free per property under concurrency.
    """
    cur.execute(
        """
        INSERT INTO folio_counters (property_id, last_value)
        VALUES (%s, 1)
        ON CONFLICT (property_id)
        DO UPDATE SET last_value = folio_counters.last_value + 1
        RETURNING last_value
        """,
        (property_id,),
    )
    return cur.fetchone()[0]


def insert_folio(
    cur: PgCursor,
    *,
    property_id: str,
    guest_id: str,
    reservation_id: str | None,
    folio_number: str,
    opened_by: str | None = None,
) -> dict[str, Any]:
    """Insert an open folio with zero totals.

    Returns:
        Dict with the created folio fields.
    """
    cur.execute(
        f"""
        INSERT INTO folios (property_id, guest_id, reservation_id, folio_number, opened_by)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING {_FOLIO_COLUMNS}
        """,
        (property_id, guest_id, reservation_id, folio_number, opened_by),
    )
    return _folio_row(cur.fetchone())


def get_folio(cur: PgCursor, *, property_id: str, folio_id: str) -> dict[str, Any] | None:
    cur.execute(
        f"SELECT {_FOLIO_COLUMNS} FROM folios WHERE property_id = %s AND id = %s",
        (property_id, folio_id),
    )
    row = cur.fetchone()
    return _folio_row(row) if row else None


def lock_folio(cur: PgCursor, *, property_id: str, folio_id: str) -> dict[str, Any] | None:
    """SELECT ... FOR UPDATE on a folio row.

    Every ledger mutation takes this lock first; it is held until the
    caller's transaction ends.
    """
    row = for_update(
        cur,
        f"SELECT {_FOLIO_COLUMNS} FROM folios WHERE property_id = %s AND id = %s",
        (property_id, folio_id),
    )
    return _folio_row(row) if row else None


def get_latest_folio_for_reservation(
    cur: PgCursor,
    *,
    property_id: str,
    reservation_id: str,
    status: str | None = None,
) -> dict[str, Any] | None:
    """Most recent folio of a reservation, optionally restricted to a status."""
    conditions = ["property_id = %s", "reservation_id = %s"]
    params: list[Any] = [property_id, reservation_id]
    if status:
        conditions.append("status = %s")
        params.append(status)

    cur.execute(
        f"""
        SELECT {_FOLIO_COLUMNS}
        FROM folios
        WHERE {" AND ".join(conditions)}
        ORDER BY created_at DESC
        LIMIT 1
        """,
        params,
    )
    row = cur.fetchone()
    return _folio_row(row) if row else None


def list_folios(
    cur: PgCursor,
    *,
    property_id: str,
    status: str | None = None,
    guest_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    conditions = ["property_id = %s"]
    params: list[Any] = [property_id]

    if status:
        conditions.append("status = %s")
        params.append(status)

    if guest_id:
        conditions.append("guest_id = %s")
        params.append(guest_id)

    params.extend([limit, offset])
    cur.execute(
        f"""
        SELECT {_FOLIO_COLUMNS}
        FROM folios
        WHERE {" AND ".join(conditions)}
        ORDER BY created_at DESC
        LIMIT %s OFFSET %s
        """,
        params,
    )
    return [_folio_row(r) for r in cur.fetchall()]


def update_folio_totals(
    cur: PgCursor,
    *,
    folio_id: str,
    totals: FolioTotals,
) -> dict[str, Any]:
    """Write derived totals and bump the version token."""
    cur.execute(
        f"""
        UPDATE folios
        SET subtotal_cents = %s,
            tax_cents = %s,
            service_charge_cents = %s,
            total_cents = %s,
            paid_cents = %s,
            balance_cents = %s,
            version = version + 1,
            updated_at = now()
        WHERE id = %s
        RETURNING {_FOLIO_COLUMNS}
        """,
        (
            totals.subtotal_cents,
            totals.tax_cents,
            totals.service_charge_cents,
            totals.total_cents,
            totals.paid_cents,
            totals.balance_cents,
            folio_id,
        ),
    )
    return _folio_row(cur.fetchone())


def set_folio_status(
    cur: PgCursor,
    *,
    folio_id: str,
    status: str,
    changed_by: str | None = None,
) -> dict[str, Any]:
    """Open or close a folio (closed_at/closed_by follow the status)."""
    closing = status == "closed"
    cur.execute(
        f"""
        UPDATE folios
        SET status = %s,
            closed_at = CASE WHEN %s THEN now() ELSE NULL END,
            closed_by = CASE WHEN %s THEN %s ELSE NULL END,
            version = version + 1,
            updated_at = now()
        WHERE id = %s
        RETURNING {_FOLIO_COLUMNS}
        """,
        (status, closing, closing, changed_by, folio_id),
    )
    return _folio_row(cur.fetchone())


def folio_counts(cur: PgCursor, *, property_id: str) -> dict[str, int]:
    """Open/closed counts and outstanding balance of open folios."""
    cur.execute(
        """
        SELECT
            COUNT(*) FILTER (WHERE status = 'open'),
            COUNT(*) FILTER (WHERE status = 'closed'),
            COALESCE(SUM(balance_cents) FILTER (WHERE status = 'open'), 0)
        FROM folios
        WHERE property_id = %s
        """,
        (property_id,),
    )
    row = cur.fetchone()
    return {
        "open_folios": row[0],
        "closed_folios": row[1],
        "open_balance_cents": int(row[2]),
    }


# ── Line items ───────────────────────────────────────────


def insert_item(
    cur: PgCursor,
    *,
    folio_id: str,
    property_id: str,
    item_type: str,
    description: str,
    quantity: int,
    unit_price_cents: int,
    amount_cents: int,
    service_date: date,
    posted_by: str | None = None,
    parent_item_id: str | None = None,
    reverses_item_id: str | None = None,
    room_id: str | None = None,
    tax_code: str | None = None,
    tax_rate: Decimal | None = None,
    is_inclusive: bool = False,
) -> dict[str, Any]:
    """Append one line item.

    Returns:
        Dict with the created item fields.
    """
    cur.execute(
        f"""
        INSERT INTO folio_items AS fi (
            folio_id, property_id, item_type, description, quantity,
            unit_price_cents, amount_cents, service_date, posted_by,
            parent_item_id, reverses_item_id, room_id, tax_code, tax_rate,
            is_inclusive
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING {_ITEM_COLUMNS}
        """,
        (
            folio_id,
            property_id,
            item_type,
            description,
            quantity,
            unit_price_cents,
            amount_cents,
            service_date,
            posted_by,
            parent_item_id,
            reverses_item_id,
            room_id,
            tax_code,
            tax_rate,
            is_inclusive,
        ),
    )
    return _item_row(cur.fetchone())


def get_item(cur: PgCursor, *, property_id: str, item_id: str) -> dict[str, Any] | None:
    cur.execute(
        f"SELECT {_ITEM_COLUMNS} FROM folio_items fi WHERE fi.property_id = %s AND fi.id = %s",
        (property_id, item_id),
    )
    row = cur.fetchone()
    return _item_row(row) if row else None


def list_items(cur: PgCursor, *, folio_id: str) -> list[dict[str, Any]]:
    """All line items of a folio in posting order."""
    cur.execute(
        f"""
        SELECT {_ITEM_COLUMNS}
        FROM folio_items fi
        WHERE fi.folio_id = %s
        ORDER BY fi.created_at, fi.id
        """,
        (folio_id,),
    )
    return [_item_row(r) for r in cur.fetchall()]


def list_child_items(cur: PgCursor, *, parent_item_id: str) -> list[dict[str, Any]]:
    """Tax and service-charge lines derived from a charge."""
    cur.execute(
        f"""
        SELECT {_ITEM_COLUMNS}
        FROM folio_items fi
        WHERE fi.parent_item_id = %s
        ORDER BY fi.created_at, fi.id
        """,
        (parent_item_id,),
    )
    return [_item_row(r) for r in cur.fetchall()]


def ledger_lines(cur: PgCursor, *, folio_id: str) -> list[LedgerLine]:
    """The (type, amount, inclusive) projection used to derive totals."""
    cur.execute(
        """
        SELECT item_type, amount_cents, is_inclusive
        FROM folio_items
        WHERE folio_id = %s
        """,
        (folio_id,),
    )
    return [LedgerLine(item_type=r[0], amount_cents=r[1], is_inclusive=r[2]) for r in cur.fetchall()]


def room_night_charged(
    cur: PgCursor,
    *,
    property_id: str,
    room_id: str,
    service_date: date,
) -> bool:
    """True when the room already has a room charge for the date."""
    cur.execute(
        """
        SELECT 1
        FROM folio_items
        WHERE property_id = %s
          AND room_id = %s
          AND service_date = %s
          AND item_type = 'room_charge'
          AND reverses_item_id IS NULL
        LIMIT 1
        """,
        (property_id, room_id, service_date),
    )
    return cur.fetchone() is not None

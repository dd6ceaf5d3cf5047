"""Night audit repository - audit records and the front-office reads the audit needs.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from staybook.domain.night_audit import AuditStatistics
from staybook.infra.db import for_update

_AUDIT_COLUMNS = """
    id, property_id, business_date, status, rooms_charged,
    total_room_revenue_cents, total_fb_revenue_cents, total_other_revenue_cents,
    total_payments_cents, occupancy_rate, adr_cents, revpar_cents, report_data,
    notes, failure_detail, run_by, started_at, completed_at
"""


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


def _audit_row(row: tuple) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "property_id": row[1],
        "business_date": _iso(row[2]),
        "status": row[3],
        "rooms_charged": row[4],
        "total_room_revenue_cents": row[5],
        "total_fb_revenue_cents": row[6],
        "total_other_revenue_cents": row[7],
        "total_payments_cents": row[8],
        "occupancy_rate": str(row[9]),
        "adr_cents": row[10],
        "revpar_cents": row[11],
        "report_data": row[12] or {},
        "notes": row[13],
        "failure_detail": row[14],
        "run_by": row[15],
        "started_at": _iso(row[16]),
        "completed_at": _iso(row[17]),
    }


# ── Audit records ────────────────────────────────────────


def ensure_audit(cur: PgCursor, *, property_id: str, business_date: date) -> dict[str, Any]:
    """Create the pending record for a business date if missing, then lock it."""
    cur.execute(
        """
        INSERT INTO night_audits (property_id, business_date)
        VALUES (%s, %s)
        ON CONFLICT (property_id, business_date) DO NOTHING
        """,
        (property_id, business_date),
    )
    return lock_audit(cur, property_id=property_id, business_date=business_date)  # type: ignore[return-value]


def get_audit(cur: PgCursor, *, property_id: str, business_date: date) -> dict[str, Any] | None:
    cur.execute(
        f"SELECT {_AUDIT_COLUMNS} FROM night_audits WHERE property_id = %s AND business_date = %s",
        (property_id, business_date),
    )
    row = cur.fetchone()
    return _audit_row(row) if row else None


def lock_audit(cur: PgCursor, *, property_id: str, business_date: date) -> dict[str, Any] | None:
    row = for_update(
        cur,
        f"SELECT {_AUDIT_COLUMNS} FROM night_audits WHERE property_id = %s AND business_date = %s",
        (property_id, business_date),
    )
    return _audit_row(row) if row else None


def mark_in_progress(cur: PgCursor, *, audit_id: str, run_by: str | None) -> dict[str, Any]:
    cur.execute(
        f"""
        UPDATE night_audits
        SET status = 'in_progress',
            run_by = COALESCE(%s, run_by),
            started_at = COALESCE(started_at, now()),
            failure_detail = NULL,
            updated_at = now()
        WHERE id = %s
        RETURNING {_AUDIT_COLUMNS}
        """,
        (run_by, audit_id),
    )
    return _audit_row(cur.fetchone())


def mark_failed(
    cur: PgCursor,
    *,
    property_id: str,
    business_date: date,
    detail: str,
) -> dict[str, Any] | None:
    """Record a failed step. Only an in-progress audit can fail."""
    cur.execute(
        f"""
        UPDATE night_audits
        SET status = 'failed',
            failure_detail = %s,
            updated_at = now()
        WHERE property_id = %s AND business_date = %s AND status = 'in_progress'
        RETURNING {_AUDIT_COLUMNS}
        """,
        (detail, property_id, business_date),
    )
    row = cur.fetchone()
    return _audit_row(row) if row else None


def update_room_totals(
    cur: PgCursor,
    *,
    audit_id: str,
    rooms_charged: int,
    room_revenue_cents: int,
) -> dict[str, Any]:
    cur.execute(
        f"""
        UPDATE night_audits
        SET rooms_charged = %s,
            total_room_revenue_cents = %s,
            updated_at = now()
        WHERE id = %s
        RETURNING {_AUDIT_COLUMNS}
        """,
        (rooms_charged, room_revenue_cents, audit_id),
    )
    return _audit_row(cur.fetchone())


def mark_completed(
    cur: PgCursor,
    *,
    audit_id: str,
    stats: AuditStatistics,
    rooms_charged: int,
    notes: str | None,
) -> dict[str, Any]:
    """Store the final statistics and seal the record."""
    cur.execute(
        f"""
        UPDATE night_audits
        SET status = 'completed',
            rooms_charged = %s,
            total_room_revenue_cents = %s,
            total_fb_revenue_cents = %s,
            total_other_revenue_cents = %s,
            total_payments_cents = %s,
            occupancy_rate = %s,
            adr_cents = %s,
            revpar_cents = %s,
            report_data = %s,
            notes = %s,
            completed_at = now(),
            updated_at = now()
        WHERE id = %s
        RETURNING {_AUDIT_COLUMNS}
        """,
        (
            rooms_charged,
            stats.room_revenue_cents,
            stats.fb_revenue_cents,
            stats.other_revenue_cents,
            stats.total_payments_cents,
            stats.occupancy_rate,
            stats.adr_cents,
            stats.revpar_cents,
            Json(stats.to_dict()),
            notes,
            audit_id,
        ),
    )
    return _audit_row(cur.fetchone())


def list_audits(
    cur: PgCursor,
    *,
    property_id: str,
    limit: int = 30,
    offset: int = 0,
) -> list[dict[str, Any]]:
    cur.execute(
        f"""
        SELECT {_AUDIT_COLUMNS}
        FROM night_audits
        WHERE property_id = %s
        ORDER BY business_date DESC
        LIMIT %s OFFSET %s
        """,
        (property_id, limit, offset),
    )
    return [_audit_row(r) for r in cur.fetchall()]


def is_date_sealed(cur: PgCursor, *, property_id: str, business_date: date) -> bool:
    """True when a completed audit closed the business date."""
    cur.execute(
        """
        SELECT 1 FROM night_audits
        WHERE property_id = %s AND business_date = %s AND status = 'completed'
        """,
        (property_id, business_date),
    )
    return cur.fetchone() is not None


# ── Front-office reads ───────────────────────────────────


def mark_no_shows(cur: PgCursor, *, property_id: str, business_date: date) -> int:
    """Flag confirmed reservations due on the business date that never checked in.

    Returns:
        Number of reservations marked no_show.
    """
    cur.execute(
        """
        UPDATE reservations
        SET status = 'no_show', updated_at = now()
        WHERE property_id = %s AND status = 'confirmed' AND checkin = %s
        RETURNING id
        """,
        (property_id, business_date),
    )
    return len(cur.fetchall())


def list_in_house_reservations(
    cur: PgCursor,
    *,
    property_id: str,
    business_date: date,
) -> list[dict[str, Any]]:
    """Checked-in reservations with an assigned room that stay over the date."""
    cur.execute(
        """
        SELECT r.id, r.guest_id, r.room_id, rm.room_number, r.rate_cents
        FROM reservations r
        JOIN rooms rm ON rm.id = r.room_id
        WHERE r.property_id = %s
          AND r.status = 'checked_in'
          AND r.checkin <= %s
          AND r.checkout > %s
        ORDER BY rm.room_number, r.id
        """,
        (property_id, business_date, business_date),
    )
    return [
        {
            "reservation_id": str(r[0]),
            "guest_id": str(r[1]),
            "room_id": str(r[2]),
            "room_number": r[3],
            "rate_cents": r[4],
        }
        for r in cur.fetchall()
    ]


def room_charge_totals(cur: PgCursor, *, property_id: str, business_date: date) -> tuple[int, int]:
    """(rooms charged, net room revenue) posted for a business date.

    A room night whose charge was voided is not counted as charged.
    """
    cur.execute(
        """
        SELECT
            COUNT(DISTINCT fi.room_id) FILTER (
                WHERE fi.reverses_item_id IS NULL
                  AND fi.room_id IS NOT NULL
                  AND NOT EXISTS (SELECT 1 FROM folio_items r WHERE r.reverses_item_id = fi.id)
            ),
            COALESCE(SUM(fi.amount_cents), 0)
        FROM folio_items fi
        WHERE fi.property_id = %s AND fi.service_date = %s AND fi.item_type = 'room_charge'
        """,
        (property_id, business_date),
    )
    row = cur.fetchone()
    return row[0], int(row[1])


def count_rooms(cur: PgCursor, *, property_id: str) -> int:
    cur.execute(
        "SELECT COUNT(*) FROM rooms WHERE property_id = %s AND is_active = true",
        (property_id,),
    )
    return cur.fetchone()[0]


def reservation_counts(cur: PgCursor, *, property_id: str, business_date: date) -> dict[str, int]:
    """Occupied rooms, arrivals, departures and no-shows for a business date."""
    cur.execute(
        """
        SELECT
            COUNT(DISTINCT room_id) FILTER (
                WHERE status IN ('checked_in', 'checked_out')
                  AND checkin <= %s AND checkout > %s AND room_id IS NOT NULL
            ),
            COUNT(*) FILTER (
                WHERE status IN ('checked_in', 'checked_out') AND checkin = %s
            ),
            COUNT(*) FILTER (WHERE status = 'checked_out' AND checkout = %s),
            COUNT(*) FILTER (WHERE status = 'no_show' AND checkin = %s)
        FROM reservations
        WHERE property_id = %s
        """,
        (business_date, business_date, business_date, business_date, business_date, property_id),
    )
    row = cur.fetchone()
    return {
        "occupied_rooms": row[0],
        "arrivals": row[1],
        "departures": row[2],
        "no_shows": row[3],
    }


def revenue_by_item_type(
    cur: PgCursor,
    *,
    property_id: str,
    business_date: date,
) -> list[tuple[str, int]]:
    """Net posted amount per item type for a service date."""
    cur.execute(
        """
        SELECT item_type, COALESCE(SUM(amount_cents), 0)
        FROM folio_items
        WHERE property_id = %s AND service_date = %s AND is_inclusive = false
        GROUP BY item_type
        """,
        (property_id, business_date),
    )
    return [(r[0], int(r[1])) for r in cur.fetchall()]

"""Night audit orchestrator - business-date rollover for one property.

Steps: start_audit -> post_room_charges -> complete_audit.

Rules:
- One audit record per (property, business_date); completed records are sealed.
- Room charges are posted through the folio ledger (taxes included), one room
  per transaction, keyed by (room, business_date): a re-run skips rooms that
  are already charged and never double-posts.
- A failing step marks the audit failed with the diagnostic detail and
  re-raises. There is no automatic retry; an operator restarts the audit.
- Each function opens its own transactions (the per-room commits are part of
  the contract).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import (
    NightAuditNotFoundError,
    NightAuditStateError,
    NightAuditStepError,
    PropertyNotFoundError,
)
from staybook.domain.folio import ChargeInput, FolioItemType
from staybook.domain.night_audit import (
    AuditStatistics,
    AuditStatus,
    bucket_payments,
    bucket_revenue,
    business_date_for,
    can_transition,
)
from staybook.infra.db import txn
from staybook.infra.property_settings import load_billing_settings
from staybook.infra.repositories import (
    folio_repository,
    night_audit_repository,
    outbox_repository,
    payments_repository,
)
from staybook.infra.time import utc_now
from staybook.observability.correlation import correlation_scope
from staybook.observability.logging import get_logger, log_fields
from staybook.services import folio_service

logger = get_logger(__name__)

# Errors raised before a step starts; they leave the audit status untouched.
_PRECONDITION_ERRORS = (NightAuditNotFoundError, NightAuditStateError, PropertyNotFoundError)


def _business_date(tz_name: str, now: datetime | None = None) -> date:
    now = now or utc_now()
    return business_date_for(now.astimezone(ZoneInfo(tz_name)))


def _require_in_progress(audit: dict[str, Any] | None, business_date: date, action: str) -> dict[str, Any]:
    if audit is None:
        raise NightAuditNotFoundError(business_date.isoformat())
    if audit["status"] != AuditStatus.IN_PROGRESS.value:
        raise NightAuditStateError(business_date.isoformat(), audit["status"], action)
    return audit


def _mark_failed(property_id: str, business_date: date, step: str, exc: Exception) -> NightAuditStepError:
    detail = f"{type(exc).__name__}: {exc}"
    with txn() as cur:
        night_audit_repository.mark_failed(
            cur, property_id=property_id, business_date=business_date, detail=f"{step}: {detail}"
        )
    logger.error(
        "night audit step failed",
        extra=log_fields(property_id=property_id, business_date=business_date, step=step, error=detail),
    )
    return NightAuditStepError(business_date.isoformat(), step, detail)


def start_audit(
    *,
    property_id: str,
    run_by: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Start (or restart after failure) the audit of the current business date.

    Raises:
        NightAuditStateError: The business date is already completed.
    """
    with correlation_scope(), txn() as cur:
        settings = load_billing_settings(cur, property_id)
        business_date = _business_date(settings.timezone, now)

        audit = night_audit_repository.ensure_audit(
            cur, property_id=property_id, business_date=business_date
        )
        if not can_transition(audit["status"], AuditStatus.IN_PROGRESS):
            raise NightAuditStateError(business_date.isoformat(), audit["status"], "start")

        audit = night_audit_repository.mark_in_progress(cur, audit_id=audit["id"], run_by=run_by)
        outbox_repository.emit_event(
            cur,
            property_id=property_id,
            event_type=outbox_repository.NIGHT_AUDIT_STARTED,
            aggregate_type="night_audit",
            aggregate_id=audit["id"],
            payload={"business_date": business_date.isoformat()},
        )

    logger.info(
        "night audit started",
        extra=log_fields(property_id=property_id, business_date=business_date, run_by=run_by),
    )
    return audit


def post_room_charges(
    *,
    property_id: str,
    business_date: date,
    posted_by: str | None = None,
) -> dict[str, Any]:
    """Mark no-shows and post one room charge per occupied room.

    Returns:
        The audit record plus rooms_posted / rooms_skipped / no_shows_marked.
    """
    step = "post_room_charges"
    with correlation_scope():
        with txn() as cur:
            audit = night_audit_repository.lock_audit(
                cur, property_id=property_id, business_date=business_date
            )
            _require_in_progress(audit, business_date, "post room charges")

        posted = skipped = no_shows = 0
        try:
            with txn() as cur:
                no_shows = night_audit_repository.mark_no_shows(
                    cur, property_id=property_id, business_date=business_date
                )
                reservations = night_audit_repository.list_in_house_reservations(
                    cur, property_id=property_id, business_date=business_date
                )

            for reservation in reservations:
                if _post_room_night(property_id, business_date, reservation, posted_by):
                    posted += 1
                else:
                    skipped += 1

            with txn() as cur:
                rooms_charged, room_revenue = night_audit_repository.room_charge_totals(
                    cur, property_id=property_id, business_date=business_date
                )
                audit = night_audit_repository.update_room_totals(
                    cur,
                    audit_id=audit["id"],  # type: ignore[index]
                    rooms_charged=rooms_charged,
                    room_revenue_cents=room_revenue,
                )
        except _PRECONDITION_ERRORS:
            raise
        except Exception as exc:
            raise _mark_failed(property_id, business_date, step, exc) from exc

    logger.info(
        "room charges posted",
        extra=log_fields(
            property_id=property_id,
            business_date=business_date,
            rooms_posted=posted,
            rooms_skipped=skipped,
            no_shows=no_shows,
        ),
    )
    return {**audit, "rooms_posted": posted, "rooms_skipped": skipped, "no_shows_marked": no_shows}


def _post_room_night(
    property_id: str,
    business_date: date,
    reservation: dict[str, Any],
    posted_by: str | None,
) -> bool:
    """Post one room night in its own transaction. False when already charged."""
    if reservation["rate_cents"] <= 0:
        logger.info(
            "complimentary room night skipped",
            extra=log_fields(property_id=property_id, reservation_id=reservation["reservation_id"]),
        )
        return False

    with txn() as cur:
        if folio_repository.room_night_charged(
            cur, property_id=property_id, room_id=reservation["room_id"], service_date=business_date
        ):
            return False

        folio = folio_service.folio_for_reservation(
            cur,
            property_id=property_id,
            reservation_id=reservation["reservation_id"],
            guest_id=reservation["guest_id"],
            opened_by=posted_by,
        )
        folio_service.post_charge(
            cur,
            property_id=property_id,
            folio_id=folio["id"],
            item=ChargeInput(
                item_type=FolioItemType.ROOM_CHARGE,
                description=f"Room {reservation['room_number']} - {business_date.isoformat()}",
                unit_price_cents=reservation["rate_cents"],
                service_date=business_date,
                room_id=reservation["room_id"],
            ),
            posted_by=posted_by,
        )
    return True


def collect_statistics(cur: PgCursor, *, property_id: str, business_date: date, timezone: str) -> AuditStatistics:
    """Aggregate the day's KPIs from rooms, reservations, items and payments."""
    counts = night_audit_repository.reservation_counts(
        cur, property_id=property_id, business_date=business_date
    )
    room, fb, other, by_category = bucket_revenue(
        night_audit_repository.revenue_by_item_type(
            cur, property_id=property_id, business_date=business_date
        )
    )
    payments_total, by_method = bucket_payments(
        payments_repository.payments_on_date(
            cur, property_id=property_id, business_date=business_date, timezone=timezone
        )
    )
    return AuditStatistics(
        business_date=business_date,
        total_rooms=night_audit_repository.count_rooms(cur, property_id=property_id),
        occupied_rooms=counts["occupied_rooms"],
        room_revenue_cents=room,
        fb_revenue_cents=fb,
        other_revenue_cents=other,
        total_payments_cents=payments_total,
        arrivals=counts["arrivals"],
        departures=counts["departures"],
        no_shows=counts["no_shows"],
        revenue_by_category=by_category,
        payments_by_method=by_method,
    )


def complete_audit(
    *,
    property_id: str,
    business_date: date,
    notes: str | None = None,
    completed_by: str | None = None,
) -> dict[str, Any]:
    """Aggregate the day's statistics and seal the business date."""
    step = "complete_audit"
    with correlation_scope():
        try:
            with txn() as cur:
                audit = night_audit_repository.lock_audit(
                    cur, property_id=property_id, business_date=business_date
                )
                _require_in_progress(audit, business_date, "complete")
                settings = load_billing_settings(cur, property_id)

                stats = collect_statistics(
                    cur, property_id=property_id, business_date=business_date, timezone=settings.timezone
                )
                rooms_charged, _ = night_audit_repository.room_charge_totals(
                    cur, property_id=property_id, business_date=business_date
                )
                audit = night_audit_repository.mark_completed(
                    cur,
                    audit_id=audit["id"],  # type: ignore[index]
                    stats=stats,
                    rooms_charged=rooms_charged,
                    notes=notes,
                )
                outbox_repository.emit_event(
                    cur,
                    property_id=property_id,
                    event_type=outbox_repository.NIGHT_AUDIT_COMPLETED,
                    aggregate_type="night_audit",
                    aggregate_id=audit["id"],
                    payload={
                        "business_date": business_date.isoformat(),
                        "completed_by": completed_by,
                        "occupancy_rate": str(stats.occupancy_rate),
                        "room_revenue_cents": stats.room_revenue_cents,
                    },
                )
        except _PRECONDITION_ERRORS:
            raise
        except Exception as exc:
            raise _mark_failed(property_id, business_date, step, exc) from exc

    logger.info(
        "night audit completed",
        extra=log_fields(
            property_id=property_id,
            business_date=business_date,
            occupancy_rate=stats.occupancy_rate,
            adr_cents=stats.adr_cents,
            revpar_cents=stats.revpar_cents,
        ),
    )
    return audit


def get_statistics(*, property_id: str, business_date: date) -> dict[str, Any]:
    """Statistics of a business date.

    A completed audit returns the figures it sealed; otherwise they are
    computed live.
    """
    with txn() as cur:
        audit = night_audit_repository.get_audit(
            cur, property_id=property_id, business_date=business_date
        )
        if audit is not None and audit["status"] == AuditStatus.COMPLETED.value and audit["report_data"]:
            return {**audit["report_data"], "sealed": True}

        settings = load_billing_settings(cur, property_id)
        stats = collect_statistics(
            cur, property_id=property_id, business_date=business_date, timezone=settings.timezone
        )
    return {**stats.to_dict(), "sealed": False}


def get_current_audit(*, property_id: str, now: datetime | None = None) -> dict[str, Any]:
    """The current business date and its audit record (None if not started)."""
    with txn() as cur:
        settings = load_billing_settings(cur, property_id)
        business_date = _business_date(settings.timezone, now)
        audit = night_audit_repository.get_audit(
            cur, property_id=property_id, business_date=business_date
        )
    return {"business_date": business_date.isoformat(), "audit": audit}


def list_audit_history(*, property_id: str, limit: int = 30, offset: int = 0) -> list[dict[str, Any]]:
    with txn() as cur:
        return night_audit_repository.list_audits(
            cur, property_id=property_id, limit=limit, offset=offset
        )

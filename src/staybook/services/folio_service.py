"""Folio service — the guest folio ledger.

Rules:
- All amounts are integers in minor units (cents).
- Every mutation locks the folio row first (SELECT ... FOR UPDATE) and then
  re-derives the cached totals from the complete item and payment history in
  the same transaction, so concurrent postings cannot lose an update.
- Line items are append-only. Voids, transfers and splits post offsetting rows.
- Every query is scoped by property_id (multi-tenancy).
- Functions take the caller's cursor; the caller owns the transaction.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Iterable

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import (
    BusinessDateClosedError,
    FolioClosedError,
    FolioItemNotFoundError,
    FolioNotFoundError,
    FolioStateError,
    FolioVersionConflictError,
    GuestNotFoundError,
    ItemAlreadyReversedError,
    ReservationNotFoundError,
    RoomNightAlreadyChargedError,
    ValidationError,
)
from staybook.domain.folio import (
    ChargeInput,
    FolioItemType,
    FolioStatus,
    derive_totals,
    format_folio_number,
)
from staybook.domain.night_audit import business_date_for
from staybook.domain.taxes import TaxKind, TaxResult, compute_taxes, is_taxable
from staybook.infra.db import lock_rows
from staybook.infra.property_settings import BillingSettings, load_billing_settings
from staybook.infra.repositories import (
    folio_repository,
    night_audit_repository,
    outbox_repository,
    payments_repository,
    tax_repository,
)
from staybook.infra.time import local_now
from staybook.observability.logging import get_logger, log_fields

logger = get_logger(__name__)

_DERIVED_TYPES = frozenset({FolioItemType.TAX.value, FolioItemType.SERVICE_CHARGE.value})


# ── Helpers ──────────────────────────────────────────────


def current_business_date(settings: BillingSettings) -> date:
    """Business date at the property right now."""
    return business_date_for(local_now(settings.timezone))


def posting_date(cur: PgCursor, *, property_id: str, settings: BillingSettings) -> date:
    """Date for a new posting: the business date, or the next day once the audit sealed it.

    Between the audit run and the 06:00 rollover the business date is
    already closed; postings in that window belong to the following day.
    """
    business_date = current_business_date(settings)
    if night_audit_repository.is_date_sealed(
        cur, property_id=property_id, business_date=business_date
    ):
        return business_date + timedelta(days=1)
    return business_date


def lock_folio(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    expected_version: int | None = None,
    require_open: bool = True,
) -> dict[str, Any]:
    """Lock a folio row for the rest of the transaction and check it is writable."""
    folio = folio_repository.lock_folio(cur, property_id=property_id, folio_id=folio_id)
    if folio is None:
        raise FolioNotFoundError(folio_id)
    if require_open and folio["status"] != FolioStatus.OPEN.value:
        raise FolioClosedError(folio_id, folio["status"])
    if expected_version is not None and folio["version"] != expected_version:
        raise FolioVersionConflictError(folio_id, expected_version, folio["version"])
    return folio


def _ensure_date_open(cur: PgCursor, *, property_id: str, service_date: date) -> None:
    if night_audit_repository.is_date_sealed(
        cur, property_id=property_id, business_date=service_date
    ):
        raise BusinessDateClosedError(service_date.isoformat())


def _tax_item_type(kind: TaxKind) -> str:
    if kind == TaxKind.SERVICE_CHARGE:
        return FolioItemType.SERVICE_CHARGE.value
    return FolioItemType.TAX.value


def _append_tax_lines(
    cur: PgCursor,
    *,
    charge: dict[str, Any],
    property_id: str,
    result: TaxResult,
    service_date: date,
    posted_by: str | None,
) -> list[dict[str, Any]]:
    lines = []
    for line in result.breakdown:
        lines.append(
            folio_repository.insert_item(
                cur,
                folio_id=charge["folio_id"],
                property_id=property_id,
                item_type=_tax_item_type(line.kind),
                description=f"{line.name} ({line.rate.normalize():f}%)",
                quantity=1,
                unit_price_cents=line.amount_cents,
                amount_cents=line.amount_cents,
                service_date=service_date,
                posted_by=posted_by,
                parent_item_id=charge["id"],
                tax_code=line.code,
                tax_rate=line.rate,
                is_inclusive=line.is_inclusive,
            )
        )
    return lines


def _item_on_folio(
    cur: PgCursor, *, property_id: str, folio_id: str, item_id: str
) -> dict[str, Any]:
    """Load a correctable charge line of a folio."""
    item = folio_repository.get_item(cur, property_id=property_id, item_id=item_id)
    if item is None or item["folio_id"] != folio_id:
        raise FolioItemNotFoundError(item_id)
    if item["reverses_item_id"] is not None:
        raise ValidationError("Correction lines cannot be corrected again")
    if item["item_type"] in _DERIVED_TYPES:
        raise ValidationError("Tax lines follow their charge; correct the charge instead")
    if item["reversed"]:
        raise ItemAlreadyReversedError(f"Folio item {item_id} is already reversed")
    return item


def _reverse_item(
    cur: PgCursor,
    *,
    item: dict[str, Any],
    property_id: str,
    description: str,
    service_date: date,
    posted_by: str | None,
) -> list[dict[str, Any]]:
    """Post offsetting rows for a charge and every tax line derived from it."""
    children = folio_repository.list_child_items(cur, parent_item_id=item["id"])
    reversal = folio_repository.insert_item(
        cur,
        folio_id=item["folio_id"],
        property_id=property_id,
        item_type=item["item_type"],
        description=description,
        quantity=item["quantity"],
        unit_price_cents=-item["unit_price_cents"],
        amount_cents=-item["amount_cents"],
        service_date=service_date,
        posted_by=posted_by,
        reverses_item_id=item["id"],
        room_id=item["room_id"],
    )
    posted = [reversal]
    for child in children:
        posted.append(
            folio_repository.insert_item(
                cur,
                folio_id=child["folio_id"],
                property_id=property_id,
                item_type=child["item_type"],
                description=f"{description} [{child['tax_code']}]",
                quantity=child["quantity"],
                unit_price_cents=-child["unit_price_cents"],
                amount_cents=-child["amount_cents"],
                service_date=service_date,
                posted_by=posted_by,
                parent_item_id=reversal["id"],
                reverses_item_id=child["id"],
                tax_code=child["tax_code"],
                tax_rate=child["tax_rate"],
                is_inclusive=child["is_inclusive"],
            )
        )
    return posted


def _copy_item(
    cur: PgCursor,
    *,
    item: dict[str, Any],
    target_folio_id: str,
    property_id: str,
    service_date: date,
    posted_by: str | None,
) -> list[dict[str, Any]]:
    """Re-post a charge and its tax lines, amounts unchanged, on another folio.

    The copy carries no room_id: the room night stays counted once, on the
    original posting.
    """
    children = folio_repository.list_child_items(cur, parent_item_id=item["id"])
    copy = folio_repository.insert_item(
        cur,
        folio_id=target_folio_id,
        property_id=property_id,
        item_type=item["item_type"],
        description=item["description"],
        quantity=item["quantity"],
        unit_price_cents=item["unit_price_cents"],
        amount_cents=item["amount_cents"],
        service_date=service_date,
        posted_by=posted_by,
    )
    posted = [copy]
    for child in children:
        posted.append(
            folio_repository.insert_item(
                cur,
                folio_id=target_folio_id,
                property_id=property_id,
                item_type=child["item_type"],
                description=child["description"],
                quantity=child["quantity"],
                unit_price_cents=child["unit_price_cents"],
                amount_cents=child["amount_cents"],
                service_date=service_date,
                posted_by=posted_by,
                parent_item_id=copy["id"],
                tax_code=child["tax_code"],
                tax_rate=child["tax_rate"],
                is_inclusive=child["is_inclusive"],
            )
        )
    return posted


# ── Lifecycle ────────────────────────────────────────────


def open_folio(
    cur: PgCursor,
    *,
    property_id: str,
    guest_id: str,
    reservation_id: str | None = None,
    opened_by: str | None = None,
) -> dict[str, Any]:
    """Open a new folio with zero totals.

    Raises:
        PropertyNotFoundError: Unknown property.
        GuestNotFoundError: Guest does not belong to the property.
        ReservationNotFoundError: Reservation does not belong to the property and guest.
    """
    settings = load_billing_settings(cur, property_id)

    cur.execute(
        "SELECT 1 FROM guests WHERE property_id = %s AND id = %s",
        (property_id, guest_id),
    )
    if cur.fetchone() is None:
        raise GuestNotFoundError(guest_id)

    if reservation_id is not None:
        cur.execute(
            "SELECT 1 FROM reservations WHERE property_id = %s AND id = %s AND guest_id = %s",
            (property_id, reservation_id, guest_id),
        )
        if cur.fetchone() is None:
            raise ReservationNotFoundError(reservation_id)

    sequence = folio_repository.next_folio_sequence(cur, property_id=property_id)
    folio = folio_repository.insert_folio(
        cur,
        property_id=property_id,
        guest_id=guest_id,
        reservation_id=reservation_id,
        folio_number=format_folio_number(settings.property_code, sequence),
        opened_by=opened_by,
    )

    outbox_repository.emit_event(
        cur,
        property_id=property_id,
        event_type=outbox_repository.FOLIO_OPENED,
        aggregate_type="folio",
        aggregate_id=folio["id"],
        payload={"folio_number": folio["folio_number"], "reservation_id": reservation_id},
    )
    logger.info(
        "folio opened",
        extra=log_fields(property_id=property_id, folio_id=folio["id"], folio_number=folio["folio_number"]),
    )
    return folio


def recalculate(cur: PgCursor, *, property_id: str, folio_id: str) -> dict[str, Any]:
    """Re-derive a folio's cached totals from its full history.

    Must run inside the transaction that holds the folio lock.
    """
    folio = folio_repository.get_folio(cur, property_id=property_id, folio_id=folio_id)
    if folio is None:
        raise FolioNotFoundError(folio_id)

    totals = derive_totals(
        folio_repository.ledger_lines(cur, folio_id=folio_id),
        payments_repository.payment_lines(cur, folio_id=folio_id),
    )
    return folio_repository.update_folio_totals(cur, folio_id=folio_id, totals=totals)


def close_folio(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    closed_by: str | None = None,
) -> dict[str, Any]:
    """Close an open folio. A non-zero balance does not block closing."""
    folio = lock_folio(cur, property_id=property_id, folio_id=folio_id)
    folio = folio_repository.set_folio_status(
        cur, folio_id=folio_id, status=FolioStatus.CLOSED.value, changed_by=closed_by
    )
    outbox_repository.emit_event(
        cur,
        property_id=property_id,
        event_type=outbox_repository.FOLIO_CLOSED,
        aggregate_type="folio",
        aggregate_id=folio_id,
        payload={"folio_number": folio["folio_number"], "balance_cents": folio["balance_cents"]},
    )
    logger.info(
        "folio closed",
        extra=log_fields(property_id=property_id, folio_id=folio_id, balance_cents=folio["balance_cents"]),
    )
    return folio


def reopen_folio(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    reopened_by: str | None = None,
) -> dict[str, Any]:
    folio = lock_folio(cur, property_id=property_id, folio_id=folio_id, require_open=False)
    if folio["status"] != FolioStatus.CLOSED.value:
        raise FolioStateError(folio_id, folio["status"], "reopen")

    folio = folio_repository.set_folio_status(
        cur, folio_id=folio_id, status=FolioStatus.OPEN.value, changed_by=reopened_by
    )
    logger.info("folio reopened", extra=log_fields(property_id=property_id, folio_id=folio_id))
    return folio


# ── Postings ─────────────────────────────────────────────


def post_charge(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    item: ChargeInput,
    posted_by: str | None = None,
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Post a charge and its tax/service-charge lines, then recalculate.

    Returns:
        The updated folio, with the rows just written under "posted_items".

    Raises:
        FolioNotFoundError: Folio does not exist for this property.
        FolioClosedError: Folio is closed.
        FolioVersionConflictError: expected_version is stale.
        BusinessDateClosedError: service_date was sealed by a night audit.
        RoomNightAlreadyChargedError: The room already has a charge for the date.
    """
    lock_folio(cur, property_id=property_id, folio_id=folio_id, expected_version=expected_version)
    settings = load_billing_settings(cur, property_id)
    service_date = item.service_date or posting_date(cur, property_id=property_id, settings=settings)
    _ensure_date_open(cur, property_id=property_id, service_date=service_date)

    if item.item_type == FolioItemType.ROOM_CHARGE and item.room_id:
        if folio_repository.room_night_charged(
            cur, property_id=property_id, room_id=item.room_id, service_date=service_date
        ):
            raise RoomNightAlreadyChargedError(item.room_id, service_date.isoformat())

    charge = folio_repository.insert_item(
        cur,
        folio_id=folio_id,
        property_id=property_id,
        item_type=item.item_type.value,
        description=item.description,
        quantity=item.quantity,
        unit_price_cents=item.unit_price_cents,
        amount_cents=item.amount_cents,
        service_date=service_date,
        posted_by=posted_by,
        room_id=item.room_id,
    )
    posted = [charge]

    if is_taxable(item.item_type.value):
        result = compute_taxes(
            item.amount_cents,
            item.item_type.value,
            tax_repository.engine_configs(cur, settings=settings),
        )
        posted.extend(
            _append_tax_lines(
                cur,
                charge=charge,
                property_id=property_id,
                result=result,
                service_date=service_date,
                posted_by=posted_by,
            )
        )

    folio = recalculate(cur, property_id=property_id, folio_id=folio_id)
    logger.info(
        "charge posted",
        extra=log_fields(
            property_id=property_id,
            folio_id=folio_id,
            item_id=charge["id"],
            item_type=item.item_type.value,
            amount_cents=item.amount_cents,
            lines=len(posted),
        ),
    )
    return {**folio, "posted_items": posted}


def post_adjustment(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    item_type: str,
    amount_cents: int,
    reason: str,
    posted_by: str | None = None,
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Post an untaxed correction.

    A discount takes a positive magnitude and is stored negative; an
    adjustment carries its own sign.
    """
    if item_type == FolioItemType.DISCOUNT.value:
        if amount_cents <= 0:
            raise ValidationError("Discount amount must be > 0")
        amount_cents = -amount_cents
    elif item_type == FolioItemType.ADJUSTMENT.value:
        if amount_cents == 0:
            raise ValidationError("Adjustment amount must not be 0")
    else:
        raise ValidationError(f"'{item_type}' is not an adjustment type")
    if not reason.strip():
        raise ValidationError("An adjustment needs a reason")

    lock_folio(cur, property_id=property_id, folio_id=folio_id, expected_version=expected_version)
    settings = load_billing_settings(cur, property_id)
    service_date = posting_date(cur, property_id=property_id, settings=settings)

    item = folio_repository.insert_item(
        cur,
        folio_id=folio_id,
        property_id=property_id,
        item_type=item_type,
        description=reason.strip(),
        quantity=1,
        unit_price_cents=amount_cents,
        amount_cents=amount_cents,
        service_date=service_date,
        posted_by=posted_by,
    )
    folio = recalculate(cur, property_id=property_id, folio_id=folio_id)
    logger.info(
        "adjustment posted",
        extra=log_fields(property_id=property_id, folio_id=folio_id, item_type=item_type, amount_cents=amount_cents),
    )
    return {**folio, "posted_items": [item]}


def void_item(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    item_id: str,
    reason: str,
    voided_by: str | None = None,
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Void a charge by posting offsetting rows for it and its tax lines."""
    lock_folio(cur, property_id=property_id, folio_id=folio_id, expected_version=expected_version)
    item = _item_on_folio(cur, property_id=property_id, folio_id=folio_id, item_id=item_id)

    settings = load_billing_settings(cur, property_id)
    service_date = posting_date(cur, property_id=property_id, settings=settings)

    posted = _reverse_item(
        cur,
        item=item,
        property_id=property_id,
        description=f"VOID: {item['description']} ({reason})",
        service_date=service_date,
        posted_by=voided_by,
    )
    folio = recalculate(cur, property_id=property_id, folio_id=folio_id)
    logger.info(
        "folio item voided",
        extra=log_fields(property_id=property_id, folio_id=folio_id, item_id=item_id, lines=len(posted)),
    )
    return {**folio, "posted_items": posted}


def _lock_pair(cur: PgCursor, *, property_id: str, folio_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
    """Lock several folios in id order and require all of them to be open."""
    ids = sorted(set(folio_ids))
    locked = lock_rows(cur, "folios", ids, property_id=property_id)
    missing = set(ids) - set(locked)
    if missing:
        raise FolioNotFoundError(sorted(missing)[0])
    return {fid: lock_folio(cur, property_id=property_id, folio_id=fid) for fid in locked}


def _transfer(
    cur: PgCursor,
    *,
    property_id: str,
    source: dict[str, Any],
    target: dict[str, Any],
    item_id: str,
    service_date: date,
    transferred_by: str | None,
) -> list[dict[str, Any]]:
    item = _item_on_folio(cur, property_id=property_id, folio_id=source["id"], item_id=item_id)
    posted = _reverse_item(
        cur,
        item=item,
        property_id=property_id,
        description=f"TRANSFER to {target['folio_number']}: {item['description']}",
        service_date=service_date,
        posted_by=transferred_by,
    )
    posted.extend(
        _copy_item(
            cur,
            item=item,
            target_folio_id=target["id"],
            property_id=property_id,
            service_date=service_date,
            posted_by=transferred_by,
        )
    )
    return posted


def transfer_item(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    item_id: str,
    target_folio_id: str,
    transferred_by: str | None = None,
) -> dict[str, Any]:
    """Move a charge (with its tax lines) to another open folio.

    Returns:
        {"source": folio, "target": folio} after recalculation.
    """
    if folio_id == target_folio_id:
        raise ValidationError("Source and target folio must differ")

    folios = _lock_pair(cur, property_id=property_id, folio_ids=[folio_id, target_folio_id])
    settings = load_billing_settings(cur, property_id)
    service_date = posting_date(cur, property_id=property_id, settings=settings)

    posted = _transfer(
        cur,
        property_id=property_id,
        source=folios[folio_id],
        target=folios[target_folio_id],
        item_id=item_id,
        service_date=service_date,
        transferred_by=transferred_by,
    )
    logger.info(
        "folio item transferred",
        extra=log_fields(
            property_id=property_id,
            folio_id=folio_id,
            target_folio_id=target_folio_id,
            item_id=item_id,
            lines=len(posted),
        ),
    )
    return {
        "source": recalculate(cur, property_id=property_id, folio_id=folio_id),
        "target": recalculate(cur, property_id=property_id, folio_id=target_folio_id),
    }


def split_folio(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    item_ids: list[str],
    split_by: str | None = None,
) -> dict[str, Any]:
    """Open a new folio for the same guest and move the given charges onto it."""
    if not item_ids:
        raise ValidationError("Select at least one item to split")
    if len(set(item_ids)) != len(item_ids):
        raise ValidationError("Duplicate item in split")

    source = lock_folio(cur, property_id=property_id, folio_id=folio_id)
    settings = load_billing_settings(cur, property_id)
    service_date = posting_date(cur, property_id=property_id, settings=settings)

    target = open_folio(
        cur,
        property_id=property_id,
        guest_id=source["guest_id"],
        reservation_id=source["reservation_id"],
        opened_by=split_by,
    )
    for item_id in item_ids:
        _transfer(
            cur,
            property_id=property_id,
            source=source,
            target=target,
            item_id=item_id,
            service_date=service_date,
            transferred_by=split_by,
        )

    logger.info(
        "folio split",
        extra=log_fields(property_id=property_id, folio_id=folio_id, new_folio_id=target["id"], items=len(item_ids)),
    )
    return {
        "source": recalculate(cur, property_id=property_id, folio_id=folio_id),
        "target": recalculate(cur, property_id=property_id, folio_id=target["id"]),
    }


# ── Reads ────────────────────────────────────────────────


def _with_history(cur: PgCursor, folio: dict[str, Any]) -> dict[str, Any]:
    return {
        **folio,
        "items": folio_repository.list_items(cur, folio_id=folio["id"]),
        "payments": payments_repository.list_payments(cur, folio_id=folio["id"]),
    }


def get_folio(cur: PgCursor, *, property_id: str, folio_id: str) -> dict[str, Any]:
    """Folio with its line items and payments."""
    folio = folio_repository.get_folio(cur, property_id=property_id, folio_id=folio_id)
    if folio is None:
        raise FolioNotFoundError(folio_id)
    return _with_history(cur, folio)


def get_folio_by_reservation(cur: PgCursor, *, property_id: str, reservation_id: str) -> dict[str, Any]:
    """Most recent folio of a reservation, with history."""
    folio = folio_repository.get_latest_folio_for_reservation(
        cur, property_id=property_id, reservation_id=reservation_id
    )
    if folio is None:
        raise FolioNotFoundError(f"for reservation {reservation_id}")
    return _with_history(cur, folio)


def folio_for_reservation(
    cur: PgCursor,
    *,
    property_id: str,
    reservation_id: str,
    guest_id: str,
    opened_by: str | None = None,
) -> dict[str, Any]:
    """The reservation's open folio, opened on demand."""
    folio = folio_repository.get_latest_folio_for_reservation(
        cur, property_id=property_id, reservation_id=reservation_id, status=FolioStatus.OPEN.value
    )
    if folio is not None:
        return folio
    return open_folio(
        cur,
        property_id=property_id,
        guest_id=guest_id,
        reservation_id=reservation_id,
        opened_by=opened_by,
    )


def list_folios(
    cur: PgCursor,
    *,
    property_id: str,
    status: str | None = None,
    guest_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return folio_repository.list_folios(
        cur, property_id=property_id, status=status, guest_id=guest_id, limit=limit, offset=offset
    )


def folio_stats(cur: PgCursor, *, property_id: str) -> dict[str, Any]:
    """Open/closed counts, open balance and today's net payments."""
    settings = load_billing_settings(cur, property_id)
    today = local_now(settings.timezone).date()
    stats = folio_repository.folio_counts(cur, property_id=property_id)

    net_today = 0
    for _method, kind, amount in payments_repository.payments_on_date(
        cur, property_id=property_id, business_date=today, timezone=settings.timezone
    ):
        net_today += -amount if kind == "refund" else amount

    return {**stats, "payments_today_cents": net_today, "currency": settings.currency}

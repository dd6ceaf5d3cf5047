"""Night audit domain - status machine, business date and KPI math."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable

from staybook.domain.taxes import round_minor

# Audits run overnight: until this hour the day that is ending is still open.
BUSINESS_DAY_ROLLOVER_HOUR = 6


class AuditStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# No transition skips a state; failed is left only by an operator restart.
ALLOWED_TRANSITIONS: dict[AuditStatus, frozenset[AuditStatus]] = {
    AuditStatus.PENDING: frozenset({AuditStatus.IN_PROGRESS}),
    AuditStatus.IN_PROGRESS: frozenset(
        {AuditStatus.IN_PROGRESS, AuditStatus.COMPLETED, AuditStatus.FAILED}
    ),
    AuditStatus.FAILED: frozenset({AuditStatus.IN_PROGRESS}),
    AuditStatus.COMPLETED: frozenset(),
}


def can_transition(current: AuditStatus | str, target: AuditStatus | str) -> bool:
    return AuditStatus(target) in ALLOWED_TRANSITIONS[AuditStatus(current)]


def business_date_for(local_now: datetime) -> date:
    """Business date closed by an audit run at local_now.

    Before 06:00 local time the audit closes yesterday, not the calendar
    day that has just begun.
    """
    if local_now.hour < BUSINESS_DAY_ROLLOVER_HOUR:
        return (local_now - timedelta(days=1)).date()
    return local_now.date()


# ── Revenue buckets ──────────────────────────────────────

ROOM_REVENUE_TYPES = frozenset({"room_charge"})
FB_REVENUE_TYPES = frozenset({"food_beverage"})
NON_REVENUE_TYPES = frozenset({"tax", "service_charge", "discount", "deposit"})

REVENUE_CATEGORIES = (
    "room_charge",
    "food_beverage",
    "laundry",
    "minibar",
    "spa",
    "parking",
    "telephone",
    "internet",
    "miscellaneous",
)

PAYMENT_METHOD_BUCKETS = ("cash", "credit_card", "debit_card", "bank_transfer")


def revenue_bucket(item_type: str) -> str | None:
    """Map a line item type to room / fb / other (None = not revenue)."""
    if item_type in ROOM_REVENUE_TYPES:
        return "room"
    if item_type in FB_REVENUE_TYPES:
        return "fb"
    if item_type in NON_REVENUE_TYPES:
        return None
    return "other"


# ── Statistics ───────────────────────────────────────────


@dataclass
class AuditStatistics:
    """Daily statistics for one property and business date (amounts in cents, pre-tax)."""

    business_date: date
    total_rooms: int = 0
    occupied_rooms: int = 0
    room_revenue_cents: int = 0
    fb_revenue_cents: int = 0
    other_revenue_cents: int = 0
    total_payments_cents: int = 0
    arrivals: int = 0
    departures: int = 0
    no_shows: int = 0
    revenue_by_category: dict[str, int] = field(default_factory=dict)
    payments_by_method: dict[str, int] = field(default_factory=dict)

    @property
    def vacant_rooms(self) -> int:
        return max(self.total_rooms - self.occupied_rooms, 0)

    @property
    def stayovers(self) -> int:
        return max(self.occupied_rooms - self.arrivals, 0)

    @property
    def total_revenue_cents(self) -> int:
        return self.room_revenue_cents + self.fb_revenue_cents + self.other_revenue_cents

    @property
    def occupancy_rate(self) -> Decimal:
        return occupancy_rate(self.occupied_rooms, self.total_rooms)

    @property
    def adr_cents(self) -> int:
        return average_daily_rate(self.room_revenue_cents, self.occupied_rooms)

    @property
    def revpar_cents(self) -> int:
        return revenue_per_available_room(self.room_revenue_cents, self.total_rooms)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["business_date"] = self.business_date.isoformat()
        data.update(
            vacant_rooms=self.vacant_rooms,
            stayovers=self.stayovers,
            total_revenue_cents=self.total_revenue_cents,
            occupancy_rate=str(self.occupancy_rate),
            adr_cents=self.adr_cents,
            revpar_cents=self.revpar_cents,
        )
        return data


def occupancy_rate(occupied_rooms: int, total_rooms: int) -> Decimal:
    """Occupied / total * 100, two decimals (0 when the property has no rooms)."""
    if total_rooms <= 0:
        return Decimal("0.00")
    rate = Decimal(occupied_rooms) * 100 / Decimal(total_rooms)
    return rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def average_daily_rate(room_revenue_cents: int, occupied_rooms: int) -> int:
    if occupied_rooms <= 0:
        return 0
    return round_minor(Decimal(room_revenue_cents) / occupied_rooms)


def revenue_per_available_room(room_revenue_cents: int, total_rooms: int) -> int:
    if total_rooms <= 0:
        return 0
    return round_minor(Decimal(room_revenue_cents) / total_rooms)


def bucket_revenue(rows: Iterable[tuple[str, int]]) -> tuple[int, int, int, dict[str, int]]:
    """Split (item_type, amount_cents) rows into room / fb / other and per-category sums."""
    room = fb = other = 0
    by_category = {category: 0 for category in REVENUE_CATEGORIES}
    for item_type, amount in rows:
        bucket = revenue_bucket(item_type)
        if bucket is None:
            continue
        if bucket == "room":
            room += amount
        elif bucket == "fb":
            fb += amount
        else:
            other += amount
        if item_type in by_category:
            by_category[item_type] += amount
    return room, fb, other, by_category


def bucket_payments(rows: Iterable[tuple[str, str, int]]) -> tuple[int, dict[str, int]]:
    """Net (method, kind, amount_cents) rows into a total and per-method sums."""
    by_method = {method: 0 for method in PAYMENT_METHOD_BUCKETS}
    by_method["other"] = 0
    total = 0
    for method, kind, amount in rows:
        signed = -amount if kind == "refund" else amount
        total += signed
        key = method if method in PAYMENT_METHOD_BUCKETS else "other"
        by_method[key] += signed
    return total, by_method

"""Folio domain - enums, input schemas and the totals derivation.

Rules:
- All amounts are integers in the currency's minor unit (cents).
- Line items are append-only; discounts and deposits are stored negative.
- Folio totals are never incremented in place: they are always derived
  from the complete list of line items and payments.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ── Enums ─────────────────────────────────────────────────


class FolioStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class FolioItemType(str, Enum):
    ROOM_CHARGE = "room_charge"
    FOOD_BEVERAGE = "food_beverage"
    LAUNDRY = "laundry"
    MINIBAR = "minibar"
    SPA = "spa"
    PARKING = "parking"
    TELEPHONE = "telephone"
    INTERNET = "internet"
    MISCELLANEOUS = "miscellaneous"
    ADJUSTMENT = "adjustment"
    TAX = "tax"
    SERVICE_CHARGE = "service_charge"
    DISCOUNT = "discount"
    DEPOSIT = "deposit"


# Types a caller may post directly; tax and service-charge lines are derived.
POSTABLE_TYPES = frozenset(FolioItemType) - {FolioItemType.TAX, FolioItemType.SERVICE_CHARGE}

# Credits: the caller supplies a positive magnitude, the ledger stores it negative.
CREDIT_TYPES = frozenset({FolioItemType.DISCOUNT, FolioItemType.DEPOSIT})


class PaymentMethod(str, Enum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_PAYMENT = "mobile_payment"
    CORPORATE_BILLING = "corporate_billing"
    OTHER = "other"


class PaymentKind(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"


class CorporateDirection(str, Enum):
    """Effect of an attributed payment on the account's current balance.

    BILLED: the folio was settled by charging the company (balance goes up).
    RECEIVED: the company paid money in (balance goes down).
    """

    BILLED = "billed"
    RECEIVED = "received"

    @property
    def sign(self) -> int:
        return 1 if self is CorporateDirection.BILLED else -1


# ── Inputs ───────────────────────────────────────────────


class ChargeInput(BaseModel):
    """A charge to post on a folio."""

    model_config = ConfigDict(extra="forbid")

    item_type: FolioItemType
    description: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(1, ge=1)
    unit_price_cents: int = Field(..., gt=0)
    service_date: date | None = None
    room_id: str | None = None

    @model_validator(mode="after")
    def _postable(self) -> "ChargeInput":
        if self.item_type not in POSTABLE_TYPES:
            raise ValueError(f"item_type '{self.item_type.value}' cannot be posted directly")
        return self

    @property
    def amount_cents(self) -> int:
        """Signed amount stored on the line item."""
        return signed_amount(self.item_type, self.quantity * self.unit_price_cents)


def signed_amount(item_type: FolioItemType | str, magnitude: int) -> int:
    if FolioItemType(item_type) in CREDIT_TYPES:
        return -abs(magnitude)
    return magnitude


# ── Totals ───────────────────────────────────────────────


@dataclass(frozen=True)
class LedgerLine:
    """The part of a line item that matters for totals."""

    item_type: str
    amount_cents: int
    is_inclusive: bool = False


@dataclass(frozen=True)
class PaymentLine:
    kind: str
    amount_cents: int
    voided: bool = False


@dataclass(frozen=True)
class FolioTotals:
    subtotal_cents: int = 0
    tax_cents: int = 0
    service_charge_cents: int = 0
    paid_cents: int = 0

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents + self.service_charge_cents

    @property
    def balance_cents(self) -> int:
        return self.total_cents - self.paid_cents


def derive_totals(items: Iterable[LedgerLine], payments: Iterable[PaymentLine]) -> FolioTotals:
    """Derive folio totals from the full item and payment history.

    Inclusive tax lines are disclosure only and never counted: their amount
    is already part of the charge they belong to.
    """
    subtotal = tax = service = 0
    for item in items:
        if item.item_type == FolioItemType.TAX.value:
            if not item.is_inclusive:
                tax += item.amount_cents
        elif item.item_type == FolioItemType.SERVICE_CHARGE.value:
            if not item.is_inclusive:
                service += item.amount_cents
        else:
            subtotal += item.amount_cents

    paid = 0
    for payment in payments:
        if payment.voided:
            continue
        if payment.kind == PaymentKind.REFUND.value:
            paid -= payment.amount_cents
        else:
            paid += payment.amount_cents

    return FolioTotals(
        subtotal_cents=subtotal,
        tax_cents=tax,
        service_charge_cents=service,
        paid_cents=paid,
    )


def format_folio_number(property_code: str, sequence: int) -> str:
    """Human-readable folio number, e.g. F-SEA-000042."""
    return f"F-{property_code}-{sequence:06d}"

"""Ledger error taxonomy.

Every ledger mutation raises one of these before (or instead of) writing;
the surrounding transaction is rolled back by ``txn()`` so a failed call
leaves no partial effect.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all folio/billing errors."""


# ── validation ───────────────────────────────────────


class ValidationError(LedgerError):
    """Input rejected before any mutation (non-positive amount, bad field)."""


class BulkAmountMismatchError(ValidationError):
    """Supplied bulk total does not equal the sum of the target balances."""

    def __init__(self, expected_cents: int, supplied_cents: int):
        self.expected_cents = expected_cents
        self.supplied_cents = supplied_cents
        super().__init__(
            f"Bulk amount {supplied_cents} does not match outstanding balance {expected_cents}"
        )


# ── not found ────────────────────────────────────────


class NotFoundError(LedgerError):
    entity = "record"

    def __init__(self, identifier: str | None = None):
        self.identifier = identifier
        super().__init__(f"{self.entity} {identifier or ''} not found".strip())


class PropertyNotFoundError(NotFoundError):
    entity = "Property"


class FolioNotFoundError(NotFoundError):
    entity = "Folio"


class FolioItemNotFoundError(NotFoundError):
    entity = "Folio item"


class PaymentNotFoundError(NotFoundError):
    entity = "Payment"


class GuestNotFoundError(NotFoundError):
    entity = "Guest"


class ReservationNotFoundError(NotFoundError):
    entity = "Reservation"


class CorporateAccountNotFoundError(NotFoundError):
    entity = "Corporate account"


class NightAuditNotFoundError(NotFoundError):
    entity = "Night audit"


# ── policy ───────────────────────────────────────────


class CreditLimitExceededError(LedgerError):
    """Billing would push a corporate account over its credit limit."""

    def __init__(self, account_id: str, current_cents: int, additional_cents: int, limit_cents: int):
        self.account_id = account_id
        self.current_cents = current_cents
        self.additional_cents = additional_cents
        self.limit_cents = limit_cents
        super().__init__(
            f"Corporate account {account_id} would exceed its credit limit "
            f"({current_cents} + {additional_cents} > {limit_cents})"
        )


# ── state conflicts ──────────────────────────────────────


class FolioClosedError(LedgerError):
    """Folio is not open for the requested operation."""

    def __init__(self, folio_id: str, status: str = "closed"):
        self.folio_id = folio_id
        self.status = status
        super().__init__(f"Folio {folio_id} is {status}")


class FolioStateError(LedgerError):
    """Folio status does not allow the requested transition."""

    def __init__(self, folio_id: str, status: str, action: str):
        self.folio_id = folio_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} folio {folio_id} in status '{status}'")


class FolioVersionConflictError(LedgerError):
    """Caller's folio version is stale (someone else wrote first)."""

    def __init__(self, folio_id: str, expected: int, actual: int):
        self.folio_id = folio_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Folio {folio_id} is at version {actual}, expected {expected}")


class BusinessDateClosedError(LedgerError):
    """A completed night audit sealed this business date."""

    def __init__(self, business_date: str):
        self.business_date = business_date
        super().__init__(f"Business date {business_date} is closed by night audit")


class RoomNightAlreadyChargedError(LedgerError):
    """The room already carries a room charge for this business date."""

    def __init__(self, room_id: str, service_date: str):
        self.room_id = room_id
        self.service_date = service_date
        super().__init__(f"Room {room_id} is already charged for {service_date}")


class PaymentAlreadyVoidedError(LedgerError):
    pass


class ItemAlreadyReversedError(LedgerError):
    pass


# ── night audit ──────────────────────────────────────


class NightAuditStateError(LedgerError):
    """Requested step is not allowed from the audit's current status."""

    def __init__(self, business_date: str, status: str, action: str):
        self.business_date = business_date
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} night audit {business_date} in status '{status}'")


class NightAuditStepError(LedgerError):
    """A step failed; the audit was marked failed and must be re-invoked."""

    def __init__(self, business_date: str, step: str, detail: str):
        self.business_date = business_date
        self.step = step
        self.detail = detail
        super().__init__(f"Night audit {business_date} failed during {step}: {detail}")

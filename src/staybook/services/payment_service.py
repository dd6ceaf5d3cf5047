"""Payment service - payments, refunds and voids on guest folios.

Rules:
- Amounts are positive integers in minor units; a refund is its own row kind.
- Overpayment is allowed (a negative balance is a guest credit).
- A void is a soft flag; the folio is recalculated and any corporate
  balance effect of the payment is reversed.
- Corporate billing goes through corporate_service, never record_payment.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import (
    CorporateAccountNotFoundError,
    PaymentAlreadyVoidedError,
    PaymentNotFoundError,
    ValidationError,
)
from staybook.domain.folio import CorporateDirection, PaymentKind, PaymentMethod
from staybook.infra.repositories import corporate_repository, payments_repository
from staybook.observability.logging import get_logger, log_fields
from staybook.services import folio_service

logger = get_logger(__name__)


def _parse_method(method: str) -> PaymentMethod:
    try:
        return PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"Unknown payment method '{method}'") from None


def post_to_locked_folio(
    cur: PgCursor,
    *,
    property_id: str,
    folio: dict[str, Any],
    kind: PaymentKind,
    amount_cents: int,
    method: PaymentMethod,
    reference_number: str | None = None,
    notes: str | None = None,
    corporate_account_id: str | None = None,
    corporate_direction: CorporateDirection | None = None,
    recorded_by: str | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Insert a payment row on a folio the caller has locked, then recalculate.

    Returns:
        (payment, folio) after recalculation.
    """
    payment = payments_repository.insert_payment(
        cur,
        folio_id=folio["id"],
        property_id=property_id,
        kind=kind.value,
        amount_cents=amount_cents,
        method=method.value,
        reference_number=reference_number,
        notes=notes,
        corporate_account_id=corporate_account_id,
        corporate_direction=corporate_direction.value if corporate_direction else None,
        recorded_by=recorded_by,
    )
    updated = folio_service.recalculate(cur, property_id=property_id, folio_id=folio["id"])
    return payment, updated


def record_payment(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    amount_cents: int,
    method: str,
    reference_number: str | None = None,
    notes: str | None = None,
    recorded_by: str | None = None,
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Record a guest payment against an open folio.

    Returns:
        {"payment": ..., "folio": ...}

    Raises:
        ValidationError: Non-positive amount, unknown or corporate method.
        FolioNotFoundError / FolioClosedError / FolioVersionConflictError.
    """
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be > 0")
    payment_method = _parse_method(method)
    if payment_method == PaymentMethod.CORPORATE_BILLING:
        raise ValidationError("Corporate billing must go through the corporate account")

    folio = folio_service.lock_folio(
        cur, property_id=property_id, folio_id=folio_id, expected_version=expected_version
    )
    payment, folio = post_to_locked_folio(
        cur,
        property_id=property_id,
        folio=folio,
        kind=PaymentKind.PAYMENT,
        amount_cents=amount_cents,
        method=payment_method,
        reference_number=reference_number,
        notes=notes,
        recorded_by=recorded_by,
    )

    logger.info(
        "payment recorded",
        extra=log_fields(
            property_id=property_id,
            folio_id=folio_id,
            payment_id=payment["id"],
            amount_cents=amount_cents,
            method=payment_method.value,
            balance_cents=folio["balance_cents"],
        ),
    )
    return {"payment": payment, "folio": folio}


def record_refund(
    cur: PgCursor,
    *,
    property_id: str,
    folio_id: str,
    amount_cents: int,
    method: str,
    reason: str,
    reference_number: str | None = None,
    recorded_by: str | None = None,
) -> dict[str, Any]:
    """Refund money to the guest.

    Raises:
        ValidationError: Non-positive amount, or more than the net amount paid.
    """
    if amount_cents <= 0:
        raise ValidationError("Refund amount must be > 0")
    payment_method = _parse_method(method)
    if payment_method == PaymentMethod.CORPORATE_BILLING:
        raise ValidationError("Corporate billing cannot be refunded to the guest")

    folio = folio_service.lock_folio(cur, property_id=property_id, folio_id=folio_id)
    if amount_cents > folio["paid_cents"]:
        raise ValidationError(
            f"Refund {amount_cents} exceeds the net amount paid ({folio['paid_cents']})"
        )

    refund, folio = post_to_locked_folio(
        cur,
        property_id=property_id,
        folio=folio,
        kind=PaymentKind.REFUND,
        amount_cents=amount_cents,
        method=payment_method,
        reference_number=reference_number,
        notes=reason,
        recorded_by=recorded_by,
    )
    logger.info(
        "refund recorded",
        extra=log_fields(property_id=property_id, folio_id=folio_id, payment_id=refund["id"], amount_cents=amount_cents),
    )
    return {"payment": refund, "folio": folio}


def void_payment(
    cur: PgCursor,
    *,
    property_id: str,
    payment_id: str,
    reason: str,
    voided_by: str | None = None,
) -> dict[str, Any]:
    """Void a payment or refund.

    Lock order is folio, then payment, then corporate account (the same
    order every other ledger mutation uses).

    Raises:
        PaymentNotFoundError: Payment does not exist for this property.
        PaymentAlreadyVoidedError: Payment is already voided.
        FolioClosedError: The folio must be reopened first.
    """
    if not reason.strip():
        raise ValidationError("A void needs a reason")

    payment = payments_repository.get_payment(cur, property_id=property_id, payment_id=payment_id)
    if payment is None:
        raise PaymentNotFoundError(payment_id)

    folio_service.lock_folio(cur, property_id=property_id, folio_id=payment["folio_id"])
    payment = payments_repository.lock_payment(cur, property_id=property_id, payment_id=payment_id)
    if payment is None:
        raise PaymentNotFoundError(payment_id)
    if payment["voided"]:
        raise PaymentAlreadyVoidedError(f"Payment {payment_id} is already voided")

    account_balance = None
    if payment["corporate_account_id"]:
        account = corporate_repository.lock_account(
            cur, property_id=property_id, account_id=payment["corporate_account_id"]
        )
        if account is None:
            raise CorporateAccountNotFoundError(payment["corporate_account_id"])
        direction = CorporateDirection(payment["corporate_direction"])
        account_balance = corporate_repository.apply_balance_delta(
            cur, account_id=account.id, delta_cents=-direction.sign * payment["amount_cents"]
        )

    voided = payments_repository.mark_payment_voided(
        cur, payment_id=payment_id, voided_by=voided_by, reason=reason.strip()
    )
    folio = folio_service.recalculate(cur, property_id=property_id, folio_id=payment["folio_id"])

    logger.info(
        "payment voided",
        extra=log_fields(
            property_id=property_id,
            folio_id=payment["folio_id"],
            payment_id=payment_id,
            amount_cents=payment["amount_cents"],
            corporate_account_id=payment["corporate_account_id"],
        ),
    )
    result: dict[str, Any] = {"payment": voided, "folio": folio}
    if account_balance is not None:
        result["corporate_balance_cents"] = account_balance
    return result

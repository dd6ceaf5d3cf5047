"""Bulk and corporate payment distribution across several folios.

A batch runs inside the caller's single transaction: either every folio
posting (and the account balance change) lands, or none does. Folios are
locked in ascending id order so two concurrent batches cannot deadlock.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.corporate import ensure_within_credit_limit
from staybook.domain.errors import (
    BulkAmountMismatchError,
    CorporateAccountNotFoundError,
    FolioNotFoundError,
    ValidationError,
)
from staybook.domain.folio import CorporateDirection, PaymentKind, PaymentMethod
from staybook.infra.db import lock_rows
from staybook.infra.property_settings import load_billing_settings
from staybook.infra.repositories import corporate_repository, outbox_repository
from staybook.observability.logging import get_logger, log_fields
from staybook.services import folio_service
from staybook.services.payment_service import post_to_locked_folio

logger = get_logger(__name__)


@dataclass(frozen=True)
class Allocation:
    folio_id: str
    amount_cents: int


def _lock_open_folios(cur: PgCursor, *, property_id: str, folio_ids: Sequence[str]) -> list[dict[str, Any]]:
    if not folio_ids:
        raise ValidationError("At least one folio is required")
    if len(set(folio_ids)) != len(folio_ids):
        raise ValidationError("A folio may appear only once per batch")

    locked = lock_rows(cur, "folios", list(folio_ids), property_id=property_id)
    missing = set(folio_ids) - set(locked)
    if missing:
        raise FolioNotFoundError(sorted(missing)[0])

    return [folio_service.lock_folio(cur, property_id=property_id, folio_id=fid) for fid in locked]


def distribute_payment(
    cur: PgCursor,
    *,
    property_id: str,
    folio_ids: Sequence[str],
    total_amount_cents: int,
    method: str,
    reference_number: str | None = None,
    notes: str | None = None,
    recorded_by: str | None = None,
) -> dict[str, Any]:
    """Settle several folios with one payment, each paid exactly its balance.

    Raises:
        ValidationError: Empty/duplicate folio list, non-positive total, a
            folio with nothing outstanding, or a corporate method.
        BulkAmountMismatchError: total_amount_cents != sum of the balances.
        FolioNotFoundError / FolioClosedError.
    """
    if total_amount_cents <= 0:
        raise ValidationError("Bulk amount must be > 0")
    try:
        payment_method = PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"Unknown payment method '{method}'") from None
    if payment_method == PaymentMethod.CORPORATE_BILLING:
        raise ValidationError("Corporate billing must go through the corporate account")

    folios = _lock_open_folios(cur, property_id=property_id, folio_ids=folio_ids)
    for folio in folios:
        if folio["balance_cents"] <= 0:
            raise ValidationError(f"Folio {folio['folio_number']} has no outstanding balance")

    expected = sum(f["balance_cents"] for f in folios)
    if expected != total_amount_cents:
        raise BulkAmountMismatchError(expected, total_amount_cents)

    payments, updated = [], []
    for folio in folios:
        payment, folio_after = post_to_locked_folio(
            cur,
            property_id=property_id,
            folio=folio,
            kind=PaymentKind.PAYMENT,
            amount_cents=folio["balance_cents"],
            method=payment_method,
            reference_number=reference_number,
            notes=notes,
            recorded_by=recorded_by,
        )
        payments.append(payment)
        updated.append(folio_after)

    logger.info(
        "bulk payment distributed",
        extra=log_fields(property_id=property_id, folios=len(folios), total_amount_cents=total_amount_cents),
    )
    return {"total_amount_cents": total_amount_cents, "payments": payments, "folios": updated}


def distribute_corporate(
    cur: PgCursor,
    *,
    property_id: str,
    corporate_account_id: str,
    allocations: Sequence[Allocation],
    direction: CorporateDirection,
    method: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    recorded_by: str | None = None,
    override_credit_limit: bool = False,
) -> dict[str, Any]:
    """Post attributed payments on several folios for one corporate account.

    direction BILLED settles the folios by charging the company: method is
    corporate_billing, the credit limit is enforced and the balance goes up
    by the batch total. RECEIVED records money paid by the company: the
    balance goes down by the total. The balance changes once, after every
    folio posting succeeded.

    Either way an allocation only covers what the folio still owes, and
    only folios of guests linked to the account can be allocated.

    Raises:
        ValidationError: Bad allocations, inactive account, wrong method, a
            folio whose guest is not linked to the account, or an allocation
            larger than the folio's outstanding balance.
        CorporateAccountNotFoundError: Unknown account.
        CreditLimitExceededError: Billing over the limit without override.
    """
    for allocation in allocations:
        if allocation.amount_cents <= 0:
            raise ValidationError("Allocation amounts must be > 0")

    if direction == CorporateDirection.BILLED:
        payment_method = PaymentMethod.CORPORATE_BILLING
    else:
        try:
            payment_method = PaymentMethod(method or PaymentMethod.BANK_TRANSFER.value)
        except ValueError:
            raise ValidationError(f"Unknown payment method '{method}'") from None
        if payment_method == PaymentMethod.CORPORATE_BILLING:
            raise ValidationError("A received corporate payment needs a real payment method")

    by_folio = {a.folio_id: a.amount_cents for a in allocations}
    folios = _lock_open_folios(cur, property_id=property_id, folio_ids=[a.folio_id for a in allocations])

    account = corporate_repository.lock_account(cur, property_id=property_id, account_id=corporate_account_id)
    if account is None:
        raise CorporateAccountNotFoundError(corporate_account_id)
    if not account.is_active:
        raise ValidationError(f"Corporate account {account.company_name} is inactive")

    linked = corporate_repository.linked_guest_ids(
        cur,
        property_id=property_id,
        account_id=account.id,
        guest_ids=sorted({f["guest_id"] for f in folios if f["guest_id"]}),
    )
    for folio in folios:
        if folio["guest_id"] not in linked:
            raise ValidationError(
                f"Guest of folio {folio['folio_number']} is not linked to {account.company_name}"
            )
        if by_folio[folio["id"]] > folio["balance_cents"]:
            raise ValidationError(
                f"Allocation exceeds the outstanding balance of folio {folio['folio_number']}"
            )

    total = sum(by_folio.values())
    if direction == CorporateDirection.BILLED:
        ensure_within_credit_limit(account, total, override=override_credit_limit)

    payments, updated = [], []
    for folio in folios:
        payment, folio_after = post_to_locked_folio(
            cur,
            property_id=property_id,
            folio=folio,
            kind=PaymentKind.PAYMENT,
            amount_cents=by_folio[folio["id"]],
            method=payment_method,
            reference_number=reference_number,
            notes=notes,
            corporate_account_id=account.id,
            corporate_direction=direction,
            recorded_by=recorded_by,
        )
        payments.append(payment)
        updated.append(folio_after)

    balance = corporate_repository.apply_balance_delta(
        cur, account_id=account.id, delta_cents=direction.sign * total
    )

    if direction == CorporateDirection.BILLED:
        currency = load_billing_settings(cur, property_id).currency
        for payment, folio in zip(payments, updated):
            outbox_repository.emit_corporate_billed(
                cur,
                property_id=property_id,
                corporate_account_id=account.id,
                folio_id=folio["id"],
                folio_number=folio["folio_number"],
                payment_id=payment["id"],
                amount_cents=payment["amount_cents"],
                currency=currency,
            )

    logger.info(
        "corporate payment distributed",
        extra=log_fields(
            property_id=property_id,
            corporate_account_id=account.id,
            direction=direction.value,
            folios=len(folios),
            total_amount_cents=total,
            balance_cents=balance,
            credit_override=override_credit_limit,
        ),
    )
    return {
        "corporate_account_id": account.id,
        "direction": direction.value,
        "total_amount_cents": total,
        "current_balance_cents": balance,
        "payments": payments,
        "folios": updated,
    }

"""Corporate account endpoints - credit checks, billing and company payments."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from staybook.api.errors import ledger_http_error
from staybook.api.rbac import PropertyRoleContext, require_property_role
from staybook.domain.errors import LedgerError
from staybook.domain.folio import CorporateDirection, PaymentMethod
from staybook.observability.logging import get_logger, log_fields

router = APIRouter(prefix="/corporate-accounts", tags=["corporate"])

logger = get_logger(__name__)


# ── Request schemas ──────────────────────────────────────


class AllocationIn(BaseModel):
    folio_id: str
    amount_cents: int = Field(..., gt=0)


class BillAccountRequest(BaseModel):
    """Bill folios to the account: one folio (amount defaults to its balance)
    or an explicit allocation list."""

    folio_id: str | None = None
    amount_cents: int | None = Field(None, gt=0)
    allocations: list[AllocationIn] | None = None
    reference_number: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=500)
    override_credit_limit: bool = False


class CorporatePaymentRequest(BaseModel):
    allocations: list[AllocationIn] = Field(..., min_length=1)
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    reference_number: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=500)


# ── Endpoints ────────────────────────────────────────────


@router.get("/{account_id}/credit-check")
def credit_check(
    account_id: str = Path(..., description="Corporate account UUID"),
    amount_cents: int = Query(..., ge=0),
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    """Would billing amount_cents exceed the account's credit limit?"""
    from staybook.infra.db import txn
    from staybook.services.corporate_service import check_credit

    with txn() as cur:
        try:
            return check_credit(cur, property_id=ctx.property_id, account_id=account_id, amount_cents=amount_cents)
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.get("/{account_id}/outstanding-folios")
def outstanding_folios(
    account_id: str = Path(..., description="Corporate account UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("viewer")),
) -> dict:
    from staybook.infra.db import txn
    from staybook.services.corporate_service import outstanding_folios as svc_outstanding

    with txn() as cur:
        try:
            return svc_outstanding(cur, property_id=ctx.property_id, account_id=account_id)
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.get("/{account_id}/statement")
def statement(
    account_id: str = Path(..., description="Corporate account UUID"),
    start: date | None = Query(None, description="First day (default: first of the current month)"),
    end: date | None = Query(None, description="Last day, inclusive (default: end of the current month)"),
    ctx: PropertyRoleContext = Depends(require_property_role("viewer")),
) -> dict:
    """Payments attributed to the account over a date range, with billed, received and voided totals."""
    from staybook.infra.db import txn
    from staybook.services.corporate_service import corporate_statement

    with txn() as cur:
        try:
            return corporate_statement(
                cur, property_id=ctx.property_id, account_id=account_id, start=start, end=end
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.get("/{account_id}/reconcile")
def reconcile(
    account_id: str = Path(..., description="Corporate account UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("manager")),
) -> dict:
    """Stored balance versus the balance implied by attributed payments."""
    from staybook.infra.db import txn
    from staybook.services.corporate_service import reconcile_balance

    with txn() as cur:
        try:
            return reconcile_balance(cur, property_id=ctx.property_id, account_id=account_id)
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/{account_id}/bill", status_code=201)
def bill_account(
    body: BillAccountRequest,
    account_id: str = Path(..., description="Corporate account UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    """Settle folios by billing the company (its balance goes up).

    Exceeding the credit limit needs override_credit_limit, which only
    managers and owners may set.
    """
    from staybook.infra.db import txn
    from staybook.services.bulk_payment_service import Allocation, distribute_corporate
    from staybook.services.corporate_service import bill_corporate_account

    if (body.folio_id is None) == (body.allocations is None):
        raise HTTPException(status_code=422, detail="Provide either folio_id or allocations")
    if body.override_credit_limit and not ctx.at_least("manager"):
        raise HTTPException(status_code=403, detail="Credit limit override requires manager role")

    with txn() as cur:
        try:
            if body.folio_id is not None:
                result = bill_corporate_account(
                    cur,
                    property_id=ctx.property_id,
                    account_id=account_id,
                    folio_id=body.folio_id,
                    amount_cents=body.amount_cents,
                    billed_by=ctx.user.id,
                    reference_number=body.reference_number,
                    notes=body.notes,
                    override_credit_limit=body.override_credit_limit,
                )
            else:
                result = distribute_corporate(
                    cur,
                    property_id=ctx.property_id,
                    corporate_account_id=account_id,
                    allocations=[Allocation(a.folio_id, a.amount_cents) for a in body.allocations or []],
                    direction=CorporateDirection.BILLED,
                    reference_number=body.reference_number,
                    notes=body.notes,
                    recorded_by=ctx.user.id,
                    override_credit_limit=body.override_credit_limit,
                )
        except LedgerError as exc:
            raise ledger_http_error(exc)

    if body.override_credit_limit:
        logger.warning(
            "credit limit override used",
            extra=log_fields(
                property_id=ctx.property_id,
                corporate_account_id=account_id,
                user_id=ctx.user.id,
                total_amount_cents=result["total_amount_cents"],
            ),
        )
    return result


@router.post("/{account_id}/payments", status_code=201)
def receive_payment(
    body: CorporatePaymentRequest,
    account_id: str = Path(..., description="Corporate account UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    """Record money received from the company across folios (its balance goes down)."""
    from staybook.infra.db import txn
    from staybook.services.bulk_payment_service import Allocation, distribute_corporate

    with txn() as cur:
        try:
            return distribute_corporate(
                cur,
                property_id=ctx.property_id,
                corporate_account_id=account_id,
                allocations=[Allocation(a.folio_id, a.amount_cents) for a in body.allocations],
                direction=CorporateDirection.RECEIVED,
                method=body.method.value,
                reference_number=body.reference_number,
                notes=body.notes,
                recorded_by=ctx.user.id,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)

"""Payment endpoints - guest payments, refunds, voids and bulk settlement."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, Field

from staybook.api.errors import ledger_http_error
from staybook.api.rbac import PropertyRoleContext, require_property_role
from staybook.domain.errors import LedgerError
from staybook.domain.folio import PaymentMethod

router = APIRouter(tags=["payments"])


# ── Request schemas ──────────────────────────────────────


class RecordPaymentRequest(BaseModel):
    amount_cents: int = Field(..., gt=0, description="Amount in cents (must be > 0)")
    method: PaymentMethod
    reference_number: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=500)
    expected_version: int | None = Field(None, ge=0)


class RefundRequest(BaseModel):
    amount_cents: int = Field(..., gt=0)
    method: PaymentMethod
    reason: str = Field(..., min_length=1, max_length=255)
    reference_number: str | None = Field(None, max_length=100)


class VoidPaymentRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class BulkPaymentRequest(BaseModel):
    folio_ids: list[str] = Field(..., min_length=1)
    total_amount_cents: int = Field(..., gt=0)
    method: PaymentMethod
    reference_number: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=500)


# ── Endpoints ────────────────────────────────────────────


@router.post("/folios/{folio_id}/payments", status_code=201)
def record_payment(
    body: RecordPaymentRequest,
    folio_id: str = Path(..., description="Folio UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    """Record a guest payment. Overpayment leaves a credit balance."""
    from staybook.infra.db import txn
    from staybook.services.payment_service import record_payment as svc_record_payment

    with txn() as cur:
        try:
            return svc_record_payment(
                cur,
                property_id=ctx.property_id,
                folio_id=folio_id,
                amount_cents=body.amount_cents,
                method=body.method.value,
                reference_number=body.reference_number,
                notes=body.notes,
                recorded_by=ctx.user.id,
                expected_version=body.expected_version,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/folios/{folio_id}/refunds", status_code=201)
def record_refund(
    body: RefundRequest,
    folio_id: str = Path(..., description="Folio UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("manager")),
) -> dict:
    """Refund the guest (up to the net amount paid). Requires manager role or higher."""
    from staybook.infra.db import txn
    from staybook.services.payment_service import record_refund as svc_record_refund

    with txn() as cur:
        try:
            return svc_record_refund(
                cur,
                property_id=ctx.property_id,
                folio_id=folio_id,
                amount_cents=body.amount_cents,
                method=body.method.value,
                reason=body.reason,
                reference_number=body.reference_number,
                recorded_by=ctx.user.id,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/payments/{payment_id}/void")
def void_payment(
    body: VoidPaymentRequest,
    payment_id: str = Path(..., description="Payment UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("manager")),
) -> dict:
    """Void a payment or refund. Requires manager role or higher."""
    from staybook.infra.db import txn
    from staybook.services.payment_service import void_payment as svc_void_payment

    with txn() as cur:
        try:
            return svc_void_payment(
                cur,
                property_id=ctx.property_id,
                payment_id=payment_id,
                reason=body.reason,
                voided_by=ctx.user.id,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/payments/bulk", status_code=201)
def bulk_payment(
    body: BulkPaymentRequest,
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    """Settle several folios at once; the total must equal their combined balance."""
    from staybook.infra.db import txn
    from staybook.services.bulk_payment_service import distribute_payment

    with txn() as cur:
        try:
            return distribute_payment(
                cur,
                property_id=ctx.property_id,
                folio_ids=body.folio_ids,
                total_amount_cents=body.total_amount_cents,
                method=body.method.value,
                reference_number=body.reference_number,
                notes=body.notes,
                recorded_by=ctx.user.id,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)

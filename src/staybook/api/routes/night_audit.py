"""Night audit endpoints.

The three steps are separate calls so an operator can inspect the result of
each one. Every step manages its own transactions.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from staybook.api.errors import ledger_http_error
from staybook.api.rbac import PropertyRoleContext, require_property_role
from staybook.domain.errors import LedgerError

router = APIRouter(prefix="/night-audit", tags=["night-audit"])


class AuditStepRequest(BaseModel):
    business_date: date


class CompleteAuditRequest(AuditStepRequest):
    notes: str | None = Field(None, max_length=1000)


@router.get("/current")
def current_audit(ctx: PropertyRoleContext = Depends(require_property_role("viewer"))) -> dict:
    """Current business date and its audit record (null before the audit starts)."""
    from staybook.services.night_audit_service import get_current_audit

    try:
        return get_current_audit(property_id=ctx.property_id)
    except LedgerError as exc:
        raise ledger_http_error(exc)


@router.get("/history")
def audit_history(
    limit: int = Query(30, ge=1, le=365),
    offset: int = Query(0, ge=0),
    ctx: PropertyRoleContext = Depends(require_property_role("viewer")),
) -> list[dict]:
    from staybook.services.night_audit_service import list_audit_history

    return list_audit_history(property_id=ctx.property_id, limit=limit, offset=offset)


@router.get("/statistics")
def audit_statistics(
    business_date: date = Query(...),
    ctx: PropertyRoleContext = Depends(require_property_role("viewer")),
) -> dict:
    """Occupancy, ADR, RevPAR and revenue of a business date."""
    from staybook.services.night_audit_service import get_statistics

    try:
        return get_statistics(property_id=ctx.property_id, business_date=business_date)
    except LedgerError as exc:
        raise ledger_http_error(exc)


@router.post("/start")
def start_audit(ctx: PropertyRoleContext = Depends(require_property_role("manager"))) -> dict:
    from staybook.services.night_audit_service import start_audit as svc_start_audit

    try:
        return svc_start_audit(property_id=ctx.property_id, run_by=ctx.user.id)
    except LedgerError as exc:
        raise ledger_http_error(exc)


@router.post("/post-charges")
def post_room_charges(
    body: AuditStepRequest,
    ctx: PropertyRoleContext = Depends(require_property_role("manager")),
) -> dict:
    from staybook.services.night_audit_service import post_room_charges as svc_post_room_charges

    try:
        return svc_post_room_charges(
            property_id=ctx.property_id,
            business_date=body.business_date,
            posted_by=ctx.user.id,
        )
    except LedgerError as exc:
        raise ledger_http_error(exc)


@router.post("/complete")
def complete_audit(
    body: CompleteAuditRequest,
    ctx: PropertyRoleContext = Depends(require_property_role("manager")),
) -> dict:
    """Aggregate statistics and seal the business date."""
    from staybook.services.night_audit_service import complete_audit as svc_complete_audit

    try:
        return svc_complete_audit(
            property_id=ctx.property_id,
            business_date=body.business_date,
            notes=body.notes,
            completed_by=ctx.user.id,
        )
    except LedgerError as exc:
        raise ledger_http_error(exc)

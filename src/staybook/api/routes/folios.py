"""Folio endpoints — lifecycle, charges and corrections."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field

from staybook.api.errors import ledger_http_error
from staybook.api.rbac import PropertyRoleContext, require_property_role
from staybook.domain.errors import LedgerError
from staybook.domain.folio import ChargeInput, FolioItemType, FolioStatus

router = APIRouter(prefix="/folios", tags=["folios"])


# ── Request schemas ──────────────────────────────────────


class OpenFolioRequest(BaseModel):
    guest_id: str
    reservation_id: str | None = None


class PostChargeRequest(ChargeInput):
    expected_version: int | None = Field(None, ge=0)


class AdjustmentRequest(BaseModel):
    item_type: FolioItemType = FolioItemType.ADJUSTMENT
    amount_cents: int = Field(..., description="Discount: positive magnitude. Adjustment: signed.")
    reason: str = Field(..., min_length=1, max_length=255)
    expected_version: int | None = Field(None, ge=0)


class VoidItemRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)
    expected_version: int | None = Field(None, ge=0)


class TransferItemRequest(BaseModel):
    target_folio_id: str


class SplitFolioRequest(BaseModel):
    item_ids: list[str] = Field(..., min_length=1)


# ── Reads ────────────────────────────────────────────────


@router.get("")
def list_folios(
    status: FolioStatus | None = Query(None),
    guest_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: PropertyRoleContext = Depends(require_property_role("viewer")),
) -> list[dict]:
    from staybook.infra.db import txn
    from staybook.services.folio_service import list_folios as svc_list_folios

    with txn() as cur:
        return svc_list_folios(
            cur,
            property_id=ctx.property_id,
            status=status.value if status else None,
            guest_id=guest_id,
            limit=limit,
            offset=offset,
        )


@router.get("/stats")
def folio_stats(ctx: PropertyRoleContext = Depends(require_property_role("viewer"))) -> dict:
    """Open/closed counts, open balance and today's net payments."""
    from staybook.infra.db import txn
    from staybook.services.folio_service import folio_stats as svc_folio_stats

    with txn() as cur:
        try:
            return svc_folio_stats(cur, property_id=ctx.property_id)
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.get("/by-reservation/{reservation_id}")
def get_folio_by_reservation(
    reservation_id: str = Path(..., description="Reservation UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("viewer")),
) -> dict:
    from staybook.infra.db import txn
    from staybook.services.folio_service import get_folio_by_reservation as svc_get

    with txn() as cur:
        try:
            return svc_get(cur, property_id=ctx.property_id, reservation_id=reservation_id)
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.get("/{folio_id}")
def get_folio(
    folio_id: str = Path(..., description="Folio UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("viewer")),
) -> dict:
    """Folio with totals, line items and payments."""
    from staybook.infra.db import txn
    from staybook.services.folio_service import get_folio as svc_get_folio

    with txn() as cur:
        try:
            return svc_get_folio(cur, property_id=ctx.property_id, folio_id=folio_id)
        except LedgerError as exc:
            raise ledger_http_error(exc)


# ── Lifecycle ────────────────────────────────────────────


@router.post("", status_code=201)
def open_folio(
    body: OpenFolioRequest,
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    from staybook.infra.db import txn
    from staybook.services.folio_service import open_folio as svc_open_folio

    with txn() as cur:
        try:
            return svc_open_folio(
                cur,
                property_id=ctx.property_id,
                guest_id=body.guest_id,
                reservation_id=body.reservation_id,
                opened_by=ctx.user.id,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/{folio_id}/close")
def close_folio(
    folio_id: str = Path(..., description="Folio UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    from staybook.infra.db import txn
    from staybook.services.folio_service import close_folio as svc_close_folio

    with txn() as cur:
        try:
            return svc_close_folio(cur, property_id=ctx.property_id, folio_id=folio_id, closed_by=ctx.user.id)
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/{folio_id}/reopen")
def reopen_folio(
    folio_id: str = Path(..., description="Folio UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("manager")),
) -> dict:
    """Reopen a closed folio. Requires manager role or higher."""
    from staybook.infra.db import txn
    from staybook.services.folio_service import reopen_folio as svc_reopen_folio

    with txn() as cur:
        try:
            return svc_reopen_folio(cur, property_id=ctx.property_id, folio_id=folio_id, reopened_by=ctx.user.id)
        except LedgerError as exc:
            raise ledger_http_error(exc)


# ── Postings ─────────────────────────────────────────────


@router.post("/{folio_id}/charges", status_code=201)
def post_charge(
    body: PostChargeRequest,
    folio_id: str = Path(..., description="Folio UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    """Post a charge; tax and service-charge lines are added automatically."""
    from staybook.infra.db import txn
    from staybook.services.folio_service import post_charge as svc_post_charge

    item = ChargeInput(**body.model_dump(exclude={"expected_version"}))
    with txn() as cur:
        try:
            return svc_post_charge(
                cur,
                property_id=ctx.property_id,
                folio_id=folio_id,
                item=item,
                posted_by=ctx.user.id,
                expected_version=body.expected_version,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/{folio_id}/adjustments", status_code=201)
def post_adjustment(
    body: AdjustmentRequest,
    folio_id: str = Path(..., description="Folio UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("manager")),
) -> dict:
    """Post a discount or a signed adjustment. Requires manager role or higher."""
    from staybook.infra.db import txn
    from staybook.services.folio_service import post_adjustment as svc_post_adjustment

    with txn() as cur:
        try:
            return svc_post_adjustment(
                cur,
                property_id=ctx.property_id,
                folio_id=folio_id,
                item_type=body.item_type.value,
                amount_cents=body.amount_cents,
                reason=body.reason,
                posted_by=ctx.user.id,
                expected_version=body.expected_version,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/{folio_id}/items/{item_id}/void")
def void_item(
    body: VoidItemRequest,
    folio_id: str = Path(..., description="Folio UUID"),
    item_id: str = Path(..., description="Folio item UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("manager")),
) -> dict:
    from staybook.infra.db import txn
    from staybook.services.folio_service import void_item as svc_void_item

    with txn() as cur:
        try:
            return svc_void_item(
                cur,
                property_id=ctx.property_id,
                folio_id=folio_id,
                item_id=item_id,
                reason=body.reason,
                voided_by=ctx.user.id,
                expected_version=body.expected_version,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/{folio_id}/items/{item_id}/transfer")
def transfer_item(
    body: TransferItemRequest,
    folio_id: str = Path(..., description="Folio UUID"),
    item_id: str = Path(..., description="Folio item UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    from staybook.infra.db import txn
    from staybook.services.folio_service import transfer_item as svc_transfer_item

    with txn() as cur:
        try:
            return svc_transfer_item(
                cur,
                property_id=ctx.property_id,
                folio_id=folio_id,
                item_id=item_id,
                target_folio_id=body.target_folio_id,
                transferred_by=ctx.user.id,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)


@router.post("/{folio_id}/split", status_code=201)
def split_folio(
    body: SplitFolioRequest,
    folio_id: str = Path(..., description="Folio UUID"),
    ctx: PropertyRoleContext = Depends(require_property_role("staff")),
) -> dict:
    from staybook.infra.db import txn
    from staybook.services.folio_service import split_folio as svc_split_folio

    with txn() as cur:
        try:
            return svc_split_folio(
                cur,
                property_id=ctx.property_id,
                folio_id=folio_id,
                item_ids=body.item_ids,
                split_by=ctx.user.id,
            )
        except LedgerError as exc:
            raise ledger_http_error(exc)

"""Tax configuration endpoints (read + calculation preview)."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from staybook.api.errors import ledger_http_error
from staybook.api.rbac import PropertyRoleContext, require_property_role
from staybook.domain.errors import LedgerError
from staybook.domain.taxes import TaxConfig, TaxResult, compute_taxes

router = APIRouter(prefix="/tax-configurations", tags=["taxes"])


class TaxPreviewRequest(BaseModel):
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=50)


def _config_to_dict(config: TaxConfig) -> dict:
    data = asdict(config)
    data["rate"] = str(config.rate)
    data["kind"] = config.kind.value
    data["applies_to"] = list(config.applies_to)
    return data


def _result_to_dict(base_cents: int, result: TaxResult) -> dict:
    return {
        "base_cents": base_cents,
        "tax_cents": result.tax_cents,
        "service_charge_cents": result.service_charge_cents,
        "inclusive_cents": result.inclusive_cents,
        "total_cents": base_cents + result.added_cents,
        "breakdown": [
            {
                "code": line.code,
                "name": line.name,
                "kind": line.kind.value,
                "rate": str(line.rate),
                "amount_cents": line.amount_cents,
                "is_compound": line.is_compound,
                "is_inclusive": line.is_inclusive,
            }
            for line in result.breakdown
        ],
    }


@router.get("")
def list_tax_configurations(
    include_inactive: bool = Query(False),
    ctx: PropertyRoleContext = Depends(require_property_role("viewer")),
) -> list[dict]:
    from staybook.infra.db import txn
    from staybook.infra.repositories.tax_repository import list_tax_configurations as repo_list

    with txn() as cur:
        configs = repo_list(cur, property_id=ctx.property_id, include_inactive=include_inactive)
    return [_config_to_dict(c) for c in configs]


@router.post("/preview")
def preview_taxes(
    body: TaxPreviewRequest,
    ctx: PropertyRoleContext = Depends(require_property_role("viewer")),
) -> dict:
    """What posting a charge of this amount and category would add.

    Includes the property's service charge.
    """
    from staybook.infra.db import txn
    from staybook.infra.property_settings import load_billing_settings
    from staybook.infra.repositories.tax_repository import engine_configs

    with txn() as cur:
        try:
            settings = load_billing_settings(cur, ctx.property_id)
        except LedgerError as exc:
            raise ledger_http_error(exc)
        configs = engine_configs(cur, settings=settings)

    result = compute_taxes(body.amount_cents, body.category, configs)
    return {"currency": settings.currency, **_result_to_dict(body.amount_cents, result)}

"""Corporate accounts - credit guard, billing, received payments and reconciliation."""

from __future__ import annotations

import calendar
from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.corporate import CorporateAccount, would_exceed_credit_limit
from staybook.domain.errors import CorporateAccountNotFoundError, ValidationError
from staybook.domain.folio import CorporateDirection
from staybook.infra.property_settings import load_billing_settings
from staybook.infra.repositories import corporate_repository, payments_repository
from staybook.infra.time import local_now
from staybook.observability.logging import get_logger, log_fields
from staybook.services import folio_service
from staybook.services.bulk_payment_service import Allocation, distribute_corporate

logger = get_logger(__name__)


def _get_account(cur: PgCursor, *, property_id: str, account_id: str) -> CorporateAccount:
    account = corporate_repository.get_account(cur, property_id=property_id, account_id=account_id)
    if account is None:
        raise CorporateAccountNotFoundError(account_id)
    return account


def check_credit(
    cur: PgCursor,
    *,
    property_id: str,
    account_id: str,
    amount_cents: int,
) -> dict[str, Any]:
    """Advisory credit check for the UI (billing re-checks under lock)."""
    if amount_cents < 0:
        raise ValidationError("Amount must be >= 0")
    account = _get_account(cur, property_id=property_id, account_id=account_id)
    return {
        "corporate_account_id": account.id,
        "company_name": account.company_name,
        "current_balance_cents": account.current_balance_cents,
        "credit_limit_cents": account.credit_limit_cents,
        "available_credit_cents": account.available_credit_cents,
        "amount_cents": amount_cents,
        "would_exceed": would_exceed_credit_limit(
            account.current_balance_cents, account.credit_limit_cents, amount_cents
        ),
    }


def bill_corporate_account(
    cur: PgCursor,
    *,
    property_id: str,
    account_id: str,
    folio_id: str,
    amount_cents: int | None = None,
    billed_by: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    override_credit_limit: bool = False,
) -> dict[str, Any]:
    """Settle a folio by charging the company (balance goes up).

    amount_cents defaults to the folio's outstanding balance.
    """
    if amount_cents is None:
        folio = folio_service.lock_folio(cur, property_id=property_id, folio_id=folio_id)
        amount_cents = folio["balance_cents"]
        if amount_cents <= 0:
            raise ValidationError(f"Folio {folio['folio_number']} has no outstanding balance")

    return distribute_corporate(
        cur,
        property_id=property_id,
        corporate_account_id=account_id,
        allocations=[Allocation(folio_id=folio_id, amount_cents=amount_cents)],
        direction=CorporateDirection.BILLED,
        reference_number=reference_number,
        notes=notes,
        recorded_by=billed_by,
        override_credit_limit=override_credit_limit,
    )


def receive_corporate_payment(
    cur: PgCursor,
    *,
    property_id: str,
    account_id: str,
    folio_id: str,
    amount_cents: int,
    method: str = "bank_transfer",
    recorded_by: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    """Record money paid in by the company on a folio (balance goes down)."""
    return distribute_corporate(
        cur,
        property_id=property_id,
        corporate_account_id=account_id,
        allocations=[Allocation(folio_id=folio_id, amount_cents=amount_cents)],
        direction=CorporateDirection.RECEIVED,
        method=method,
        reference_number=reference_number,
        notes=notes,
        recorded_by=recorded_by,
    )


def outstanding_folios(cur: PgCursor, *, property_id: str, account_id: str) -> dict[str, Any]:
    """Open folios with a balance for guests linked to the account."""
    account = _get_account(cur, property_id=property_id, account_id=account_id)
    folios = corporate_repository.list_outstanding_folios(
        cur, property_id=property_id, account_id=account_id
    )
    return {
        "corporate_account_id": account.id,
        "company_name": account.company_name,
        "folios": folios,
        "total_outstanding_cents": sum(f["balance_cents"] for f in folios),
    }


def reconcile_balance(cur: PgCursor, *, property_id: str, account_id: str) -> dict[str, Any]:
    """Compare the stored balance with the one implied by attributed payments.

    Read-only: a non-zero drift is reported, never corrected here.
    """
    account = _get_account(cur, property_id=property_id, account_id=account_id)
    totals = payments_repository.corporate_payment_totals(
        cur, property_id=property_id, corporate_account_id=account_id
    )
    computed = totals["billed_cents"] - totals["received_cents"]
    drift = account.current_balance_cents - computed

    if drift:
        logger.warning(
            "corporate balance drift",
            extra=log_fields(property_id=property_id, corporate_account_id=account_id, drift_cents=drift),
        )
    return {
        "corporate_account_id": account.id,
        "stored_balance_cents": account.current_balance_cents,
        "computed_balance_cents": computed,
        "drift_cents": drift,
        "in_balance": drift == 0,
        **totals,
    }


def corporate_statement(
    cur: PgCursor,
    *,
    property_id: str,
    account_id: str,
    start: date | None = None,
    end: date | None = None,
) -> dict[str, Any]:
    """Attributed payments of an account over a date range, with totals.

    The range is inclusive and defaults to the current month at the
    property. Voided rows are listed but only counted in voided_cents.
    """
    account = _get_account(cur, property_id=property_id, account_id=account_id)
    settings = load_billing_settings(cur, property_id)

    today = local_now(settings.timezone).date()
    start = start or today.replace(day=1)
    end = end or today.replace(day=calendar.monthrange(today.year, today.month)[1])
    if start > end:
        raise ValidationError("Statement start must not be after its end")

    lines = payments_repository.corporate_statement_lines(
        cur,
        property_id=property_id,
        corporate_account_id=account_id,
        start=start,
        end=end,
        timezone=settings.timezone,
    )
    live = [p for p in lines if not p["voided"]]
    billed = sum(p["amount_cents"] for p in live if p["direction"] == CorporateDirection.BILLED.value)
    received = sum(p["amount_cents"] for p in live if p["direction"] == CorporateDirection.RECEIVED.value)
    return {
        "account": {
            "id": account.id,
            "company_name": account.company_name,
            "account_code": account.account_code,
            "current_balance_cents": account.current_balance_cents,
            "credit_limit_cents": account.credit_limit_cents,
            "payment_terms": account.payment_terms,
        },
        "start": start.isoformat(),
        "end": end.isoformat(),
        "currency": settings.currency,
        "payments": lines,
        "totals": {
            "billed_cents": billed,
            "received_cents": received,
            "voided_cents": sum(p["amount_cents"] for p in lines if p["voided"]),
            "net_cents": billed - received,
        },
    }

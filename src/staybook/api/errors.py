"""Translation of ledger errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException

from staybook.domain.errors import (
    BulkAmountMismatchError,
    CreditLimitExceededError,
    LedgerError,
    NightAuditStepError,
    NotFoundError,
    ValidationError,
)


def ledger_http_error(exc: LedgerError) -> HTTPException:
    """Map a LedgerError to the HTTP status the API uses for it.

    404 not found, 422 rejected input, 409 state conflicts and policy
    refusals, 500 for a night audit step that failed (the audit is marked
    failed with the same detail).
    """
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, BulkAmountMismatchError):
        return HTTPException(
            status_code=422,
            detail={
                "message": str(exc),
                "expected_cents": exc.expected_cents,
                "supplied_cents": exc.supplied_cents,
            },
        )
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, CreditLimitExceededError):
        return HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "current_balance_cents": exc.current_cents,
                "amount_cents": exc.additional_cents,
                "credit_limit_cents": exc.limit_cents,
            },
        )
    if isinstance(exc, NightAuditStepError):
        return HTTPException(status_code=500, detail=str(exc))
    return HTTPException(status_code=409, detail=str(exc))

"""Tests for the corporate credit guard."""

import pytest

from staybook.domain.corporate import CorporateAccount, ensure_within_credit_limit, would_exceed_credit_limit
from staybook.domain.errors import CreditLimitExceededError


def _account(balance: int = 800, limit: int | None = 1000) -> CorporateAccount:
    return CorporateAccount(
        id="acct-1",
        property_id="prop-1",
        company_name="Acme Corp",
        account_code="ACME",
        current_balance_cents=balance,
        credit_limit_cents=limit,
    )


@pytest.mark.parametrize(
    "additional, expected",
    [(250, True), (150, False), (200, False), (201, True), (0, False)],
)
def test_would_exceed(additional, expected):
    assert would_exceed_credit_limit(800, 1000, additional) is expected


def test_no_limit_never_exceeds():
    assert would_exceed_credit_limit(10**9, None, 10**9) is False
    assert _account(limit=None).available_credit_cents is None


def test_available_credit():
    assert _account().available_credit_cents == 200


def test_ensure_raises_with_figures():
    with pytest.raises(CreditLimitExceededError) as exc_info:
        ensure_within_credit_limit(_account(), 250)
    err = exc_info.value
    assert (err.current_cents, err.additional_cents, err.limit_cents) == (800, 250, 1000)


def test_override_allows_excess():
    ensure_within_credit_limit(_account(), 250, override=True)

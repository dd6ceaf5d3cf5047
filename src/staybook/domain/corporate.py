"""Corporate credit guard."""

from __future__ import annotations

from dataclasses import dataclass

from staybook.domain.errors import CreditLimitExceededError


@dataclass(frozen=True)
class CorporateAccount:
    id: str
    property_id: str
    company_name: str
    account_code: str | None
    current_balance_cents: int
    credit_limit_cents: int | None
    payment_terms: str | None = None
    is_active: bool = True

    @property
    def available_credit_cents(self) -> int | None:
        if self.credit_limit_cents is None:
            return None
        return self.credit_limit_cents - self.current_balance_cents


def would_exceed_credit_limit(
    current_balance_cents: int,
    credit_limit_cents: int | None,
    additional_cents: int,
) -> bool:
    """True when billing additional_cents would put the account over its limit.

    A NULL limit means the account has no limit.
    """
    if credit_limit_cents is None:
        return False
    return current_balance_cents + additional_cents > credit_limit_cents


def ensure_within_credit_limit(
    account: CorporateAccount,
    additional_cents: int,
    *,
    override: bool = False,
) -> None:
    """Server-side re-check at billing time.

    Raises:
        CreditLimitExceededError: Unless the caller holds an explicit override.
    """
    if override:
        return
    if would_exceed_credit_limit(
        account.current_balance_cents, account.credit_limit_cents, additional_cents
    ):
        raise CreditLimitExceededError(
            account.id,
            account.current_balance_cents,
            additional_cents,
            account.credit_limit_cents,  # type: ignore[arg-type]
        )

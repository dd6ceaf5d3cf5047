"""Tax engine - pure computation of taxes and service charges for one charge.

Rules:
- Only active configurations whose applies_to is empty (or contains "all"
  or the charge category) take part.
- Configurations run in ascending calculation_order; ties keep the order
  they were given in (stable sort). Compound taxes depend on this order.
- A compound tax is computed on the base plus every non-inclusive tax/charge
  applied before it; a simple tax always uses the original base.
- An inclusive tax is already contained in the price: it is extracted
  (base - base / (1 + rate)) for disclosure and never added to the total.
- Amounts stay unrounded through the whole chain. Each breakdown line is
  rounded to the currency's minor unit once, at the end, and the totals are
  the sums of the rounded lines (posted tax lines always add up to the
  folio's tax total).
- Zero-rate configurations produce no breakdown line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Sequence

_HUNDRED = Decimal(100)

# Line item types that never attract tax or service charge.
TAX_EXEMPT_TYPES = frozenset(
    {"tax", "service_charge", "discount", "deposit", "adjustment"}
)

APPLIES_TO_ALL = "all"


class TaxKind(str, Enum):
    TAX = "tax"
    SERVICE_CHARGE = "service_charge"


@dataclass(frozen=True)
class TaxConfig:
    """One configured tax or service charge of a property.

    rate is a percentage (Decimal("10") means 10%).
    """

    code: str
    name: str
    rate: Decimal
    kind: TaxKind = TaxKind.TAX
    is_compound: bool = False
    is_inclusive: bool = False
    calculation_order: int = 0
    applies_to: tuple[str, ...] = ()
    is_active: bool = True

    def applies(self, category: str) -> bool:
        if not self.is_active:
            return False
        if not self.applies_to or APPLIES_TO_ALL in self.applies_to:
            return True
        return category in self.applies_to


@dataclass(frozen=True)
class TaxLine:
    code: str
    name: str
    kind: TaxKind
    rate: Decimal
    amount_cents: int
    is_compound: bool
    is_inclusive: bool


@dataclass(frozen=True)
class TaxResult:
    """Outcome of compute_taxes.

    tax_cents and service_charge_cents are what gets added on top of the base;
    inclusive_cents is disclosed only (already part of the base).
    """

    tax_cents: int = 0
    service_charge_cents: int = 0
    inclusive_cents: int = 0
    breakdown: tuple[TaxLine, ...] = field(default_factory=tuple)

    @property
    def added_cents(self) -> int:
        return self.tax_cents + self.service_charge_cents


def round_minor(amount: Decimal) -> int:
    """Round a Decimal amount of minor units to an integer (half up)."""
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def is_taxable(category: str) -> bool:
    return category not in TAX_EXEMPT_TYPES


def service_charge_config(rate: Decimal) -> TaxConfig:
    """Expose a property's flat service-charge rate to the engine.

    Runs first (order 0) on the raw base so compound taxes include it.
    """
    return TaxConfig(
        code="SVC",
        name="Service Charge",
        rate=Decimal(rate),
        kind=TaxKind.SERVICE_CHARGE,
        calculation_order=0,
    )


def applicable_configs(category: str, configs: Iterable[TaxConfig]) -> list[TaxConfig]:
    """Filter and order configurations for a charge category."""
    selected = [c for c in configs if c.applies(category)]
    # sorted() is stable: equal orders keep insertion order
    return sorted(selected, key=lambda c: c.calculation_order)


def compute_taxes(
    base_cents: int,
    category: str,
    configs: Sequence[TaxConfig],
) -> TaxResult:
    """Compute taxes and service charges for one charge.

    Args:
        base_cents: Charge amount in minor units.
        category: Line item type of the charge (room_charge, spa, ...).
        configs: The property's tax configurations, in insertion order.

    Returns:
        TaxResult with the amounts to add and the full breakdown.
    """
    if not is_taxable(category):
        return TaxResult()

    base = Decimal(base_cents)
    accumulated = base
    raw_lines: list[tuple[TaxConfig, Decimal]] = []

    for config in applicable_configs(category, configs):
        rate = Decimal(config.rate) / _HUNDRED
        if rate == 0:
            continue

        if config.is_inclusive:
            amount = base - base / (1 + rate)
        elif config.is_compound:
            amount = accumulated * rate
        else:
            amount = base * rate

        if not config.is_inclusive:
            accumulated += amount
        raw_lines.append((config, amount))

    tax_cents = 0
    service_cents = 0
    inclusive_cents = 0
    breakdown: list[TaxLine] = []
    for config, amount in raw_lines:
        cents = round_minor(amount)
        breakdown.append(
            TaxLine(
                code=config.code,
                name=config.name,
                kind=config.kind,
                rate=Decimal(config.rate),
                amount_cents=cents,
                is_compound=config.is_compound,
                is_inclusive=config.is_inclusive,
            )
        )
        if config.is_inclusive:
            inclusive_cents += cents
        elif config.kind == TaxKind.SERVICE_CHARGE:
            service_cents += cents
        else:
            tax_cents += cents

    return TaxResult(
        tax_cents=tax_cents,
        service_charge_cents=service_cents,
        inclusive_cents=inclusive_cents,
        breakdown=tuple(breakdown),
    )

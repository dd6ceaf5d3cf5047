"""Tests for the tax engine."""

from decimal import Decimal

import pytest

from staybook.domain.taxes import (
    TaxConfig,
    TaxKind,
    applicable_configs,
    compute_taxes,
    round_minor,
    service_charge_config,
)


def _tax(code: str, rate: str, **kw) -> TaxConfig:
    return TaxConfig(code=code, name=code, rate=Decimal(rate), **kw)


class TestRounding:
    @pytest.mark.parametrize(
        "amount, expected",
        [("50.5", 51), ("50.49", 50), ("0.5", 1), ("-50.5", -51), ("100", 100)],
    )
    def test_half_up(self, amount, expected):
        assert round_minor(Decimal(amount)) == expected


class TestComputeTaxes:
    def test_simple_tax(self):
        result = compute_taxes(10000, "room_charge", [_tax("VAT", "10")])
        assert result.tax_cents == 1000
        assert result.added_cents == 1000
        assert [line.code for line in result.breakdown] == ["VAT"]

    def test_service_charge_then_compound_tax(self):
        configs = [
            service_charge_config(Decimal("10")),
            _tax("VAT", "5", is_compound=True, calculation_order=1),
        ]
        result = compute_taxes(10000, "food_beverage", configs)
        assert result.service_charge_cents == 1000
        assert result.tax_cents == 550
        assert result.added_cents == 1550

    def test_compound_tax_includes_earlier_taxes(self):
        configs = [
            _tax("B", "5", is_compound=True, calculation_order=2),
            _tax("A", "10", calculation_order=1),
        ]
        result = compute_taxes(1000, "room_charge", configs)
        assert [(line.code, line.amount_cents) for line in result.breakdown] == [("A", 100), ("B", 55)]
        assert result.tax_cents == 155

    def test_same_inputs_same_result(self):
        configs = [
            service_charge_config(Decimal("12.5")),
            _tax("VAT", "7.7", calculation_order=1),
            _tax("CITY", "3", is_compound=True, calculation_order=2),
            _tax("INC", "5", is_inclusive=True, calculation_order=3),
        ]
        before = list(configs)
        first = compute_taxes(12345, "food_beverage", configs)
        second = compute_taxes(12345, "food_beverage", configs)
        assert first == second
        assert configs == before

    def test_simple_tax_ignores_earlier_charges(self):
        configs = [service_charge_config(Decimal("10")), _tax("CITY", "5", calculation_order=1)]
        assert compute_taxes(10000, "spa", configs).tax_cents == 500

    def test_inclusive_tax_is_disclosed_not_added(self):
        result = compute_taxes(11000, "room_charge", [_tax("VAT", "10", is_inclusive=True)])
        assert result.inclusive_cents == 1000
        assert result.added_cents == 0
        assert result.breakdown[0].is_inclusive

    def test_inclusive_tax_not_part_of_compound_base(self):
        configs = [
            _tax("INC", "10", is_inclusive=True, calculation_order=0),
            _tax("CMP", "10", is_compound=True, calculation_order=1),
        ]
        assert compute_taxes(11000, "room_charge", configs).tax_cents == 1100

    def test_each_line_rounded_once_at_the_end(self):
        # 10% service on 15 is 1.5; the compound 50% tax runs on 16.5, not 17
        configs = [
            service_charge_config(Decimal("10")),
            _tax("CMP", "50", is_compound=True, calculation_order=1),
        ]
        result = compute_taxes(15, "minibar", configs)
        assert result.service_charge_cents == 2
        assert result.tax_cents == 8

    def test_totals_are_sums_of_rounded_lines(self):
        configs = [_tax("A", "5"), _tax("B", "5")]
        result = compute_taxes(1010, "laundry", configs)
        assert [line.amount_cents for line in result.breakdown] == [51, 51]
        assert result.tax_cents == 102

    def test_equal_order_keeps_given_order(self):
        simple = _tax("S", "10", calculation_order=1)
        compound = _tax("C", "10", is_compound=True, calculation_order=1)
        assert compute_taxes(1000, "spa", [simple, compound]).tax_cents == 100 + 110
        assert compute_taxes(1000, "spa", [compound, simple]).tax_cents == 100 + 100

    def test_applies_to_filters_categories(self):
        configs = [_tax("ROOM", "10", applies_to=("room_charge",)), _tax("ALL", "1", applies_to=("all",))]
        assert [c.code for c in applicable_configs("spa", configs)] == ["ALL"]
        assert compute_taxes(10000, "room_charge", configs).tax_cents == 1100

    def test_inactive_and_zero_rate_skipped(self):
        configs = [_tax("OFF", "10", is_active=False), _tax("ZERO", "0")]
        result = compute_taxes(10000, "room_charge", configs)
        assert result.added_cents == 0
        assert result.breakdown == ()

    @pytest.mark.parametrize("category", ["discount", "deposit", "tax", "service_charge", "adjustment"])
    def test_exempt_categories(self, category):
        assert compute_taxes(10000, category, [_tax("VAT", "10")]).breakdown == ()

    def test_service_charge_kind(self):
        config = service_charge_config(Decimal("12.5"))
        assert config.kind == TaxKind.SERVICE_CHARGE
        assert config.calculation_order == 0

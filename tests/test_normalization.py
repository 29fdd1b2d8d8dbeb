import math
from decimal import Decimal

import pytest

from stack_tracker.models import (
    BillingCycle,
    Currency,
    PriceMode,
    PricingInput,
    SubscriptionStatus,
)
from stack_tracker.normalization import (
    build_tool,
    clamp_months,
    coerce_number,
    normalise_cost,
    resolve_usage,
    round_currency,
    tool_to_form,
)


def _cost(**kwargs):
    result = normalise_cost(PricingInput(**kwargs))
    return result.monthly_cost, result.yearly_cost


class TestNormaliseCost:
    def test_neutral_input_is_identity(self):
        assert _cost(raw_amount=49.99) == (49.99, 599.88)

    def test_adjustments_apply_in_canonical_order(self):
        monthly, yearly = _cost(
            raw_amount=100,
            quantity=2,
            price_mode=PriceMode.PER_UNIT,
            currency=Currency.FOREIGN,
            exchange_rate=0.9,
            tax_inclusive=True,
            billing_cycle=BillingCycle.MONTHLY,
            months_per_year=12,
        )
        assert monthly == 151.26
        assert yearly == 1815.12

    def test_yearly_cycle_is_spread_over_months(self):
        assert _cost(raw_amount=1200, billing_cycle=BillingCycle.YEARLY) == (100.0, 1200.0)

    def test_yearly_cycle_for_seasonal_tool(self):
        assert _cost(raw_amount=600, billing_cycle=BillingCycle.YEARLY, months_per_year=6) == (100.0, 600.0)

    def test_gross_price_is_reduced_to_net(self):
        assert _cost(raw_amount=119, tax_inclusive=True) == (100.0, 1200.0)

    def test_custom_tax_rate(self):
        result = normalise_cost(PricingInput(raw_amount=107, tax_inclusive=True), tax_rate=0.07)
        assert result.monthly_cost == 100.0

    def test_total_price_ignores_quantity(self):
        assert _cost(raw_amount=30, quantity=5, price_mode=PriceMode.TOTAL) == (30.0, 360.0)

    @pytest.mark.parametrize("months", [0, -3, "0"])
    def test_non_positive_months_are_treated_as_one(self, months):
        assert _cost(raw_amount=50, months_per_year=months) == (50.0, 50.0)
        assert _cost(raw_amount=120, billing_cycle=BillingCycle.YEARLY, months_per_year=months) == (120.0, 120.0)

    def test_months_above_twelve_are_clamped(self):
        assert _cost(raw_amount=10, months_per_year=20) == (10.0, 120.0)

    @pytest.mark.parametrize(
        "raw", [None, "abc", float("nan"), float("inf"), -25, 10**400, Decimal("sNaN"), "1e400"]
    )
    def test_unusable_amount_becomes_zero(self, raw):
        assert _cost(raw_amount=raw) == (0.0, 0.0)

    def test_oversized_quantity_falls_back_to_one(self):
        assert _cost(raw_amount=7, quantity=10**400, price_mode=PriceMode.PER_UNIT) == (7.0, 84.0)

    def test_very_large_amounts_keep_their_value(self):
        monthly, yearly = _cost(raw_amount=1e27)
        assert monthly == 1e27
        assert yearly == round_currency(1e27 * 12)
        assert yearly > 1e28

    def test_decimal_comma_is_accepted(self):
        assert _cost(raw_amount="12,50") == (12.5, 150.0)

    def test_quantity_below_one_is_clamped(self):
        assert _cost(raw_amount=10, quantity=0, price_mode=PriceMode.PER_UNIT) == (10.0, 120.0)

    def test_missing_rate_uses_fallback(self):
        assert _cost(raw_amount=100, currency=Currency.FOREIGN) == (92.0, 1104.0)
        result = normalise_cost(
            PricingInput(raw_amount=100, currency=Currency.FOREIGN),
            fallback_exchange_rate=0.5,
        )
        assert result.monthly_cost == 50.0

    def test_non_numeric_rate_is_treated_as_zero(self):
        assert _cost(raw_amount=100, currency=Currency.FOREIGN, exchange_rate="n/a") == (0.0, 0.0)

    def test_rate_is_ignored_for_base_currency(self):
        assert _cost(raw_amount=100, currency=Currency.BASE, exchange_rate=2.0) == (100.0, 1200.0)

    def test_string_enum_values_are_accepted(self):
        monthly, _ = _cost(raw_amount=10, quantity=3, price_mode="unit", currency="USD", exchange_rate=1.0)
        assert monthly == 30.0

    def test_rounding_is_half_up(self):
        assert _cost(raw_amount=0.125, months_per_year=1) == (0.13, 0.13)

    def test_outputs_are_consistent(self):
        monthly, yearly = _cost(raw_amount=333.33, billing_cycle=BillingCycle.YEARLY, months_per_year=7)
        assert yearly == round_currency(monthly * 7)
        assert math.isfinite(monthly) and monthly >= 0


class TestResolveUsage:
    def test_explicit_months_win_over_count(self):
        assert resolve_usage(12, [0, 0, 5, 13, "x", 2.5]) == (2, (0, 5))

    def test_empty_selection_falls_back_to_count(self):
        assert resolve_usage(0, []) == (1, ())

    def test_missing_values_default_to_full_year(self):
        assert resolve_usage(None, None) == (12, ())


def test_clamp_months_defaults_for_garbage():
    assert clamp_months("twelve") == 12
    assert clamp_months(6.9) == 6


def test_coerce_number_handles_thousands_separators():
    assert coerce_number("1'299,00") == 1299.0
    assert coerce_number("") is None


class TestBuildTool:
    def test_builds_canonical_record(self):
        tool = build_tool(
            {
                "name": " Figma ",
                "category": "Grafik",
                "status": "Aktiv",
                "renewal_date": "2026-11-03T00:00:00",
                "raw_amount": "15",
                "quantity": 4,
                "price_mode": "perUnit",
                "billing_cycle": "monthly",
                "usage_months": [5, 6, 7],
            }
        )
        assert tool.name == "Figma"
        assert tool.status is SubscriptionStatus.ACTIVE
        assert tool.renewal_date == "2026-11-03"
        assert tool.quantity == 4
        assert tool.months_per_year == 3
        assert tool.usage_months == (5, 6, 7)
        assert tool.monthly_cost == 60.0
        assert tool.yearly_cost == 180.0

    def test_unparseable_dates_are_kept_verbatim(self):
        tool = build_tool({"name": "X", "renewal_date": "next week", "raw_amount": 1})
        assert tool.renewal_date == "next week"
        assert tool.cancellation_date is None

    def test_identity_is_preserved_on_rebuild(self):
        original = build_tool({"name": "X", "renewal_date": "2026-12-01", "raw_amount": 5})
        rebuilt = build_tool(tool_to_form(original), tool_id=original.id, created_at=original.created_at)
        assert rebuilt.id == original.id
        assert rebuilt.created_at == original.created_at

    @pytest.mark.parametrize(
        "form",
        [
            {"raw_amount": 151.26},
            {"raw_amount": 1000, "billing_cycle": "yearly"},
            {"raw_amount": 999, "billing_cycle": "yearly", "months_per_year": 7},
            {"raw_amount": 45.5, "usage_months": [0, 1, 11]},
        ],
    )
    def test_renormalising_stored_costs_is_a_fixed_point(self, form):
        tool = build_tool({"name": "X", "renewal_date": "2026-12-01", **form})
        again = build_tool(tool_to_form(tool))
        assert (again.monthly_cost, again.yearly_cost) == (tool.monthly_cost, tool.yearly_cost)
        assert again.months_per_year == tool.months_per_year


def test_round_currency_beyond_default_decimal_precision():
    assert round_currency(123456789012345678901234567.891) == 123456789012345678901234567.891
    assert round_currency(1e300) == 1e300
    assert round_currency(float("inf")) == 0.0

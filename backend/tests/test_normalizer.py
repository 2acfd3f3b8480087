"""Tests for profit normalization."""

from decimal import Decimal

from oppscan.pricing.normalizer import (
    effective_days_supply,
    fill_multiple,
    normalize,
    parse_money,
    resolve_raw_profit,
)
from tests.factories import make_claim, make_trigger


class TestParseMoney:
    def test_currency_text(self):
        assert parse_money("$1,234.50") == Decimal("1234.50")

    def test_parenthesised_negative(self):
        assert parse_money("(12.50)") == Decimal("-12.50")

    def test_garbage(self):
        assert parse_money("n/a") is None
        assert parse_money("") is None
        assert parse_money(None) is None


class TestDaysSupply:
    def test_recorded_value_wins(self):
        assert effective_days_supply(14, Decimal("500")) == 14

    def test_estimated_from_quantity(self):
        assert effective_days_supply(None, Decimal("100")) == 90
        assert effective_days_supply(0, Decimal("40")) == 60
        assert effective_days_supply(None, Decimal("30")) == 30


class TestFillMultiple:
    def test_from_days_supply(self):
        assert fill_multiple(Decimal("90"), 90) == 3
        assert fill_multiple(Decimal("45"), 45) == 2

    def test_from_expected_quantity_rounds_half_up(self):
        assert fill_multiple(Decimal("250"), 30, expected_qty=Decimal("100")) == 3

    def test_never_below_one(self):
        assert fill_multiple(Decimal("40"), 30, expected_qty=Decimal("100")) == 1
        assert fill_multiple(Decimal("5"), 1) == 1


class TestRawProfit:
    def test_field_variants(self):
        assert resolve_raw_profit(make_claim(raw_data={"Gross Profit": "$12.50"})) == Decimal("12.50")
        assert resolve_raw_profit(make_claim(raw_data={"GrossProfit": 8})) == Decimal("8")

    def test_first_non_zero_wins(self):
        claim = make_claim(raw_data={"gross_profit": "0", "net_profit": "15"})
        assert resolve_raw_profit(claim) == Decimal("15")

    def test_pay_minus_cost_fallback(self):
        claim = make_claim(
            raw_data={},
            insurance_pay=Decimal("50"),
            patient_pay=Decimal("10"),
            acquisition_cost=Decimal("20"),
        )
        assert resolve_raw_profit(claim) == Decimal("40")

    def test_price_minus_actual_cost(self):
        claim = make_claim(raw_data={"Price": "100", "Actual Cost": "60"})
        assert resolve_raw_profit(claim) == Decimal("40")

    def test_nothing_usable(self):
        assert resolve_raw_profit(make_claim(raw_data={})) is None


class TestNormalize:
    def test_per_standard_fill(self):
        claim = make_claim(raw_data={"gross_profit": "$90.00"}, quantity_dispensed=Decimal("90"), days_supply=90)
        assert normalize(claim, make_trigger()) == Decimal("30")

    def test_expected_quantity_sets_the_multiple(self):
        claim = make_claim(raw_data={"gross_profit": "60"}, quantity_dispensed=Decimal("200"), days_supply=30)
        assert normalize(claim, make_trigger(expected_qty=Decimal("100"))) == Decimal("30")

    def test_zero_quantity_is_no_data(self):
        assert normalize(make_claim(quantity_dispensed=Decimal("0")), make_trigger()) is None
        assert normalize(make_claim(quantity_dispensed=None), make_trigger()) is None

    def test_non_positive_profit_is_no_data(self):
        assert normalize(make_claim(raw_data={"gross_profit": "-5"}), make_trigger()) is None

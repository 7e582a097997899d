"""Tests for money helpers."""
from decimal import Decimal

import pytest

from app.utils.decimal_utils import (
    CENTS,
    MAX_AMOUNT,
    ZERO,
    money_str,
    parse_decimal,
    parse_financial_amount,
    sum_money,
    to_money,
)


@pytest.mark.unit
class TestParseDecimal:
    @pytest.mark.parametrize("value,expected", [
        ("123.45", Decimal("123.45")),
        (123, Decimal("123")),
        (123.45, Decimal("123.45")),
        (Decimal("1.5"), Decimal("1.5")),
        ("$1,200.50", Decimal("1200.50")),
        ("  -4.00 ", Decimal("-4.00")),
    ])
    def test_parses(self, value, expected):
        assert parse_decimal(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "abc", True, [1], "NaN", "Infinity"])
    def test_unreadable_values_are_none(self, value):
        assert parse_decimal(value) is None

    def test_precision_rounds_half_up(self):
        assert parse_decimal("123.455", precision=CENTS) == Decimal("123.46")
        assert parse_decimal("0.005", precision=CENTS) == Decimal("0.01")

    def test_precision_overflow_is_none(self):
        assert parse_decimal("1e30", precision=CENTS) is None
        assert parse_decimal("1e30") == Decimal("1e30")


@pytest.mark.unit
class TestMoney:
    def test_parse_financial_amount(self):
        assert parse_financial_amount("10") == Decimal("10.00")
        assert parse_financial_amount("x") is None
        assert parse_financial_amount(MAX_AMOUNT) == MAX_AMOUNT
        assert parse_financial_amount("10000000000.00") is None
        assert parse_financial_amount("-10000000000.00") is None

    def test_to_money_treats_none_as_zero(self):
        assert to_money(None) == ZERO
        assert to_money("bad") == ZERO
        assert to_money(19.999) == Decimal("20.00")

    def test_sum_money_is_exact(self):
        assert sum_money(["0.10", "0.20", None, Decimal("0.30")]) == Decimal("0.60")
        assert sum_money([]) == ZERO

    def test_money_str(self):
        assert money_str(Decimal("150")) == "150.00"
        assert money_str("12.5") == "12.50"
        assert money_str(None) is None

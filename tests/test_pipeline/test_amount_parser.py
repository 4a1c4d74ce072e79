"""
Tests for the Brazilian-first amount parser.
"""

from decimal import Decimal

import pytest

from ecom_finance.pipeline.amount_parser import (
    is_amount_like,
    parse_amount_br,
    parse_number,
    parse_optional_number,
)


class TestParseAmountBR:
    """Test amount parsing across BR and US conventions."""

    def test_samples(self, sample_amounts):
        for raw, expected, negative in sample_amounts:
            result = parse_amount_br(raw)
            assert result.valid, raw
            assert result.amount == Decimal(expected), raw
            assert result.is_negative == negative, raw

    def test_br_format_detected(self):
        result = parse_amount_br("1.234,56")
        assert result.amount == Decimal("1234.56")
        assert result.format_detected == "BR"

    def test_us_format_detected(self):
        result = parse_amount_br("1,234.56")
        assert result.format_detected == "US"

    def test_several_commas_are_thousands(self):
        assert parse_amount_br("1,234,567.89").amount == Decimal("1234567.89")

    def test_numeric_input(self):
        assert parse_amount_br(42.5).amount == Decimal("42.5")
        assert parse_amount_br(Decimal("10.00")).amount == Decimal("10.00")

    def test_empty_is_zero_and_invalid(self):
        result = parse_amount_br("")
        assert result.amount == Decimal("0")
        assert not result.valid
        assert result.format_detected == "EMPTY"

    def test_none(self):
        assert parse_amount_br(None).format_detected == "EMPTY"

    @pytest.mark.parametrize("raw", ["abc", "—", "-", " - ", "R$ -", "(-)"])
    def test_placeholder_or_garbage_is_zero(self, raw):
        result = parse_amount_br(raw)
        assert result.amount == Decimal("0")
        assert not result.valid
        assert parse_number(raw) == Decimal("0")

    def test_date_is_not_an_amount(self):
        result = parse_amount_br("15/03/2024")
        assert not result.valid
        assert result.format_detected == "DATE"

    def test_absurd_value_discarded(self):
        result = parse_amount_br("999999999999,00")
        assert not result.valid
        assert result.amount == Decimal("0")


class TestHelpers:

    def test_parse_number_defaults_to_zero(self):
        assert parse_number("xyz") == Decimal("0")
        assert parse_number("R$ 10,00") == Decimal("10.00")

    def test_optional_number_keeps_missing_as_none(self):
        assert parse_optional_number("") is None
        assert parse_optional_number(None) is None
        assert parse_optional_number("0,00") == Decimal("0.00")


class TestIsAmountLike:
    """Test quick amount pattern check."""

    def test_br_amount(self):
        assert is_amount_like("R$ 1.234,56")

    def test_parentheses(self):
        assert is_amount_like("(500,00)")

    def test_not_amount(self):
        assert not is_amount_like("hello world")

    def test_date_is_not_amount(self):
        assert not is_amount_like("15/03/2024")

    def test_empty(self):
        assert not is_amount_like("")

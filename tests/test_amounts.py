"""Tests for fixed-point amount helpers."""

from decimal import Decimal

import pytest

from havenvault.amounts import (
    b64decode_strict,
    b64encode,
    fee_from_amount,
    minor_to_ui,
    parse_base_units,
    rate_to_ppm,
    to_decimal,
    ui_to_minor,
)
from havenvault.errors import InvalidAmountError, InvalidTransactionError


class TestUiToMinor:
    """Tests for display amount parsing."""

    def test_plain_decimal(self):
        assert ui_to_minor("10.5") == 10_500_000

    def test_truncates_extra_digits(self):
        """Digits beyond the precision are dropped, not rounded."""
        assert ui_to_minor("0.0000019") == 1
        assert ui_to_minor("1.9999999") == 1_999_999

    def test_float_uses_shortest_repr(self):
        assert ui_to_minor(0.1) == 100_000
        assert ui_to_minor(9.95) == 9_950_000

    def test_int_and_decimal(self):
        assert ui_to_minor(3) == 3_000_000
        assert ui_to_minor(Decimal("0.25")) == 250_000

    def test_custom_decimals(self):
        assert ui_to_minor("1.5", decimals=9) == 1_500_000_000
        assert ui_to_minor("1.5", decimals=0) == 1

    def test_leading_dot(self):
        assert ui_to_minor(".5") == 500_000

    @pytest.mark.parametrize("value", ["1,5", "1,000", "1,000.25"])
    def test_commas_are_rejected(self, value):
        """A comma is never read as a separator, so "1,5" cannot become 15."""
        with pytest.raises(InvalidAmountError):
            ui_to_minor(value)

    @pytest.mark.parametrize("value", ["0.00001", "1234.5", "0", "1000000.000001"])
    def test_display_roundtrip(self, value):
        assert minor_to_ui(ui_to_minor(value)) == value

    def test_negative(self):
        assert ui_to_minor("-2") == -2_000_000

    @pytest.mark.parametrize("value", ["", "abc", "1.2.3", ".", "1e5", True, None])
    def test_invalid(self, value):
        with pytest.raises(InvalidAmountError):
            ui_to_minor(value)


class TestMinorToUi:
    """Tests for rendering base units."""

    def test_trims_trailing_zeros(self):
        assert minor_to_ui(10_500_000) == "10.5"
        assert minor_to_ui(18_500_000) == "18.5"

    def test_whole_number(self):
        assert minor_to_ui(2_000_000) == "2"
        assert minor_to_ui(0) == "0"

    def test_small_and_negative(self):
        assert minor_to_ui(1) == "0.000001"
        assert minor_to_ui(-50_000) == "-0.05"

    def test_zero_decimals(self):
        assert minor_to_ui(42, decimals=0) == "42"

    def test_to_decimal(self):
        assert to_decimal(9_950_000) == Decimal("9.95")


class TestFees:
    """Tests for fee arithmetic in parts per million."""

    def test_rate_to_ppm(self):
        assert rate_to_ppm(0.005) == 5_000
        assert rate_to_ppm(0.0) == 0
        assert rate_to_ppm(-0.1) == 0
        assert rate_to_ppm(float("nan")) == 0

    def test_fee_is_floored(self):
        assert fee_from_amount(10_000_000, 5_000) == 50_000
        assert fee_from_amount(199, 5_000) == 0

    def test_fee_never_exceeds_amount(self):
        assert fee_from_amount(100, 2_000_000) == 100

    def test_no_fee_for_non_positive_inputs(self):
        assert fee_from_amount(0, 5_000) == 0
        assert fee_from_amount(1_000, 0) == 0

    @pytest.mark.parametrize(
        "amount_ui, rate, fee_ui, net_ui",
        [
            ("1000.000000", 0.005, "5", "995"),
            ("0.000001", 0.005, "0", "0.000001"),
            ("0.000001", 0.5, "0", "0.000001"),
            ("10", 0.0, "0", "10"),
        ],
    )
    def test_fee_and_net(self, amount_ui, rate, fee_ui, net_ui):
        amount = ui_to_minor(amount_ui)
        fee = fee_from_amount(amount, rate_to_ppm(rate))
        assert minor_to_ui(fee) == fee_ui
        assert minor_to_ui(amount - fee) == net_ui


class TestParsing:
    """Tests for RPC and base64 parsing."""

    def test_parse_base_units(self):
        assert parse_base_units("1500000") == 1_500_000
        assert parse_base_units("") == 0
        assert parse_base_units("1.5") == 0
        assert parse_base_units(None) == 0
        assert parse_base_units(12) == 0

    def test_b64_roundtrip(self):
        assert b64decode_strict(b64encode(b"\x00\x01\xff")) == b"\x00\x01\xff"

    def test_b64_rejects_garbage(self):
        with pytest.raises(InvalidTransactionError) as exc_info:
            b64decode_strict("not base64!", what="signed transaction")
        assert exc_info.value.message == "Invalid signed transaction"

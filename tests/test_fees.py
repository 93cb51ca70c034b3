"""Unit tests for the admin fee policy.

Run with: pytest tests/test_fees.py -v
"""

from decimal import Decimal

import pytest

from cermin.fees import admin_fee, gross_amount


class TestAdminFee:
    """Tests for admin_fee."""

    @pytest.mark.parametrize("price", [0, -1, Decimal("-49000"), "0.00"])
    def test_free_or_negative_price_has_no_fee(self, price):
        assert admin_fee(price) == 0

    def test_minimum_applies_below_threshold(self):
        """49000 * 2% = 980 is lifted to the 1000 minimum."""
        assert admin_fee(49000) == 1000

    def test_rounds_up_to_next_hundred(self):
        """75050 * 2% = 1501 rounds up to 1600."""
        assert admin_fee(75050) == 1600

    def test_exact_multiple_is_kept(self):
        assert admin_fee(150000) == 3000

    def test_alternative_rate(self):
        assert admin_fee(120000, rate=Decimal("0.025"), minimum=1000) == 3000

    def test_fee_is_integer(self):
        assert isinstance(admin_fee(Decimal("123456.78")), int)

    def test_properties_hold_across_prices(self):
        previous = 0
        for price in range(100, 1_000_001, 777):
            fee = admin_fee(price)
            assert fee >= 1000
            assert fee % 100 == 0
            assert fee >= previous
            previous = fee


class TestGrossAmount:
    """Tests for gross_amount."""

    def test_low_price_scenario(self):
        price, fee, total = gross_amount(49000, Decimal("0.02"), 1000)
        assert (price, fee, total) == (Decimal(49000), 1000, Decimal(50000))

    def test_high_price_scenario(self):
        price, fee, total = gross_amount(120000, Decimal("0.025"), 1000)
        assert fee == 3000
        assert total == Decimal(123000)

    def test_total_is_price_plus_fee(self):
        price, fee, total = gross_amount(Decimal("99999.50"))
        assert total == price + fee

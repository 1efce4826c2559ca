"""
Tests for fee split arithmetic, plan limits and shared validators
"""

from decimal import Decimal

import pytest

from boinvit_settlement.plan_limits import get_plan_limits
from boinvit_settlement.shared.money import (
    compute_fee_split,
    from_minor_units,
    to_minor_units,
)
from boinvit_settlement.shared.validators import normalize_kenyan_phone, validate_email


class TestFeeSplit:
    @pytest.mark.parametrize("amount", [1, 100, 123.45, 1_000_000])
    def test_fee_plus_business_amount_equals_amount(self, amount):
        split = compute_fee_split(amount)
        assert split.platform_fee + split.business_amount == split.amount
        assert split.amount == Decimal(str(amount)).quantize(Decimal("0.01"))

    def test_five_percent_of_round_amount(self):
        split = compute_fee_split(1000)
        assert split.platform_fee == Decimal("50.00")
        assert split.business_amount == Decimal("950.00")

    def test_fee_is_rounded_to_cents(self):
        split = compute_fee_split(Decimal("123.45"))
        assert split.platform_fee == Decimal("6.17")
        assert split.business_amount == Decimal("117.28")

    def test_smallest_amount(self):
        split = compute_fee_split(1)
        assert split.platform_fee == Decimal("0.05")
        assert split.business_amount == Decimal("0.95")

    def test_custom_rate(self):
        split = compute_fee_split(200, rate="0.1")
        assert split.platform_fee == Decimal("20.00")


class TestMinorUnits:
    def test_to_minor_units(self):
        assert to_minor_units(Decimal("1000")) == 100000
        assert to_minor_units(123.45) == 12345

    def test_from_minor_units(self):
        assert from_minor_units(100000) == Decimal("1000.00")
        assert from_minor_units(12345) == Decimal("123.45")


class TestPlanLimits:
    def test_known_plans(self):
        assert get_plan_limits("starter") == {"staff_limit": 5, "bookings_limit": 1000}
        assert get_plan_limits("medium") == {"staff_limit": 15, "bookings_limit": 3000}
        assert get_plan_limits("premium") == {"staff_limit": None, "bookings_limit": None}

    def test_plan_name_is_case_insensitive(self):
        assert get_plan_limits("Starter") == {"staff_limit": 5, "bookings_limit": 1000}

    @pytest.mark.parametrize("plan", [None, "", "enterprise", "gold"])
    def test_unknown_plans(self, plan):
        assert get_plan_limits(plan) is None

    def test_returned_limits_are_copies(self):
        limits = get_plan_limits("starter")
        limits["staff_limit"] = 99
        assert get_plan_limits("starter")["staff_limit"] == 5


class TestValidators:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("0712345678", "254712345678"),
            ("+254 712 345 678", "254712345678"),
            ("712345678", "254712345678"),
            ("254712345678", "254712345678"),
        ],
    )
    def test_kenyan_phone_normalisation(self, raw, expected):
        assert normalize_kenyan_phone(raw) == expected

    def test_phone_without_digits(self):
        with pytest.raises(ValueError):
            normalize_kenyan_phone("call me")

    def test_email_is_lowercased(self):
        assert validate_email("  Client@Example.COM ") == "client@example.com"

    def test_invalid_email(self):
        with pytest.raises(ValueError):
            validate_email("not-an-email")

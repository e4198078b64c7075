from datetime import datetime, timedelta

import pytest

from ridepromo.core.exceptions import ErrorKind, InvalidInput
from ridepromo.models.coupon import ApplicableFor, DiscountType, UserType
from ridepromo.schemas.coupon import (
    EveryNthRideRule,
    NthRideRule,
    SpecificRidesRule,
    CouponTerms,
    normalize_code,
)


def test_normalize_code():
    assert normalize_code("  firstride ") == "FIRSTRIDE"
    assert normalize_code("") == ""


def test_terms_from_model_builds_tagged_rule(make_coupon):
    coupon = make_coupon(
        "every5",
        applicable_for=ApplicableFor.EVERY_NTH_RIDE,
        ride_number=5,
        applicable_vehicles=["Car", " bike "],
        eligible_user_types=["EXISTING"],
    )

    terms = CouponTerms.from_model(coupon)

    assert terms.code == "EVERY5"
    assert terms.rule == EveryNthRideRule(ride_number=5)
    assert terms.applicable_vehicles == frozenset({"car", "bike"})
    assert terms.eligible_user_types == frozenset({UserType.EXISTING})
    assert not terms.applies_to_all_vehicles


def test_terms_from_model_sorts_specific_rides(make_coupon):
    coupon = make_coupon(
        "specific",
        applicable_for=ApplicableFor.SPECIFIC_RIDES,
        specific_ride_numbers=[7, 3, 7],
    )

    terms = CouponTerms.from_model(coupon)

    assert terms.rule == SpecificRidesRule(ride_numbers=(3, 7))


def test_terms_from_model_ignores_unrelated_ride_number(make_coupon):
    coupon = make_coupon("allrides", applicable_for=ApplicableFor.ALL_RIDES, ride_number=4)

    terms = CouponTerms.from_model(coupon)

    assert terms.rule.kind == "ALL_RIDES"


@pytest.mark.parametrize(
    "overrides",
    [
        {"applicable_for": ApplicableFor.NTH_RIDE, "ride_number": None},
        {"applicable_for": ApplicableFor.EVERY_NTH_RIDE, "ride_number": 0},
        {"applicable_for": ApplicableFor.SPECIFIC_RIDES, "specific_ride_numbers": []},
        {"applicable_for": ApplicableFor.SPECIFIC_RIDES, "specific_ride_numbers": [0, 2]},
        {"discount_type": DiscountType.PERCENTAGE, "discount_value": 120},
        {"discount_value": 0},
        {"max_discount_amount": -5},
        {"eligible_user_types": ["VIP"]},
        {"min_rides_completed": 5, "max_rides_completed": 2},
        {"valid_from": datetime.utcnow() + timedelta(days=10), "valid_until": datetime.utcnow()},
    ],
)
def test_malformed_coupon_is_invalid_input(make_coupon, overrides):
    coupon = make_coupon("broken", **overrides)

    with pytest.raises(InvalidInput) as exc_info:
        CouponTerms.from_model(coupon)

    error = exc_info.value
    assert error.kind == ErrorKind.INVALID_INPUT
    assert error.code == "INVALID_COUPON_CONFIGURATION"
    assert error.detail["coupon_code"] == "BROKEN"
    assert error.detail["problems"]


def test_nth_rule_requires_positive_ride_number():
    with pytest.raises(ValueError):
        NthRideRule(ride_number=0)


@pytest.mark.parametrize("cap", [0, -5, 25])
def test_fixed_coupon_cap_is_dropped(make_coupon, cap):
    coupon = make_coupon("flat", discount_type=DiscountType.FIXED, discount_value=50, max_discount_amount=cap)

    terms = CouponTerms.from_model(coupon)

    assert terms.max_discount_amount is None


def test_zero_percentage_cap_means_uncapped(make_coupon):
    coupon = make_coupon("pct", discount_type=DiscountType.PERCENTAGE, discount_value=20, max_discount_amount=0)

    assert CouponTerms.from_model(coupon).max_discount_amount is None

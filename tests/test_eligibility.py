from datetime import datetime, timedelta

import pytest

from ridepromo.core.exceptions import ErrorKind
from ridepromo.models.coupon import DiscountType, UserType
from ridepromo.schemas.coupon import (
    AllRidesRule,
    CouponTerms,
    EveryNthRideRule,
    FirstRideRule,
    NthRideRule,
    SpecificRidesRule,
)
from ridepromo.services.eligibility import RideContext, evaluate
from ridepromo.services.messages import RuleCode


def _terms(**overrides) -> CouponTerms:
    now = datetime(2026, 1, 1)
    fields = {
        "id": 7,
        "code": "ride",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": 10.0,
        "rule": AllRidesRule(),
        "valid_from": now,
        "valid_until": now + timedelta(days=30),
    }
    fields.update(overrides)
    return CouponTerms(**fields)


def _context(completed: int = 0, used: int = 0, vehicle: str = "car") -> RideContext:
    return RideContext(vehicle_type=vehicle, completed_rides_count=completed, user_usage_count=used)


def test_first_ride_coupon_for_new_rider():
    result = evaluate(_terms(rule=FirstRideRule()), _context(completed=0))

    assert result.is_eligible
    assert result.reason is None
    assert result.error_kind is None


def test_first_ride_coupon_after_a_completed_ride():
    result = evaluate(_terms(rule=FirstRideRule()), _context(completed=1))

    assert not result.is_eligible
    assert result.code == RuleCode.FIRST_RIDE_ONLY
    assert result.reason.lower() == "valid only for first ride"
    assert result.error_kind == ErrorKind.INELIGIBLE_RULE


def test_vehicle_must_be_listed():
    terms = _terms(applicable_vehicles=["bike", "auto"])

    assert evaluate(terms, _context(vehicle="BIKE")).is_eligible
    result = evaluate(terms, _context(vehicle="car"))
    assert result.code == RuleCode.VEHICLE_NOT_APPLICABLE
    assert result.reason == "Only applicable for: auto, bike"


def test_all_vehicles_sentinel_matches_any_vehicle_and_none():
    terms = _terms(applicable_vehicles=["all"])

    assert evaluate(terms, _context(vehicle="premium")).is_eligible
    assert evaluate(terms, _context(vehicle=None)).is_eligible


def test_vehicle_scoped_coupon_without_vehicle_type():
    result = evaluate(_terms(applicable_vehicles=["car"]), _context(vehicle=None))

    assert result.code == RuleCode.VEHICLE_NOT_APPLICABLE


@pytest.mark.parametrize("vehicle", ["bike", "auto", "car", "premium", "xl", None])
def test_empty_vehicle_list_never_applies(vehicle):
    result = evaluate(_terms(applicable_vehicles=[]), _context(vehicle=vehicle))

    assert not result.is_eligible
    assert result.code == RuleCode.VEHICLE_NOT_APPLICABLE
    assert result.reason == "Only applicable for: specific vehicles"


def test_per_user_limit():
    result = evaluate(_terms(max_usage_per_user=2), _context(used=2))

    assert result.code == RuleCode.USER_LIMIT_REACHED
    assert result.error_kind == ErrorKind.LIMIT_REACHED
    assert evaluate(_terms(max_usage_per_user=2), _context(used=1)).is_eligible


def test_global_limit():
    result = evaluate(_terms(total_usage_limit=5, current_usage_count=5), _context())

    assert result.code == RuleCode.GLOBAL_LIMIT_REACHED
    assert result.reason == "Coupon usage limit reached"
    assert result.error_kind == ErrorKind.LIMIT_REACHED


def test_unlimited_coupon_ignores_usage_count():
    assert evaluate(_terms(total_usage_limit=None, current_usage_count=10_000), _context()).is_eligible


def test_new_users_only():
    terms = _terms(eligible_user_types=[UserType.NEW])

    assert evaluate(terms, _context(completed=0)).is_eligible
    result = evaluate(terms, _context(completed=3))
    assert result.code == RuleCode.NEW_USERS_ONLY
    assert result.reason == "This coupon is only for new users"


def test_existing_users_only():
    terms = _terms(eligible_user_types=["EXISTING"])

    assert evaluate(terms, _context(completed=1)).is_eligible
    result = evaluate(terms, _context(completed=0))
    assert result.code == RuleCode.EXISTING_USERS_ONLY


def test_all_user_type_overrides_new_and_existing():
    terms = _terms(eligible_user_types=[UserType.NEW, UserType.ALL])

    assert evaluate(terms, _context(completed=12)).is_eligible


def test_min_rides_reports_rides_remaining():
    result = evaluate(_terms(min_rides_completed=5), _context(completed=2))

    assert result.code == RuleCode.MIN_RIDES_NOT_MET
    assert result.detail["rides_remaining"] == 3
    assert result.reason == "Complete 3 more ride(s) to unlock"


def test_max_rides():
    terms = _terms(max_rides_completed=4)

    assert evaluate(terms, _context(completed=4)).is_eligible
    result = evaluate(terms, _context(completed=5))
    assert result.code == RuleCode.MAX_RIDES_EXCEEDED


def test_nth_ride_not_yet_and_passed():
    terms = _terms(rule=NthRideRule(ride_number=5))

    assert evaluate(terms, _context(completed=4)).is_eligible

    early = evaluate(terms, _context(completed=1))
    assert early.code == RuleCode.NTH_RIDE_NOT_YET
    assert early.reason == "Valid on ride 5 (3 more to go)"

    late = evaluate(terms, _context(completed=5))
    assert late.code == RuleCode.NTH_RIDE_PASSED
    assert late.reason == "Was valid only on ride 5"


@pytest.mark.parametrize("n", [1, 2, 3, 5])
@pytest.mark.parametrize("completed", range(0, 16))
def test_every_nth_ride_matches_multiples(n, completed):
    result = evaluate(_terms(rule=EveryNthRideRule(ride_number=n)), _context(completed=completed))

    next_ride = completed + 1
    assert result.is_eligible == (next_ride % n == 0)
    if not result.is_eligible:
        assert result.code == RuleCode.EVERY_NTH_RIDE_PENDING
        assert result.detail["rides_remaining"] == n - (next_ride % n)


def test_every_nth_ride_reason():
    result = evaluate(_terms(rule=EveryNthRideRule(ride_number=5)), _context(completed=1))

    assert result.reason == "Valid every 5 rides (3 more to go)"


def test_specific_rides_next_ride_matches():
    terms = _terms(rule=SpecificRidesRule(ride_numbers=[7, 3]))

    assert evaluate(terms, _context(completed=2)).is_eligible


def test_specific_rides_names_next_qualifying_ride():
    terms = _terms(rule=SpecificRidesRule(ride_numbers=[3, 7]))

    result = evaluate(terms, _context(completed=3))

    assert result.code == RuleCode.SPECIFIC_RIDE_PENDING
    assert result.detail["ride_number"] == 7
    assert result.reason == "Valid on ride 7 (3 more to go)"


def test_specific_rides_all_behind():
    terms = _terms(rule=SpecificRidesRule(ride_numbers=[3, 7]))

    result = evaluate(terms, _context(completed=9))

    assert result.code == RuleCode.SPECIFIC_RIDES_EXHAUSTED
    assert result.reason == "Valid only on rides: 3, 7"


def test_rules_short_circuit_in_fixed_order():
    terms = _terms(
        applicable_vehicles=["bike"],
        max_usage_per_user=1,
        total_usage_limit=1,
        current_usage_count=1,
        eligible_user_types=[UserType.NEW],
        min_rides_completed=10,
        rule=FirstRideRule(),
    )
    context = _context(completed=3, used=1, vehicle="car")

    assert evaluate(terms, context).code == RuleCode.VEHICLE_NOT_APPLICABLE

    context = _context(completed=3, used=1, vehicle="bike")
    assert evaluate(terms, context).code == RuleCode.USER_LIMIT_REACHED

    context = _context(completed=3, used=0, vehicle="bike")
    assert evaluate(terms, context).code == RuleCode.GLOBAL_LIMIT_REACHED

    terms = terms.model_copy(update={"current_usage_count": 0})
    assert evaluate(terms, context).code == RuleCode.NEW_USERS_ONLY

    terms = terms.model_copy(update={"eligible_user_types": frozenset({UserType.ALL})})
    assert evaluate(terms, context).code == RuleCode.MIN_RIDES_NOT_MET

    terms = terms.model_copy(update={"min_rides_completed": 0})
    assert evaluate(terms, context).code == RuleCode.FIRST_RIDE_ONLY


def test_evaluate_is_deterministic():
    terms = _terms(rule=SpecificRidesRule(ride_numbers=[2, 4]))
    context = _context(completed=2)

    assert evaluate(terms, context) == evaluate(terms, context)

"""
Coupon eligibility rules.

``evaluate`` checks a coupon against a rider's history in a fixed order and
stops at the first failing rule. Callers only ever show one reason, so the
order below is part of the contract:

1. vehicle class
2. per-user usage
3. global usage
4. new / existing rider restriction
5. minimum rides completed
6. maximum rides completed
7. ride-number pattern (first, nth, every nth, specific rides, all rides)

Validity window, active flag and minimum fare depend on the request rather
than on rider history and are checked by the coupon service.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ridepromo.core.exceptions import ErrorKind
from ridepromo.models.coupon import UserType
from ridepromo.schemas.coupon import (
    AllRidesRule,
    CouponTerms,
    EveryNthRideRule,
    FirstRideRule,
    NthRideRule,
    SpecificRidesRule,
)
from ridepromo.services.messages import RuleCode, render_reason

_LIMIT_CODES = {RuleCode.USER_LIMIT_REACHED, RuleCode.GLOBAL_LIMIT_REACHED}


class RideContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    vehicle_type: Optional[str] = None
    completed_rides_count: int = Field(default=0, ge=0)
    user_usage_count: int = Field(default=0, ge=0)

    @property
    def next_ride_number(self) -> int:
        return self.completed_rides_count + 1


class EligibilityResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_eligible: bool
    code: Optional[RuleCode] = None
    detail: Dict[str, Any] = {}

    @property
    def reason(self) -> Optional[str]:
        if self.code is None:
            return None
        return render_reason(self.code, self.detail)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        if self.code is None:
            return None
        if self.code in _LIMIT_CODES:
            return ErrorKind.LIMIT_REACHED
        return ErrorKind.INELIGIBLE_RULE


ELIGIBLE = EligibilityResult(is_eligible=True)


def _fail(code: RuleCode, **detail) -> EligibilityResult:
    return EligibilityResult(is_eligible=False, code=code, detail=detail)


def _check_vehicle(terms: CouponTerms, context: RideContext) -> Optional[EligibilityResult]:
    if terms.applies_to_all_vehicles:
        return None
    vehicle = (context.vehicle_type or "").strip().lower()
    if vehicle and vehicle in terms.applicable_vehicles:
        return None
    return _fail(
        RuleCode.VEHICLE_NOT_APPLICABLE,
        vehicle_type=vehicle or None,
        applicable_vehicles=sorted(terms.applicable_vehicles),
    )


def _check_user_usage(terms: CouponTerms, context: RideContext) -> Optional[EligibilityResult]:
    if context.user_usage_count >= terms.max_usage_per_user:
        return _fail(
            RuleCode.USER_LIMIT_REACHED,
            user_usage_count=context.user_usage_count,
            max_usage_per_user=terms.max_usage_per_user,
        )
    return None


def _check_global_usage(terms: CouponTerms, context: RideContext) -> Optional[EligibilityResult]:
    if terms.total_usage_limit is not None and terms.current_usage_count >= terms.total_usage_limit:
        return _fail(
            RuleCode.GLOBAL_LIMIT_REACHED,
            current_usage_count=terms.current_usage_count,
            total_usage_limit=terms.total_usage_limit,
        )
    return None


def _check_user_type(terms: CouponTerms, context: RideContext) -> Optional[EligibilityResult]:
    user_types = terms.eligible_user_types
    if UserType.ALL in user_types:
        return None
    if UserType.NEW in user_types and context.completed_rides_count > 0:
        return _fail(RuleCode.NEW_USERS_ONLY, completed_rides_count=context.completed_rides_count)
    if UserType.EXISTING in user_types and context.completed_rides_count == 0:
        return _fail(RuleCode.EXISTING_USERS_ONLY, completed_rides_count=0)
    return None


def _check_min_rides(terms: CouponTerms, context: RideContext) -> Optional[EligibilityResult]:
    if context.completed_rides_count < terms.min_rides_completed:
        return _fail(
            RuleCode.MIN_RIDES_NOT_MET,
            min_rides_completed=terms.min_rides_completed,
            rides_remaining=terms.min_rides_completed - context.completed_rides_count,
        )
    return None


def _check_max_rides(terms: CouponTerms, context: RideContext) -> Optional[EligibilityResult]:
    if terms.max_rides_completed is not None and context.completed_rides_count > terms.max_rides_completed:
        return _fail(
            RuleCode.MAX_RIDES_EXCEEDED,
            max_rides_completed=terms.max_rides_completed,
            completed_rides_count=context.completed_rides_count,
        )
    return None


def _check_ride_number(terms: CouponTerms, context: RideContext) -> Optional[EligibilityResult]:
    rule = terms.rule
    next_ride = context.next_ride_number

    if isinstance(rule, AllRidesRule):
        return None

    if isinstance(rule, FirstRideRule):
        if next_ride != 1:
            return _fail(RuleCode.FIRST_RIDE_ONLY, next_ride_number=next_ride)
        return None

    if isinstance(rule, NthRideRule):
        if next_ride < rule.ride_number:
            return _fail(
                RuleCode.NTH_RIDE_NOT_YET,
                ride_number=rule.ride_number,
                rides_remaining=rule.ride_number - next_ride,
            )
        if next_ride > rule.ride_number:
            return _fail(RuleCode.NTH_RIDE_PASSED, ride_number=rule.ride_number)
        return None

    if isinstance(rule, EveryNthRideRule):
        position = next_ride % rule.ride_number
        if position != 0:
            return _fail(
                RuleCode.EVERY_NTH_RIDE_PENDING,
                ride_number=rule.ride_number,
                rides_remaining=rule.ride_number - position,
            )
        return None

    if isinstance(rule, SpecificRidesRule):
        if next_ride in rule.ride_numbers:
            return None
        upcoming = [number for number in rule.ride_numbers if number > next_ride]
        if upcoming:
            return _fail(
                RuleCode.SPECIFIC_RIDE_PENDING,
                ride_number=upcoming[0],
                rides_remaining=upcoming[0] - next_ride,
            )
        return _fail(RuleCode.SPECIFIC_RIDES_EXHAUSTED, ride_numbers=list(rule.ride_numbers))

    raise TypeError(f"Unsupported ride rule: {type(rule).__name__}")


RULES = (
    _check_vehicle,
    _check_user_usage,
    _check_global_usage,
    _check_user_type,
    _check_min_rides,
    _check_max_rides,
    _check_ride_number,
)


def evaluate(terms: CouponTerms, context: RideContext) -> EligibilityResult:
    """Return the verdict of the first failing rule, or ELIGIBLE."""
    for rule in RULES:
        failure = rule(terms, context)
        if failure is not None:
            return failure
    return ELIGIBLE

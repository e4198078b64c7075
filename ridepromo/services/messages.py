"""
Human-readable reasons for coupon rejections.

Checks report a :class:`RuleCode` plus a detail map; the text shown to riders
is produced here and nowhere else.
"""

import enum
from typing import Any, Callable, Dict, Mapping, Optional

from ridepromo.utils.money import format_money


class RuleCode(str, enum.Enum):
    # Eligibility rules, in evaluation order
    VEHICLE_NOT_APPLICABLE = "VEHICLE_NOT_APPLICABLE"
    USER_LIMIT_REACHED = "USER_LIMIT_REACHED"
    GLOBAL_LIMIT_REACHED = "GLOBAL_LIMIT_REACHED"
    NEW_USERS_ONLY = "NEW_USERS_ONLY"
    EXISTING_USERS_ONLY = "EXISTING_USERS_ONLY"
    MIN_RIDES_NOT_MET = "MIN_RIDES_NOT_MET"
    MAX_RIDES_EXCEEDED = "MAX_RIDES_EXCEEDED"
    FIRST_RIDE_ONLY = "FIRST_RIDE_ONLY"
    NTH_RIDE_NOT_YET = "NTH_RIDE_NOT_YET"
    NTH_RIDE_PASSED = "NTH_RIDE_PASSED"
    EVERY_NTH_RIDE_PENDING = "EVERY_NTH_RIDE_PENDING"
    SPECIFIC_RIDE_PENDING = "SPECIFIC_RIDE_PENDING"
    SPECIFIC_RIDES_EXHAUSTED = "SPECIFIC_RIDES_EXHAUSTED"

    # Request-time checks
    COUPON_NOT_FOUND = "COUPON_NOT_FOUND"
    CUSTOMER_NOT_FOUND = "CUSTOMER_NOT_FOUND"
    TRIP_NOT_FOUND = "TRIP_NOT_FOUND"
    COUPON_INACTIVE = "COUPON_INACTIVE"
    COUPON_NOT_STARTED = "COUPON_NOT_STARTED"
    COUPON_EXPIRED = "COUPON_EXPIRED"
    MIN_FARE_NOT_MET = "MIN_FARE_NOT_MET"
    INVALID_FARE = "INVALID_FARE"
    UNKNOWN_VEHICLE_TYPE = "UNKNOWN_VEHICLE_TYPE"
    INVALID_COUPON_CONFIGURATION = "INVALID_COUPON_CONFIGURATION"

    # Commit-time outcomes
    LIMIT_RACE_LOST = "LIMIT_RACE_LOST"
    REDEMPTION_CONFLICT = "REDEMPTION_CONFLICT"
    TRIP_ALREADY_DISCOUNTED = "TRIP_ALREADY_DISCOUNTED"


def _join(values) -> str:
    return ", ".join(str(value) for value in values)


def _vehicles(detail: Mapping[str, Any]) -> str:
    return _join(detail.get("applicable_vehicles") or []) or "specific vehicles"


_REASONS: Dict[RuleCode, Callable[[Mapping[str, Any]], str]] = {
    RuleCode.VEHICLE_NOT_APPLICABLE: lambda d: f"Only applicable for: {_vehicles(d)}",
    RuleCode.USER_LIMIT_REACHED: lambda d: "You have already used this coupon",
    RuleCode.GLOBAL_LIMIT_REACHED: lambda d: "Coupon usage limit reached",
    RuleCode.NEW_USERS_ONLY: lambda d: "This coupon is only for new users",
    RuleCode.EXISTING_USERS_ONLY: lambda d: "This coupon is only for existing users",
    RuleCode.MIN_RIDES_NOT_MET: lambda d: f"Complete {d['rides_remaining']} more ride(s) to unlock",
    RuleCode.MAX_RIDES_EXCEEDED: lambda d: "You have exceeded the maximum rides for this coupon",
    RuleCode.FIRST_RIDE_ONLY: lambda d: "Valid only for first ride",
    RuleCode.NTH_RIDE_NOT_YET: lambda d: f"Valid on ride {d['ride_number']} ({d['rides_remaining']} more to go)",
    RuleCode.NTH_RIDE_PASSED: lambda d: f"Was valid only on ride {d['ride_number']}",
    RuleCode.EVERY_NTH_RIDE_PENDING: lambda d: f"Valid every {d['ride_number']} rides ({d['rides_remaining']} more to go)",
    RuleCode.SPECIFIC_RIDE_PENDING: lambda d: f"Valid on ride {d['ride_number']} ({d['rides_remaining']} more to go)",
    RuleCode.SPECIFIC_RIDES_EXHAUSTED: lambda d: f"Valid only on rides: {_join(d['ride_numbers'])}",
    RuleCode.COUPON_NOT_FOUND: lambda d: "Invalid coupon code",
    RuleCode.CUSTOMER_NOT_FOUND: lambda d: "Customer not found",
    RuleCode.TRIP_NOT_FOUND: lambda d: "Trip not found",
    RuleCode.COUPON_INACTIVE: lambda d: "Coupon is inactive",
    RuleCode.COUPON_NOT_STARTED: lambda d: "Coupon is not valid yet",
    RuleCode.COUPON_EXPIRED: lambda d: "Coupon has expired",
    RuleCode.MIN_FARE_NOT_MET: lambda d: f"Minimum fare of {format_money(d['min_fare_amount'])} required to use this coupon",
    RuleCode.INVALID_FARE: lambda d: "Fare must not be negative",
    RuleCode.UNKNOWN_VEHICLE_TYPE: lambda d: f"Unknown vehicle type: {d['vehicle_type']}",
    RuleCode.INVALID_COUPON_CONFIGURATION: lambda d: "Coupon configuration is invalid",
    RuleCode.LIMIT_RACE_LOST: lambda d: "Coupon usage limit reached",
    RuleCode.REDEMPTION_CONFLICT: lambda d: "Coupon was redeemed at the same time by another request, please retry",
    RuleCode.TRIP_ALREADY_DISCOUNTED: lambda d: "Another coupon is already applied to this trip",
}


def render_reason(code: RuleCode, detail: Optional[Mapping[str, Any]] = None) -> str:
    return _REASONS[code](detail or {})

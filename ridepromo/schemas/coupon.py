from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from typing import Annotated, FrozenSet, List, Literal, Optional, Tuple, Union
from datetime import datetime

from ridepromo.core.exceptions import InvalidInput
from ridepromo.models.coupon import ALL_VEHICLES, ApplicableFor, Coupon, DiscountType, UserType
from ridepromo.services.messages import RuleCode, render_reason


def normalize_code(raw: str) -> str:
    return (raw or "").strip().upper()


# --------------------------------------------------
# Ride-number rules (one variant per applicable_for)
# --------------------------------------------------
class FirstRideRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["FIRST_RIDE"] = "FIRST_RIDE"


class NthRideRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["NTH_RIDE"] = "NTH_RIDE"
    ride_number: int = Field(..., ge=1)


class EveryNthRideRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["EVERY_NTH_RIDE"] = "EVERY_NTH_RIDE"
    ride_number: int = Field(..., ge=1)


class SpecificRidesRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["SPECIFIC_RIDES"] = "SPECIFIC_RIDES"
    ride_numbers: Tuple[int, ...] = Field(..., min_length=1)

    @field_validator("ride_numbers")
    @classmethod
    def sort_ride_numbers(cls, value: Tuple[int, ...]) -> Tuple[int, ...]:
        if any(number < 1 for number in value):
            raise ValueError("Ride numbers start at 1")
        return tuple(sorted(set(value)))


class AllRidesRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["ALL_RIDES"] = "ALL_RIDES"


RideRule = Annotated[
    Union[FirstRideRule, NthRideRule, EveryNthRideRule, SpecificRidesRule, AllRidesRule],
    Field(discriminator="kind"),
]


def _rule_payload(coupon: Coupon) -> dict:
    applicable_for = coupon.applicable_for
    kind = applicable_for.value if isinstance(applicable_for, ApplicableFor) else applicable_for
    payload = {"kind": kind}
    if kind in (ApplicableFor.NTH_RIDE.value, ApplicableFor.EVERY_NTH_RIDE.value):
        payload["ride_number"] = coupon.ride_number
    elif kind == ApplicableFor.SPECIFIC_RIDES.value:
        payload["ride_numbers"] = coupon.specific_ride_numbers or []
    return payload


# --------------------------------------------------
# Coupon terms (immutable view of a coupon row)
# --------------------------------------------------
class CouponTerms(BaseModel):
    """Validated, read-only snapshot of a coupon used by the engine."""

    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    description: str = ""
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    min_fare_amount: float = Field(default=0.0, ge=0)
    applicable_vehicles: FrozenSet[str] = frozenset({ALL_VEHICLES})
    rule: RideRule
    max_usage_per_user: int = Field(default=1, ge=1)
    total_usage_limit: Optional[int] = Field(None, ge=0)
    current_usage_count: int = Field(default=0, ge=0)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    eligible_user_types: FrozenSet[UserType] = frozenset({UserType.ALL})
    min_rides_completed: int = Field(default=0, ge=0)
    max_rides_completed: Optional[int] = Field(None, ge=0)

    @field_validator("code")
    @classmethod
    def normalize_coupon_code(cls, value: str) -> str:
        return normalize_code(value)

    @field_validator("applicable_vehicles", mode="before")
    @classmethod
    def normalize_vehicles(cls, value):
        if value is None:
            return frozenset()
        return frozenset(str(vehicle).strip().lower() for vehicle in value if str(vehicle).strip())

    @model_validator(mode="before")
    @classmethod
    def drop_unused_cap(cls, data):
        # A zero cap means "no cap"; FIXED coupons never use one.
        if isinstance(data, dict):
            cap = data.get("max_discount_amount")
            if cap is not None and (cap == 0 or data.get("discount_type") == DiscountType.FIXED):
                data = {**data, "max_discount_amount": None}
        return data

    @model_validator(mode="after")
    def check_consistency(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100%")
        if self.valid_from > self.valid_until:
            raise ValueError("valid_from must not be after valid_until")
        if self.max_rides_completed is not None and self.max_rides_completed < self.min_rides_completed:
            raise ValueError("max_rides_completed must not be below min_rides_completed")
        return self

    @property
    def applies_to_all_vehicles(self) -> bool:
        return ALL_VEHICLES in self.applicable_vehicles

    @classmethod
    def from_model(cls, coupon: Coupon) -> "CouponTerms":
        """Build terms from a coupon row, raising InvalidInput if the definition is malformed."""
        try:
            return cls.model_validate(
                {
                    "id": coupon.id,
                    "code": coupon.code,
                    "description": coupon.description or "",
                    "discount_type": coupon.discount_type,
                    "discount_value": coupon.discount_value,
                    "max_discount_amount": coupon.max_discount_amount,
                    "min_fare_amount": coupon.min_fare_amount or 0.0,
                    "applicable_vehicles": coupon.applicable_vehicles,
                    "rule": _rule_payload(coupon),
                    "max_usage_per_user": coupon.max_usage_per_user,
                    "total_usage_limit": coupon.total_usage_limit,
                    "current_usage_count": coupon.current_usage_count or 0,
                    "valid_from": coupon.valid_from,
                    "valid_until": coupon.valid_until,
                    "is_active": coupon.is_active,
                    "eligible_user_types": coupon.eligible_user_types or [],
                    "min_rides_completed": coupon.min_rides_completed or 0,
                    "max_rides_completed": coupon.max_rides_completed,
                }
            )
        except ValidationError as exc:
            detail = {
                "coupon_code": coupon.code,
                "problems": [
                    {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                    for error in exc.errors()
                ],
            }
            raise InvalidInput(
                render_reason(RuleCode.INVALID_COUPON_CONFIGURATION, detail),
                code=RuleCode.INVALID_COUPON_CONFIGURATION.value,
                detail=detail,
            ) from exc


# --------------------------------------------------
# Requests
# --------------------------------------------------
class ValidateCouponRequest(BaseModel):
    customer_id: int
    coupon_code: str = Field(..., min_length=1, max_length=50)
    estimated_fare: float = Field(..., gt=0)
    vehicle_type: Optional[str] = Field(None, max_length=20)


class ApplyCouponRequest(BaseModel):
    customer_id: int
    coupon_code: str = Field(..., min_length=1, max_length=50)
    trip_id: int
    original_fare: float = Field(..., gt=0)
    vehicle_type: Optional[str] = Field(None, max_length=20)


# --------------------------------------------------
# Responses
# --------------------------------------------------
class AvailableCoupon(BaseModel):
    id: int
    code: str
    description: str
    discount_type: DiscountType
    discount_value: float
    max_discount_amount: Optional[float]
    min_fare_amount: float
    applicable_vehicles: List[str]
    applicable_for: ApplicableFor
    ride_number: Optional[int] = None
    specific_ride_numbers: List[int] = []
    valid_until: datetime
    is_eligible: bool
    eligibility_reason: Optional[str] = None
    user_usage_count: int
    max_usage_per_user: int
    remaining_usages: int


class AvailableCouponsResponse(BaseModel):
    coupons: List[AvailableCoupon]
    customer_rides_completed: int
    next_ride_number: int


class CouponSummary(BaseModel):
    id: int
    code: str
    description: str
    discount_type: DiscountType
    discount_value: float
    applicable_vehicles: List[str]


class CouponQuoteResponse(BaseModel):
    valid: bool = True
    coupon: CouponSummary
    discount_amount: float
    original_fare: float
    final_fare: float
    message: str


class RedemptionResponse(BaseModel):
    discount_applied: bool = True
    coupon_code: str
    original_fare: float
    discount_amount: float
    final_fare: float
    usage_id: int
    replayed: bool = False


class UsageHistoryEntry(BaseModel):
    coupon_code: str
    description: str
    trip_id: int
    original_fare: float
    discount_amount: float
    final_fare: float
    vehicle_type: str
    used_at: datetime


class RecentUsage(BaseModel):
    usage_id: int
    customer_id: int
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    trip_id: int
    original_fare: float
    discount_amount: float
    final_fare: float
    vehicle_type: str
    used_at: datetime


class CouponStats(BaseModel):
    coupon_id: int
    coupon_code: str
    total_usages: int
    unique_users: int
    total_discount_given: float
    recent_usages: List[RecentUsage]


class TopCoupon(BaseModel):
    coupon_code: str
    usage_count: int
    total_discount: float


class CouponOverview(BaseModel):
    total_coupons: int
    active_coupons: int
    expired_coupons: int
    total_usages: int
    total_discount_given: float
    top_coupons: List[TopCoupon]

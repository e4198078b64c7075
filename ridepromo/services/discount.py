from pydantic import BaseModel, ConfigDict

from ridepromo.core.exceptions import InvalidInput
from ridepromo.models.coupon import DiscountType
from ridepromo.schemas.coupon import CouponTerms
from ridepromo.services.messages import RuleCode, render_reason


class DiscountQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_fare: float
    discount_amount: float
    final_fare: float


def compute_discount(terms: CouponTerms, fare: float) -> DiscountQuote:
    """Discount for ``fare``, clamped so it never exceeds the fare.

    Amounts keep full precision; round only when displaying them.
    """
    if fare < 0:
        detail = {"fare": fare}
        raise InvalidInput(render_reason(RuleCode.INVALID_FARE, detail), code=RuleCode.INVALID_FARE.value, detail=detail)

    if terms.discount_type == DiscountType.PERCENTAGE:
        discount_amount = (fare * terms.discount_value) / 100
        if terms.max_discount_amount is not None and discount_amount > terms.max_discount_amount:
            discount_amount = terms.max_discount_amount
    else:  # FIXED
        discount_amount = terms.discount_value

    discount_amount = min(max(discount_amount, 0.0), fare)

    return DiscountQuote(
        original_fare=fare,
        discount_amount=discount_amount,
        final_fare=fare - discount_amount,
    )

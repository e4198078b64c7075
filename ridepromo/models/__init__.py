from ridepromo.models.customer import Customer
from ridepromo.models.trip import Trip, TripStatus
from ridepromo.models.coupon import Coupon, DiscountType, ApplicableFor, UserType
from ridepromo.models.coupon_usage import CouponUsage

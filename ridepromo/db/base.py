from ridepromo.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from ridepromo.models.customer import Customer
from ridepromo.models.trip import Trip
from ridepromo.models.coupon import Coupon
from ridepromo.models.coupon_usage import CouponUsage

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Enum, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from ridepromo.db.base_class import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class ApplicableFor(str, enum.Enum):
    FIRST_RIDE = "FIRST_RIDE"
    NTH_RIDE = "NTH_RIDE"
    EVERY_NTH_RIDE = "EVERY_NTH_RIDE"
    SPECIFIC_RIDES = "SPECIFIC_RIDES"
    ALL_RIDES = "ALL_RIDES"


class UserType(str, enum.Enum):
    NEW = "NEW"
    EXISTING = "EXISTING"
    ALL = "ALL"


ALL_VEHICLES = "all"


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)  # Stored upper-cased
    description = Column(Text, nullable=False)

    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Float, nullable=False)  # Percentage (0-100] or fixed amount
    max_discount_amount = Column(Float, nullable=True)  # Cap for percentage type
    min_fare_amount = Column(Float, default=0.0, nullable=False)

    # Lower-cased vehicle classes, or ["all"]; empty matches nothing
    applicable_vehicles = Column(JSON, default=lambda: [ALL_VEHICLES], nullable=False)

    # Ride-number rule
    applicable_for = Column(Enum(ApplicableFor), nullable=False)
    ride_number = Column(Integer, nullable=True)  # NTH_RIDE / EVERY_NTH_RIDE
    specific_ride_numbers = Column(JSON, default=list, nullable=False)  # SPECIFIC_RIDES

    # Limits
    max_usage_per_user = Column(Integer, default=1, nullable=False)
    total_usage_limit = Column(Integer, nullable=True)  # None = unlimited
    current_usage_count = Column(Integer, default=0, nullable=False)

    # Validity
    valid_from = Column(DateTime, default=datetime.utcnow, nullable=False)
    valid_until = Column(DateTime, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Rider restrictions
    eligible_user_types = Column(JSON, default=lambda: [UserType.ALL.value], nullable=False)
    min_rides_completed = Column(Integer, default=0, nullable=False)
    max_rides_completed = Column(Integer, nullable=True)

    created_by = Column(String(100), default="admin", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    usages = relationship("CouponUsage", back_populates="coupon")

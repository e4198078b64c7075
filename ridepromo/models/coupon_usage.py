from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from ridepromo.db.base_class import Base


class CouponUsage(Base):
    """One row per committed redemption. Rows are never updated or deleted."""

    __tablename__ = "coupon_usages"
    __table_args__ = (
        UniqueConstraint(
            "coupon_id", "customer_id", "user_redemption_number",
            name="uq_coupon_usage_customer_redemption",
        ),
        UniqueConstraint("trip_id", name="uq_coupon_usage_trip"),
    )

    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    coupon_code = Column(String(50), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)

    original_fare = Column(Float, nullable=False)
    discount_amount = Column(Float, nullable=False)
    final_fare = Column(Float, nullable=False)
    vehicle_type = Column(String(20), default="unknown", nullable=False, index=True)

    # 1-based count of this customer's redemptions of this coupon
    user_redemption_number = Column(Integer, nullable=False)

    used_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    coupon = relationship("Coupon", back_populates="usages")
    customer = relationship("Customer", back_populates="coupon_usages")
    trip = relationship("Trip")

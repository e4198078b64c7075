from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from ridepromo.db.base_class import Base


class TripStatus(str, enum.Enum):
    REQUESTED = "requested"
    DRIVER_ASSIGNED = "driver_assigned"
    DRIVER_GOING_TO_PICKUP = "driver_going_to_pickup"
    DRIVER_AT_PICKUP = "driver_at_pickup"
    RIDE_STARTED = "ride_started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class Trip(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    vehicle_type = Column(String(20), nullable=False)
    status = Column(
        Enum(TripStatus, values_callable=lambda statuses: [s.value for s in statuses]),
        default=TripStatus.REQUESTED,
        nullable=False,
        index=True,
    )
    fare = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    customer = relationship("Customer", back_populates="trips")

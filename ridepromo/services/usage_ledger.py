"""
Persistence primitives for coupons and the redemption ledger.

The ledger (``coupon_usages``) is append-only and is the source of truth for
per-customer usage. ``Coupon.current_usage_count`` is only ever changed by
``increment_usage_if_below_limit``, which checks the limit and increments in
one UPDATE statement.
"""

from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import and_, case, distinct, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ridepromo.core.exceptions import ConflictOnCommit
from ridepromo.models.coupon import Coupon
from ridepromo.models.coupon_usage import CouponUsage
from ridepromo.models.customer import Customer
from ridepromo.models.trip import Trip, TripStatus
from ridepromo.schemas.coupon import normalize_code
from ridepromo.services.messages import RuleCode, render_reason

logger = structlog.get_logger()


def find_coupon_by_code(db: Session, code: str) -> Optional[Coupon]:
    return db.query(Coupon).filter(Coupon.code == normalize_code(code)).first()


def find_customer(db: Session, customer_id: int) -> Optional[Customer]:
    return db.query(Customer).filter(Customer.id == customer_id).first()


def find_customer_trip(db: Session, customer_id: int, trip_id: int) -> Optional[Trip]:
    return db.query(Trip).filter(and_(Trip.id == trip_id, Trip.customer_id == customer_id)).first()


def list_live_coupons(db: Session, now) -> List[Coupon]:
    """Active coupons whose validity window contains ``now``, newest first."""
    return (
        db.query(Coupon)
        .filter(
            Coupon.is_active == True,
            Coupon.valid_from <= now,
            Coupon.valid_until >= now,
        )
        .order_by(Coupon.created_at.desc(), Coupon.id.desc())
        .all()
    )


def count_completed_rides(db: Session, customer_id: int, exclude_trip_id: Optional[int] = None) -> int:
    query = db.query(func.count(Trip.id)).filter(
        Trip.customer_id == customer_id,
        Trip.status == TripStatus.COMPLETED,
    )
    if exclude_trip_id is not None:
        query = query.filter(Trip.id != exclude_trip_id)
    return query.scalar() or 0


def count_user_usages(db: Session, coupon_id: int, customer_id: int) -> int:
    return db.query(func.count(CouponUsage.id)).filter(
        and_(CouponUsage.coupon_id == coupon_id, CouponUsage.customer_id == customer_id)
    ).scalar() or 0


def count_user_usages_by_coupon(db: Session, customer_id: int, coupon_ids: Iterable[int]) -> Dict[int, int]:
    coupon_ids = list(coupon_ids)
    if not coupon_ids:
        return {}
    rows = (
        db.query(CouponUsage.coupon_id, func.count(CouponUsage.id))
        .filter(CouponUsage.customer_id == customer_id, CouponUsage.coupon_id.in_(coupon_ids))
        .group_by(CouponUsage.coupon_id)
        .all()
    )
    return {coupon_id: count for coupon_id, count in rows}


def increment_usage_if_below_limit(db: Session, coupon_id: int) -> bool:
    """Atomically bump ``current_usage_count`` unless the global limit is exhausted.

    Returns False when no row was updated, i.e. the limit was reached by the
    time this statement ran.
    """
    updated = (
        db.query(Coupon)
        .filter(
            Coupon.id == coupon_id,
            or_(
                Coupon.total_usage_limit.is_(None),
                Coupon.current_usage_count < Coupon.total_usage_limit,
            ),
        )
        .update(
            {Coupon.current_usage_count: Coupon.current_usage_count + 1},
            synchronize_session=False,
        )
    )
    return updated == 1


def find_usage_for_trip(db: Session, trip_id: int) -> Optional[CouponUsage]:
    return db.query(CouponUsage).filter(CouponUsage.trip_id == trip_id).first()


def append_usage(
    db: Session,
    *,
    coupon: Coupon,
    customer_id: int,
    trip_id: int,
    original_fare: float,
    discount_amount: float,
    final_fare: float,
    vehicle_type: Optional[str],
    user_redemption_number: int,
) -> CouponUsage:
    """Insert a ledger row and flush it so unique constraints are checked now.

    A failed flush leaves the session needing a rollback, so nothing loaded
    from it (``coupon`` included) may be touched on the conflict path.
    """
    coupon_id, coupon_code = coupon.id, coupon.code
    usage = CouponUsage(
        coupon_id=coupon_id,
        coupon_code=coupon_code,
        customer_id=customer_id,
        trip_id=trip_id,
        original_fare=original_fare,
        discount_amount=discount_amount,
        final_fare=final_fare,
        vehicle_type=(vehicle_type or "unknown").lower(),
        user_redemption_number=user_redemption_number,
    )
    db.add(usage)
    try:
        db.flush()
    except IntegrityError as exc:
        logger.warning(
            "coupon_usage_conflict",
            coupon_code=coupon_code,
            customer_id=customer_id,
            trip_id=trip_id,
            user_redemption_number=user_redemption_number,
        )
        detail = {"coupon_code": coupon_code, "trip_id": trip_id}
        raise ConflictOnCommit(
            render_reason(RuleCode.REDEMPTION_CONFLICT, detail),
            code=RuleCode.REDEMPTION_CONFLICT.value,
            detail=detail,
        ) from exc
    return usage


def usage_history(db: Session, customer_id: int, limit: int) -> List[CouponUsage]:
    return (
        db.query(CouponUsage)
        .options(joinedload(CouponUsage.coupon))
        .filter(CouponUsage.customer_id == customer_id)
        .order_by(CouponUsage.used_at.desc(), CouponUsage.id.desc())
        .limit(limit)
        .all()
    )


# --------------------------------------------------
# Ledger statistics (read-only)
# --------------------------------------------------
def find_coupon(db: Session, coupon_id: int) -> Optional[Coupon]:
    return db.query(Coupon).filter(Coupon.id == coupon_id).first()


def ledger_totals(db: Session, coupon_id: Optional[int] = None) -> Tuple[int, int, float]:
    """(redemptions, distinct customers, total discount) across the ledger or one coupon."""
    query = db.query(
        func.count(CouponUsage.id),
        func.count(distinct(CouponUsage.customer_id)),
        func.coalesce(func.sum(CouponUsage.discount_amount), 0.0),
    )
    if coupon_id is not None:
        query = query.filter(CouponUsage.coupon_id == coupon_id)
    usages, customers, discount = query.one()
    return usages or 0, customers or 0, float(discount or 0.0)


def recent_usages(db: Session, coupon_id: int, limit: int) -> List[CouponUsage]:
    return (
        db.query(CouponUsage)
        .options(joinedload(CouponUsage.customer))
        .filter(CouponUsage.coupon_id == coupon_id)
        .order_by(CouponUsage.used_at.desc(), CouponUsage.id.desc())
        .limit(limit)
        .all()
    )


def coupon_counts(db: Session, now) -> Tuple[int, int, int]:
    """(all, active, expired) coupons; expired means the window closed before ``now``."""
    total, active, expired = db.query(
        func.count(Coupon.id),
        func.coalesce(func.sum(case((Coupon.is_active == True, 1), else_=0)), 0),
        func.coalesce(func.sum(case((Coupon.valid_until < now, 1), else_=0)), 0),
    ).one()
    return total or 0, int(active), int(expired)


def top_coupons(db: Session, limit: int) -> List[Tuple[str, int, float]]:
    """Most redeemed coupon codes as (code, redemptions, total discount)."""
    usage_count = func.count(CouponUsage.id).label("usage_count")
    return [
        (code, count, float(discount or 0.0))
        for code, count, discount in (
            db.query(CouponUsage.coupon_code, usage_count, func.sum(CouponUsage.discount_amount))
            .group_by(CouponUsage.coupon_code)
            .order_by(usage_count.desc(), CouponUsage.coupon_code)
            .limit(limit)
            .all()
        )
    ]

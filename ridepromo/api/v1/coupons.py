from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import Optional

from ridepromo.core.config import settings
from ridepromo.core.rate_limiter import limiter
from ridepromo.db.session import get_db
from ridepromo.schemas.coupon import ApplyCouponRequest, ValidateCouponRequest
from ridepromo.services.coupon_service import CouponService
from ridepromo.utils.response import success

router = APIRouter()


@router.get("/available/{customer_id}", response_model=dict)
def list_available_coupons(
    customer_id: int,
    vehicle_type: Optional[str] = Query(None, max_length=20),
    db: Session = Depends(get_db),
):
    """All live coupons for a customer, each marked eligible or not with a reason."""
    result = CouponService.list_available_coupons(db, customer_id, vehicle_type)
    return success(data=result.model_dump(), message="Coupons retrieved successfully")


@router.post("/validate", response_model=dict)
@limiter.limit(settings.COUPON_RATE_LIMIT)
def validate_coupon(
    request: Request,
    payload: ValidateCouponRequest,
    db: Session = Depends(get_db),
):
    """Preview a coupon's discount for an estimated fare. Does not record usage."""
    result = CouponService.validate_coupon(
        db,
        payload.customer_id,
        payload.coupon_code,
        payload.estimated_fare,
        payload.vehicle_type,
    )
    return success(data=result.model_dump(), message=result.message)


@router.post("/apply", response_model=dict)
@limiter.limit(settings.COUPON_RATE_LIMIT)
def apply_coupon(
    request: Request,
    payload: ApplyCouponRequest,
    db: Session = Depends(get_db),
):
    """Redeem a coupon for a trip and record the usage."""
    result = CouponService.apply_coupon(
        db,
        payload.customer_id,
        payload.coupon_code,
        payload.trip_id,
        payload.original_fare,
        payload.vehicle_type,
    )
    message = "Coupon already applied to this trip" if result.replayed else "Coupon applied successfully"
    return success(data=result.model_dump(), message=message)


@router.get("/history/{customer_id}", response_model=dict)
def coupon_history(
    customer_id: int,
    limit: int = Query(settings.COUPON_HISTORY_LIMIT, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Customer's coupon redemptions, newest first."""
    history = CouponService.get_usage_history(db, customer_id, limit)
    return success(data=[entry.model_dump() for entry in history], message="Coupon history retrieved")


@router.get("/stats/overview", response_model=dict)
def coupon_overview(db: Session = Depends(get_db)):
    """Coupon counts and the most redeemed codes across the whole ledger."""
    overview = CouponService.get_overview_stats(db)
    return success(data=overview.model_dump(), message="Coupon overview retrieved")


@router.get("/{coupon_id}/stats", response_model=dict)
def coupon_stats(
    coupon_id: int,
    recent: int = Query(settings.COUPON_STATS_RECENT_LIMIT, ge=1, le=100),
    db: Session = Depends(get_db),
):
    stats = CouponService.get_coupon_stats(db, coupon_id, recent)
    return success(data=stats.model_dump(), message="Coupon stats retrieved")

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from fastapi import status
from datetime import datetime
from typing import List, Optional, Tuple
import structlog

from ridepromo.core.config import settings
from ridepromo.core.exceptions import (
    APIError,
    ConflictOnCommit,
    CouponError,
    ERRORS_BY_KIND,
    Expired,
    Inactive,
    IneligibleRule,
    InvalidInput,
    LimitReached,
    NotFound,
)
from ridepromo.models.coupon import Coupon
from ridepromo.models.coupon_usage import CouponUsage
from ridepromo.schemas.coupon import (
    AvailableCoupon,
    AvailableCouponsResponse,
    CouponOverview,
    CouponQuoteResponse,
    CouponStats,
    CouponSummary,
    CouponTerms,
    RecentUsage,
    RedemptionResponse,
    TopCoupon,
    UsageHistoryEntry,
    normalize_code,
)
from ridepromo.services import usage_ledger
from ridepromo.services.discount import DiscountQuote, compute_discount
from ridepromo.services.eligibility import EligibilityResult, RideContext, evaluate
from ridepromo.services.messages import RuleCode, render_reason
from ridepromo.utils.money import format_money

logger = structlog.get_logger()


def _reject(error_class, code: RuleCode, **detail):
    raise error_class(render_reason(code, detail), code=code.value, detail=detail)


class CouponService:

    @staticmethod
    def _normalize_vehicle(vehicle_type: Optional[str]) -> Optional[str]:
        if vehicle_type is None or not vehicle_type.strip():
            return None
        vehicle = vehicle_type.strip().lower()
        if vehicle not in settings.VEHICLE_TYPES:
            _reject(InvalidInput, RuleCode.UNKNOWN_VEHICLE_TYPE, vehicle_type=vehicle)
        return vehicle

    @staticmethod
    def _require_customer(db: Session, customer_id: int):
        customer = usage_ledger.find_customer(db, customer_id)
        if not customer:
            _reject(NotFound, RuleCode.CUSTOMER_NOT_FOUND, customer_id=customer_id)
        return customer

    @staticmethod
    def _load_coupon(db: Session, coupon_code: str) -> Tuple[Coupon, CouponTerms]:
        coupon = usage_ledger.find_coupon_by_code(db, coupon_code)
        if not coupon:
            _reject(NotFound, RuleCode.COUPON_NOT_FOUND, coupon_code=normalize_code(coupon_code))
        return coupon, CouponTerms.from_model(coupon)

    @staticmethod
    def _check_validity_window(terms: CouponTerms, now: datetime) -> None:
        if not terms.is_active:
            _reject(Inactive, RuleCode.COUPON_INACTIVE, coupon_code=terms.code)
        if now < terms.valid_from:
            _reject(Inactive, RuleCode.COUPON_NOT_STARTED, coupon_code=terms.code, valid_from=terms.valid_from.isoformat())
        if now > terms.valid_until:
            _reject(Expired, RuleCode.COUPON_EXPIRED, coupon_code=terms.code, valid_until=terms.valid_until.isoformat())

    @staticmethod
    def _check_eligibility(terms: CouponTerms, context: RideContext) -> None:
        result = evaluate(terms, context)
        if not result.is_eligible:
            error_class = ERRORS_BY_KIND[result.error_kind]
            raise error_class(result.reason, code=result.code.value, detail=result.detail)

    @staticmethod
    def _check_min_fare(terms: CouponTerms, fare: float) -> None:
        if fare < terms.min_fare_amount:
            _reject(IneligibleRule, RuleCode.MIN_FARE_NOT_MET, min_fare_amount=terms.min_fare_amount, fare=fare)

    @staticmethod
    def _quote(
        db: Session,
        terms: CouponTerms,
        customer_id: int,
        fare: float,
        vehicle_type: Optional[str],
        exclude_trip_id: Optional[int] = None,
    ) -> Tuple[RideContext, DiscountQuote]:
        """Run the rider checks against fresh counts and price the discount."""
        context = RideContext(
            vehicle_type=vehicle_type,
            completed_rides_count=usage_ledger.count_completed_rides(db, customer_id, exclude_trip_id=exclude_trip_id),
            user_usage_count=usage_ledger.count_user_usages(db, terms.id, customer_id),
        )
        CouponService._check_eligibility(terms, context)
        CouponService._check_min_fare(terms, fare)
        return context, compute_discount(terms, fare)

    @staticmethod
    def list_available_coupons(
        db: Session,
        customer_id: int,
        vehicle_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AvailableCouponsResponse:
        """Every live coupon annotated with whether this customer can use it."""
        now = now or datetime.utcnow()
        vehicle = CouponService._normalize_vehicle(vehicle_type)
        CouponService._require_customer(db, customer_id)

        completed_rides = usage_ledger.count_completed_rides(db, customer_id)
        coupons = usage_ledger.list_live_coupons(db, now)
        usage_counts = usage_ledger.count_user_usages_by_coupon(db, customer_id, [c.id for c in coupons])

        available = []
        for coupon in coupons:
            try:
                terms = CouponTerms.from_model(coupon)
            except InvalidInput as exc:
                logger.warning("coupon_misconfigured", coupon_code=coupon.code, problems=exc.detail.get("problems"))
                continue

            user_usage_count = usage_counts.get(coupon.id, 0)
            result: EligibilityResult = evaluate(
                terms,
                RideContext(
                    vehicle_type=vehicle,
                    completed_rides_count=completed_rides,
                    user_usage_count=user_usage_count,
                ),
            )
            available.append(
                AvailableCoupon(
                    id=coupon.id,
                    code=coupon.code,
                    description=coupon.description,
                    discount_type=coupon.discount_type,
                    discount_value=coupon.discount_value,
                    max_discount_amount=terms.max_discount_amount,
                    min_fare_amount=terms.min_fare_amount,
                    applicable_vehicles=list(coupon.applicable_vehicles or []),
                    applicable_for=coupon.applicable_for,
                    ride_number=coupon.ride_number,
                    specific_ride_numbers=list(coupon.specific_ride_numbers or []),
                    valid_until=coupon.valid_until,
                    is_eligible=result.is_eligible,
                    eligibility_reason=result.reason,
                    user_usage_count=user_usage_count,
                    max_usage_per_user=terms.max_usage_per_user,
                    remaining_usages=max(0, terms.max_usage_per_user - user_usage_count),
                )
            )

        logger.info(
            "coupons_listed",
            customer_id=customer_id,
            vehicle_type=vehicle,
            total=len(available),
            eligible=sum(1 for c in available if c.is_eligible),
        )
        return AvailableCouponsResponse(
            coupons=available,
            customer_rides_completed=completed_rides,
            next_ride_number=completed_rides + 1,
        )

    @staticmethod
    def validate_coupon(
        db: Session,
        customer_id: int,
        coupon_code: str,
        estimated_fare: float,
        vehicle_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CouponQuoteResponse:
        """Check a coupon and preview the discount without recording usage."""
        now = now or datetime.utcnow()
        try:
            vehicle = CouponService._normalize_vehicle(vehicle_type)
            coupon, terms = CouponService._load_coupon(db, coupon_code)
            CouponService._check_validity_window(terms, now)
            CouponService._require_customer(db, customer_id)
            _, quote = CouponService._quote(db, terms, customer_id, estimated_fare, vehicle)
        except CouponError as exc:
            logger.info(
                "coupon_rejected",
                stage="validate",
                coupon_code=normalize_code(coupon_code),
                customer_id=customer_id,
                kind=exc.kind.value,
                code=exc.code,
            )
            raise

        logger.info(
            "coupon_validated",
            coupon_code=terms.code,
            customer_id=customer_id,
            discount_amount=quote.discount_amount,
        )
        return CouponQuoteResponse(
            coupon=CouponSummary(
                id=coupon.id,
                code=coupon.code,
                description=coupon.description,
                discount_type=coupon.discount_type,
                discount_value=coupon.discount_value,
                applicable_vehicles=list(coupon.applicable_vehicles or []),
            ),
            discount_amount=quote.discount_amount,
            original_fare=quote.original_fare,
            final_fare=quote.final_fare,
            message=f"Coupon applied! You saved {format_money(quote.discount_amount)}",
        )

    @staticmethod
    def _replay(existing: CouponUsage, coupon: Coupon, customer_id: int, trip_id: int) -> RedemptionResponse:
        if existing.coupon_id != coupon.id:
            _reject(
                ConflictOnCommit,
                RuleCode.TRIP_ALREADY_DISCOUNTED,
                trip_id=trip_id,
                applied_coupon_code=existing.coupon_code,
            )
        logger.info("coupon_apply_replayed", coupon_code=coupon.code, customer_id=customer_id, trip_id=trip_id)
        return RedemptionResponse(
            coupon_code=existing.coupon_code,
            original_fare=existing.original_fare,
            discount_amount=existing.discount_amount,
            final_fare=existing.final_fare,
            usage_id=existing.id,
            replayed=True,
        )

    @staticmethod
    def apply_coupon(
        db: Session,
        customer_id: int,
        coupon_code: str,
        trip_id: int,
        original_fare: float,
        vehicle_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RedemptionResponse:
        """Redeem a coupon for a trip.

        Re-runs every check against fresh counts, then increments the coupon's
        usage count with a conditional UPDATE and appends the ledger row in the
        same transaction. Any rejection rolls the transaction back, so a failed
        attempt leaves neither an increment nor a ledger row behind.

        The trip id doubles as an idempotency key: repeating a committed
        request returns the original result with ``replayed=True``.
        """
        now = now or datetime.utcnow()
        try:
            vehicle = CouponService._normalize_vehicle(vehicle_type)
            coupon, terms = CouponService._load_coupon(db, coupon_code)
            CouponService._require_customer(db, customer_id)
            if not usage_ledger.find_customer_trip(db, customer_id, trip_id):
                _reject(NotFound, RuleCode.TRIP_NOT_FOUND, trip_id=trip_id)

            existing = usage_ledger.find_usage_for_trip(db, trip_id)
            if existing:
                return CouponService._replay(existing, coupon, customer_id, trip_id)

            CouponService._check_validity_window(terms, now)
            context, quote = CouponService._quote(
                db, terms, customer_id, original_fare, vehicle, exclude_trip_id=trip_id
            )

            if not usage_ledger.increment_usage_if_below_limit(db, coupon.id):
                logger.warning("coupon_limit_race_lost", coupon_code=coupon.code, customer_id=customer_id, trip_id=trip_id)
                _reject(
                    LimitReached,
                    RuleCode.LIMIT_RACE_LOST,
                    coupon_code=coupon.code,
                    total_usage_limit=terms.total_usage_limit,
                )

            usage = usage_ledger.append_usage(
                db,
                coupon=coupon,
                customer_id=customer_id,
                trip_id=trip_id,
                original_fare=quote.original_fare,
                discount_amount=quote.discount_amount,
                final_fare=quote.final_fare,
                vehicle_type=vehicle,
                user_redemption_number=context.user_usage_count + 1,
            )
            db.commit()
        except CouponError as exc:
            db.rollback()
            logger.info(
                "coupon_rejected",
                stage="apply",
                coupon_code=normalize_code(coupon_code),
                customer_id=customer_id,
                trip_id=trip_id,
                kind=exc.kind.value,
                code=exc.code,
            )
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception("coupon_apply_failed", customer_id=customer_id, trip_id=trip_id, coupon_code=coupon_code)
            raise APIError(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                message="Failed to apply coupon",
            )

        logger.info(
            "coupon_applied",
            coupon_code=coupon.code,
            customer_id=customer_id,
            trip_id=trip_id,
            discount_amount=quote.discount_amount,
            usage_id=usage.id,
        )
        return RedemptionResponse(
            coupon_code=coupon.code,
            original_fare=quote.original_fare,
            discount_amount=quote.discount_amount,
            final_fare=quote.final_fare,
            usage_id=usage.id,
        )

    @staticmethod
    def get_usage_history(db: Session, customer_id: int, limit: Optional[int] = None) -> List[UsageHistoryEntry]:
        """Customer's redemptions, newest first."""
        CouponService._require_customer(db, customer_id)
        usages = usage_ledger.usage_history(db, customer_id, limit or settings.COUPON_HISTORY_LIMIT)
        return [
            UsageHistoryEntry(
                coupon_code=usage.coupon_code,
                description=usage.coupon.description if usage.coupon else "N/A",
                trip_id=usage.trip_id,
                original_fare=usage.original_fare,
                discount_amount=usage.discount_amount,
                final_fare=usage.final_fare,
                vehicle_type=usage.vehicle_type,
                used_at=usage.used_at,
            )
            for usage in usages
        ]

    @staticmethod
    def get_coupon_stats(db: Session, coupon_id: int, recent_limit: Optional[int] = None) -> CouponStats:
        """Redemption totals for one coupon plus its latest ledger rows."""
        coupon = usage_ledger.find_coupon(db, coupon_id)
        if not coupon:
            _reject(NotFound, RuleCode.COUPON_NOT_FOUND, coupon_id=coupon_id)

        usages, customers, discount = usage_ledger.ledger_totals(db, coupon_id)
        recent = usage_ledger.recent_usages(db, coupon_id, recent_limit or settings.COUPON_STATS_RECENT_LIMIT)
        return CouponStats(
            coupon_id=coupon.id,
            coupon_code=coupon.code,
            total_usages=usages,
            unique_users=customers,
            total_discount_given=discount,
            recent_usages=[
                RecentUsage(
                    usage_id=usage.id,
                    customer_id=usage.customer_id,
                    customer_name=usage.customer.name if usage.customer else None,
                    customer_phone=usage.customer.phone if usage.customer else None,
                    trip_id=usage.trip_id,
                    original_fare=usage.original_fare,
                    discount_amount=usage.discount_amount,
                    final_fare=usage.final_fare,
                    vehicle_type=usage.vehicle_type,
                    used_at=usage.used_at,
                )
                for usage in recent
            ],
        )

    @staticmethod
    def get_overview_stats(db: Session, now: Optional[datetime] = None) -> CouponOverview:
        now = now or datetime.utcnow()
        total, active, expired = usage_ledger.coupon_counts(db, now)
        usages, _, discount = usage_ledger.ledger_totals(db)
        return CouponOverview(
            total_coupons=total,
            active_coupons=active,
            expired_coupons=expired,
            total_usages=usages,
            total_discount_given=discount,
            top_coupons=[
                TopCoupon(coupon_code=code, usage_count=count, total_discount=total_discount)
                for code, count, total_discount in usage_ledger.top_coupons(db, settings.COUPON_TOP_LIMIT)
            ],
        )

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from . import models
from .errors import CouponConflictError
from .metrics import COUPON_REDEMPTIONS, COUPON_VALIDATIONS

logger = logging.getLogger("checkout-service")

INVALID_CODE = "Invalid coupon code"
NOT_YET_ACTIVE = "Coupon not yet active"
EXPIRED = "Coupon expired"
WRONG_RESTAURANT = "Coupon not valid for this restaurant"
USAGE_LIMIT_REACHED = "Coupon usage limit reached"
USER_LIMIT_REACHED = "You have already used this coupon the maximum number of times"


@dataclass
class CouponValidation:
    valid: bool
    coupon: Optional[models.Coupon] = None
    error: Optional[str] = None


def normalize_code(code: str) -> str:
    return code.strip().upper()


def get_coupon_by_code(db: Session, code: str) -> Optional[models.Coupon]:
    return db.execute(
        select(models.Coupon).where(func.upper(models.Coupon.code) == normalize_code(code))
    ).scalar_one_or_none()


def user_usage_count(db: Session, coupon_id: int, user_id: str) -> int:
    return db.execute(
        select(func.count(models.CouponUsage.usage_id)).where(
            models.CouponUsage.coupon_id == coupon_id,
            models.CouponUsage.user_id == user_id,
        )
    ).scalar_one()


def validate_coupon(
    db: Session,
    code: str,
    user_id: str,
    restaurant_id: int,
    order_amount: Decimal,
    now: Optional[datetime] = None,
) -> CouponValidation:
    """
    Read-only eligibility check. The first failing rule wins:
    existence/active, date window, restaurant scope, minimum order,
    global usage cap, per-user cap.
    """
    now = now or models.utcnow()
    result = _check(db, code, user_id, restaurant_id, Decimal(order_amount), now)
    COUPON_VALIDATIONS.labels("valid" if result.valid else "invalid").inc()
    return result


def _check(db, code, user_id, restaurant_id, order_amount, now) -> CouponValidation:
    coupon = get_coupon_by_code(db, code) if code and code.strip() else None
    if coupon is None or not coupon.is_active:
        return CouponValidation(False, error=INVALID_CODE)

    if now < coupon.start_date:
        return CouponValidation(False, error=NOT_YET_ACTIVE)
    if now > coupon.end_date:
        return CouponValidation(False, error=EXPIRED)

    if coupon.restaurant_id is not None and coupon.restaurant_id != restaurant_id:
        return CouponValidation(False, error=WRONG_RESTAURANT)

    minimum = Decimal(coupon.minimum_order or 0)
    if order_amount < minimum:
        return CouponValidation(False, error=f"Minimum order of ${minimum:.2f} required")

    if coupon.max_usage is not None and (coupon.current_usage or 0) >= coupon.max_usage:
        return CouponValidation(False, error=USAGE_LIMIT_REACHED)

    if coupon.user_limit is not None:
        if user_usage_count(db, coupon.coupon_id, user_id) >= coupon.user_limit:
            return CouponValidation(False, error=USER_LIMIT_REACHED)

    return CouponValidation(True, coupon=coupon)


def redeem_coupon(db: Session, coupon: models.Coupon, user_id: str, order_id: int) -> models.CouponUsage:
    """
    Record one use of ``coupon`` inside the caller's order transaction.

    The guarded UPDATE takes the row lock and re-checks the global cap at write
    time; the per-user cap is checked while that lock is held. Raises
    CouponConflictError when either cap no longer allows the use; the caller
    must roll back.
    """
    result = db.execute(
        update(models.Coupon)
        .where(
            models.Coupon.coupon_id == coupon.coupon_id,
            models.Coupon.is_active.is_(True),
            or_(
                models.Coupon.max_usage.is_(None),
                models.Coupon.current_usage < models.Coupon.max_usage,
            ),
        )
        .values(current_usage=models.Coupon.current_usage + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        COUPON_REDEMPTIONS.labels("conflict").inc()
        raise CouponConflictError()

    if coupon.user_limit is not None:
        # the row just incremented is locked until commit, so this count is stable
        if user_usage_count(db, coupon.coupon_id, user_id) >= coupon.user_limit:
            COUPON_REDEMPTIONS.labels("conflict").inc()
            raise CouponConflictError()

    usage = models.CouponUsage(coupon_id=coupon.coupon_id, user_id=user_id, order_id=order_id)
    db.add(usage)
    db.flush()
    COUPON_REDEMPTIONS.labels("redeemed").inc()
    return usage


def list_active_coupons(db: Session, restaurant_id: Optional[int] = None) -> List[models.Coupon]:
    now = models.utcnow()
    query = select(models.Coupon).where(
        models.Coupon.is_active.is_(True),
        models.Coupon.start_date <= now,
        models.Coupon.end_date >= now,
    )
    if restaurant_id is not None:
        query = query.where(
            or_(models.Coupon.restaurant_id == restaurant_id, models.Coupon.restaurant_id.is_(None))
        )
    return list(db.execute(query.order_by(models.Coupon.created_at.desc())).scalars())


def order_coupon(db: Session, order_id: int) -> Optional[models.Coupon]:
    return db.execute(
        select(models.Coupon)
        .join(models.CouponUsage, models.CouponUsage.coupon_id == models.Coupon.coupon_id)
        .where(models.CouponUsage.order_id == order_id)
    ).scalars().first()

# storefront/services/coupon_service.py
"""Coupon validation, discount calculation and redemption.

Validation is pure and works on an already-loaded ``Coupon``. Redemption
is a separate step that consumes one use with a conditional UPDATE, so
two checkouts racing for the last use cannot both win.
"""
from datetime import date, datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy import and_, func, or_, update

from ..extensions import db
from ..model import Coupon, DiscountType
from ..utils.money import D, ZERO, round_money
from .results import CouponCheck, CouponRejection

logger = structlog.get_logger(__name__)


def _as_date(now) -> date:
    if now is None:
        return datetime.now(timezone.utc).date()
    if isinstance(now, datetime):
        return now.date()
    return now


# ---- predicates (replace the old active/valid query scopes) ----------------

def is_active_coupon(coupon: Coupon) -> bool:
    return bool(coupon.is_active)


def is_within_window(coupon: Coupon, now=None) -> bool:
    today = _as_date(now)
    if coupon.valid_from and today < coupon.valid_from:
        return False
    if coupon.valid_until and today > coupon.valid_until:
        return False
    return True


def has_remaining_uses(coupon: Coupon) -> bool:
    return coupon.usage_limit is None or (coupon.used_count or 0) < coupon.usage_limit


def meets_minimum(coupon: Coupon, order_amount) -> bool:
    return coupon.min_order_amount is None or D(order_amount) >= D(coupon.min_order_amount)


def is_redeemable(coupon: Coupon, now=None) -> bool:
    return is_active_coupon(coupon) and is_within_window(coupon, now) and has_remaining_uses(coupon)


def redeemable_criteria(now=None):
    """Same rules as ``is_redeemable`` expressed as SQL criteria."""
    today = _as_date(now)
    return and_(
        Coupon.is_active.is_(True),
        or_(Coupon.valid_from.is_(None), Coupon.valid_from <= today),
        or_(Coupon.valid_until.is_(None), Coupon.valid_until >= today),
        or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
    )


# ---- validation / discount -------------------------------------------------

def validate(coupon: Coupon, order_amount, now=None) -> CouponCheck:
    """Checks run in a fixed order and stop at the first failure."""
    if not is_active_coupon(coupon):
        return CouponCheck.rejected(CouponRejection.INACTIVE)
    if not is_within_window(coupon, now):
        return CouponCheck.rejected(CouponRejection.OUT_OF_WINDOW)
    if not has_remaining_uses(coupon):
        return CouponCheck.rejected(CouponRejection.EXHAUSTED)
    if not meets_minimum(coupon, order_amount):
        return CouponCheck.rejected(CouponRejection.MINIMUM_NOT_MET)
    return CouponCheck.valid()


def calculate_discount(coupon: Coupon, order_amount) -> Decimal:
    amount = D(order_amount)
    if amount <= 0:
        return ZERO

    value = D(coupon.discount_value)
    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        discount = amount * value / Decimal(100)
    else:
        discount = value

    if coupon.max_discount is not None:
        discount = min(discount, D(coupon.max_discount))
    discount = max(ZERO, min(discount, amount))
    return round_money(discount)


def redeem(coupon: Coupon) -> CouponCheck:
    """Consume one use inside the caller's transaction.

    The guard is re-evaluated by the database at increment time; when the
    limit was reached after ``validate`` ran, no row matches.
    """
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            Coupon.is_active.is_(True),
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.expire(coupon, ["used_count"])
    if result.rowcount != 1:
        logger.info("Coupon redemption lost the race", code=coupon.code)
        return CouponCheck.rejected(CouponRejection.RACE_LOST)
    return CouponCheck.valid()


# ---- lookup / admin ------------------------------------------------------

def normalize_code(code) -> str:
    return (code or "").strip().upper()


def find_coupon(code) -> Coupon | None:
    code = normalize_code(code)
    if not code:
        return None
    return Coupon.query.filter(func.upper(Coupon.code) == code).first()


def apply_preview(code, order_amount, now=None) -> tuple[CouponCheck, Coupon | None, Decimal]:
    """What the customer sees before checkout: no use is consumed."""
    coupon = find_coupon(code)
    if not coupon:
        return CouponCheck.rejected(CouponRejection.NOT_FOUND), None, ZERO
    check = validate(coupon, order_amount, now)
    if not check.ok:
        return check, coupon, ZERO
    return check, coupon, calculate_discount(coupon, order_amount)


def _parse_date(value, field):
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        raise ValueError(f"Invalid date format for {field}")


def _parse_amount(value, field, required=False):
    if value in (None, ""):
        if required:
            raise ValueError(f"{field} is required")
        return None
    try:
        amount = D(value)
    except Exception:
        raise ValueError(f"{field} must be numeric")
    if amount < 0:
        raise ValueError(f"{field} must be >= 0")
    return round_money(amount)


def _apply_payload(coupon: Coupon, data: dict, partial: bool):
    if "code" in data or not partial:
        code = normalize_code(data.get("code"))
        if not code:
            raise ValueError("code is required")
        clash = Coupon.query.filter(func.upper(Coupon.code) == code)
        if coupon.id:
            clash = clash.filter(Coupon.id != coupon.id)
        if clash.first():
            raise ValueError("Coupon code already exists")
        coupon.code = code

    if "discount_type" in data or not partial:
        dtype = (data.get("discount_type") or "").lower().strip()
        if dtype not in {t.value for t in DiscountType}:
            raise ValueError("discount_type must be 'percentage' or 'fixed'")
        coupon.discount_type = dtype

    if "discount_value" in data or not partial:
        coupon.discount_value = _parse_amount(data.get("discount_value"), "discount_value", required=True)
    if coupon.discount_type == DiscountType.PERCENTAGE.value and D(coupon.discount_value) > 100:
        raise ValueError("percentage discount must be <= 100")

    for field in ("min_order_amount", "max_discount"):
        if field in data:
            setattr(coupon, field, _parse_amount(data.get(field), field))

    if "usage_limit" in data:
        limit = data.get("usage_limit")
        if limit in (None, ""):
            coupon.usage_limit = None
        else:
            try:
                limit = int(limit)
            except (TypeError, ValueError):
                raise ValueError("usage_limit must be an integer")
            if limit < 1:
                raise ValueError("usage_limit must be >= 1")
            coupon.usage_limit = limit

    if "valid_from" in data:
        coupon.valid_from = _parse_date(data.get("valid_from"), "valid_from")
    if "valid_until" in data:
        coupon.valid_until = _parse_date(data.get("valid_until"), "valid_until")
    if coupon.valid_from and coupon.valid_until and coupon.valid_until < coupon.valid_from:
        raise ValueError("valid_until must be on or after valid_from")

    if "description" in data:
        coupon.description = data.get("description")
    if "is_active" in data:
        coupon.is_active = bool(data.get("is_active"))


def create_coupon(data: dict) -> Coupon:
    coupon = Coupon(used_count=0, is_active=True)
    _apply_payload(coupon, data, partial=False)
    db.session.add(coupon)
    db.session.commit()
    logger.info("Coupon created", code=coupon.code, coupon_id=coupon.id)
    return coupon


def update_coupon(coupon_id: int, data: dict) -> Coupon | None:
    coupon = db.session.get(Coupon, coupon_id)
    if not coupon:
        return None
    _apply_payload(coupon, data, partial=True)
    db.session.commit()
    logger.info("Coupon updated", code=coupon.code, coupon_id=coupon.id)
    return coupon


def deactivate_coupon(coupon_id: int) -> Coupon | None:
    """Orders keep referencing their coupon code, so coupons are never deleted."""
    coupon = db.session.get(Coupon, coupon_id)
    if not coupon:
        return None
    coupon.is_active = False
    db.session.commit()
    logger.info("Coupon deactivated", code=coupon.code, coupon_id=coupon.id)
    return coupon

# storefront/coupon/routes.py
from datetime import datetime, timezone

from flask import request

from ..extensions import db
from ..model import Coupon
from ..services import coupon_service
from ..utils.api import ok, err
from ..utils.decorators import role_required
from ..utils.money import D, round_money
from . import bp


@bp.post("/apply")
def apply_coupon():
    """Preview a coupon against an order amount; no use is consumed."""
    data = request.get_json(silent=True) or {}
    code = data.get("code")
    if not code:
        raise ValueError("code is required")
    try:
        amount = D(data.get("order_amount"))
    except Exception:
        raise ValueError("order_amount must be numeric")
    if amount < 0:
        raise ValueError("order_amount must be >= 0")

    check, coupon, discount = coupon_service.apply_preview(code, amount, datetime.now(timezone.utc))
    if not check.ok:
        status = 404 if coupon is None else 422
        return err(check.message, status, {"reason": check.rejection.value})

    return ok("Coupon applied", {
        "coupon": {
            "code": coupon.code,
            "discount_type": coupon.discount_type,
            "discount_value": float(coupon.discount_value),
        },
        "discount": float(discount),
        "final_amount": float(round_money(amount - discount)),
    })


@bp.get("")
@role_required("admin")
def list_coupons():
    """
    Query params:
      - active=true|false
      - valid=true   only coupons redeemable today
    """
    q = Coupon.query
    active = request.args.get("active")
    if active is not None:
        q = q.filter(Coupon.is_active.is_(active.lower() == "true"))
    if (request.args.get("valid") or "").lower() == "true":
        q = q.filter(coupon_service.redeemable_criteria(datetime.now(timezone.utc)))

    items = q.order_by(Coupon.id.desc()).all()
    return ok("coupons", {"items": [c.as_api() for c in items]})


@bp.get("/<int:coupon_id>")
@role_required("admin")
def get_coupon(coupon_id: int):
    c = db.session.get(Coupon, coupon_id)
    if not c:
        return err("coupon not found", 404)
    return ok("coupon", {**c.as_api(), "redeemable": coupon_service.is_redeemable(c, datetime.now(timezone.utc))})


@bp.post("")
@role_required("admin")
def create_coupon():
    data = request.get_json(silent=True) or {}
    c = coupon_service.create_coupon(data)
    return ok("Coupon created", c.as_api(), 201)


@bp.put("/<int:coupon_id>")
@role_required("admin")
def update_coupon(coupon_id: int):
    data = request.get_json(silent=True) or {}
    c = coupon_service.update_coupon(coupon_id, data)
    if not c:
        return err("coupon not found", 404)
    return ok("Coupon updated", c.as_api())


@bp.delete("/<int:coupon_id>")
@role_required("admin")
def delete_coupon(coupon_id: int):
    # orders keep their coupon_code, so the row stays and is switched off
    c = coupon_service.deactivate_coupon(coupon_id)
    if not c:
        return err("coupon not found", 404)
    return ok("Coupon deactivated", c.as_api())

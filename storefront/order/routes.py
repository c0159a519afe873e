# storefront/order/routes.py
from flask import request
from flask_jwt_extended import jwt_required

from ..extensions import db
from ..model import Order
from ..services.order_service import OrderOrchestrator
from ..services.results import CheckoutResult
from ..utils.api import ok, err, result_error
from ..utils.decorators import current_role, current_user_id, role_required
from . import bp


def _orchestrator():
    return OrderOrchestrator.from_app()


def _can_see(order: Order) -> bool:
    if current_role() == "admin":
        return True
    uid = current_user_id()
    return uid is not None and order.user_id == uid


def _paging():
    page = max(int(request.args.get("page", 1)), 1)
    per = min(max(int(request.args.get("per_page", 20)), 1), 100)
    return page, per


def _checkout_error(result: CheckoutResult):
    if result.coupon_rejection:
        return err(result.message, 422, {"reason": result.coupon_rejection.value})
    return err(result.message, 422, result.details)


@bp.post("")
def checkout():
    """
    Body:
      - items: [{product_id, quantity}]
      - shipping_address: {first_name, last_name, email, phone, address, city, state, zip, country}
      - billing_address (optional, same shape)
      - payment_method: card | bank_transfer | cash_on_delivery
      - coupon_code, notes (optional)
    """
    data = request.get_json(silent=True) or {}
    result = _orchestrator().create_order(
        cart=data.get("items"),
        shipping_address=data.get("shipping_address"),
        payment_method=data.get("payment_method"),
        coupon_code=data.get("coupon_code"),
        billing_address=data.get("billing_address"),
        notes=data.get("notes"),
        user_id=current_user_id(),
    )
    if not result.ok:
        return _checkout_error(result)
    return ok("Order created", result.order.as_api(), 201)


@bp.post("/quote")
def quote():
    data = request.get_json(silent=True) or {}
    result = _orchestrator().quote(
        data.get("items"),
        data.get("payment_method"),
        coupon_code=data.get("coupon_code"),
    )
    if isinstance(result, CheckoutResult):
        return _checkout_error(result)
    return ok("quote", result.as_api())


@bp.get("")
@jwt_required()
def my_orders():
    page, per = _paging()
    paged = _orchestrator().list_orders(
        {"status": request.args.get("status")}, page=page, per_page=per, user_id=current_user_id()
    )
    return ok("orders", {
        "page": page,
        "per_page": per,
        "total": paged.total,
        "items": [o.as_api() for o in paged.items],
    })


@bp.get("/<int:order_id>")
@jwt_required()
def get_order(order_id: int):
    o = db.session.get(Order, order_id)
    if not o or not _can_see(o):
        return err("order not found", 404)
    return ok("order", o.as_api())


@bp.post("/<int:order_id>/cancel")
@jwt_required()
def cancel_order(order_id: int):
    o = db.session.get(Order, order_id)
    if not o or not _can_see(o):
        return err("order not found", 404)
    result = _orchestrator().cancel(order_id)
    if not result.ok:
        return result_error(result)
    return ok("Order cancelled", result.order.as_api())


@bp.get("/admin")
@role_required("admin")
def admin_orders():
    """
    Query params:
      - page, per_page
      - status, payment_status, shipment_status
      - search=ORD-...
    """
    page, per = _paging()
    filters = {
        k: request.args.get(k)
        for k in ("status", "payment_status", "shipment_status", "search")
    }
    paged = _orchestrator().list_orders(filters, page=page, per_page=per)
    return ok("orders", {
        "page": page,
        "per_page": per,
        "total": paged.total,
        "items": [o.as_api() for o in paged.items],
    })


@bp.put("/<int:order_id>/status")
@role_required("admin")
def update_status(order_id: int):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        raise ValueError("status is required")
    result = _orchestrator().set_status(order_id, data["status"])
    if not result.ok:
        return result_error(result)
    return ok("Order status updated", result.order.as_api())


@bp.get("/stats")
@role_required("admin")
def stats():
    return ok("stats", _orchestrator().order_stats())

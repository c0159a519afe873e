# storefront/payment/routes.py
from flask import request

from ..extensions import db
from ..model import Order
from ..services import payment_service
from ..services.results import VerificationStatus
from ..utils.api import ok, err, result_error
from ..utils.decorators import current_user_id
from . import bp

SIGNATURE_HEADER = "X-Payment-Signature"


def _owned_order(order_id):
    """Guest orders are reachable by id; account orders only by their owner."""
    o = db.session.get(Order, order_id)
    if not o:
        return None
    if o.user_id is not None and o.user_id != current_user_id():
        return None
    return o


def _verification_response(result):
    if result.status is VerificationStatus.SIGNATURE_MISMATCH:
        return err("Invalid payment signature", 400, {"reason": result.status.value})
    if result.status is VerificationStatus.UNKNOWN_ORDER:
        return err("Order not found for this payment", 404, {"reason": result.status.value})

    data = {"order_id": result.order_id, "already_processed": result.already_processed}
    if result.order_id:
        o = db.session.get(Order, result.order_id)
        data.update({"status": o.status, "payment_status": o.payment_status})
    return ok("Payment already processed" if result.already_processed else "Payment verified", data)


@bp.post("/create-order")
def create_payment_order():
    data = request.get_json(silent=True) or {}
    try:
        order_id = int(data.get("order_id"))
    except (TypeError, ValueError):
        raise ValueError("order_id is required")

    o = _owned_order(order_id)
    if not o:
        return err("order not found", 404)

    result = payment_service.create_payment_order(o)
    if not result.ok:
        return result_error(result)
    return ok("Payment order created", {**result.data, "order_number": o.order_number})


@bp.post("/webhook")
def payment_webhook():
    """Checkout callback: {gateway_order_id, payment_id, signature}."""
    data = request.get_json(silent=True) or {}
    result = payment_service.verify(
        data.get("gateway_order_id"),
        data.get("payment_id"),
        data.get("signature"),
    )
    return _verification_response(result)


@bp.post("/events")
def gateway_events():
    result = payment_service.verify_event(request.get_data(), request.headers.get(SIGNATURE_HEADER))
    return _verification_response(result)


@bp.get("/status/<int:order_id>")
def payment_status(order_id: int):
    o = _owned_order(order_id)
    if not o:
        return err("order not found", 404)
    return ok("payment status", {
        "order_id": o.id,
        "order_number": o.order_number,
        "status": o.status,
        "payment_method": o.payment_method,
        "payment_status": o.payment_status,
        "payment_order_id": o.payment_order_id,
        "payment_id": o.payment_id,
        "total": float(o.total),
    })

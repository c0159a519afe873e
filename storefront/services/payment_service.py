# storefront/services/payment_service.py
"""Gateway callbacks: signature checks, then one state change per payment."""
import json

import structlog
from flask import current_app

from ..model import Order, OrderStatus
from ..utils.money import to_minor_units
from .gateway import get_gateway, payment_signature, sign, signatures_match
from .order_service import OrderOrchestrator
from .results import CarrierResult, FailureKind, VerificationResult, VerificationStatus

logger = structlog.get_logger(__name__)


def _orchestrator(orchestrator=None) -> OrderOrchestrator:
    return orchestrator or OrderOrchestrator.from_app()


def _apply_verified(gateway_order_id, payment_id, orchestrator=None) -> VerificationResult:
    if not payment_id:
        raise ValueError("payment id is required")
    order = Order.query.filter_by(payment_order_id=gateway_order_id).first() if gateway_order_id else None
    if not order:
        logger.warning("Payment for unknown gateway order", gateway_order_id=gateway_order_id, payment_id=payment_id)
        return VerificationResult(VerificationStatus.UNKNOWN_ORDER)

    result = _orchestrator(orchestrator).on_payment_verified(order.id, payment_id, gateway_order_id)
    return VerificationResult(
        VerificationStatus.VERIFIED,
        order_id=order.id,
        already_processed=not result.changed,
    )


def verify(gateway_order_id, payment_id, signature, orchestrator=None) -> VerificationResult:
    """Checkout callback: HMAC over ``"{gateway_order_id}|{payment_id}"``."""
    if not gateway_order_id or not payment_id:
        raise ValueError("gateway_order_id and payment_id are required")

    expected = payment_signature(current_app.config["PAYMENT_KEY_SECRET"], gateway_order_id, payment_id)
    if not signatures_match(expected, signature):
        logger.warning("Payment signature mismatch", gateway_order_id=gateway_order_id, payment_id=payment_id)
        return VerificationResult(VerificationStatus.SIGNATURE_MISMATCH)

    return _apply_verified(gateway_order_id, payment_id, orchestrator)


def _entity(payload, name) -> dict:
    return ((payload or {}).get(name) or {}).get("entity") or {}


def verify_event(raw_body: bytes, signature, orchestrator=None) -> VerificationResult:
    """Gateway event webhook; the signature covers the raw request body."""
    expected = sign(current_app.config["PAYMENT_WEBHOOK_SECRET"], raw_body or b"")
    if not signatures_match(expected, signature):
        logger.warning("Webhook signature mismatch")
        return VerificationResult(VerificationStatus.SIGNATURE_MISMATCH)

    try:
        data = json.loads(raw_body or b"{}")
    except ValueError:
        raise ValueError("webhook body must be JSON")

    event = data.get("event")
    payload = data.get("payload") or {}
    payment = _entity(payload, "payment")
    logger.info("Gateway event received", event_type=event, payment_id=payment.get("id"))

    if event == "payment.captured":
        return _apply_verified(payment.get("order_id"), payment.get("id"), orchestrator)

    if event == "order.paid":
        gateway_order_id = _entity(payload, "order").get("id") or payment.get("order_id")
        if not payment.get("id"):
            raise ValueError("order.paid event carries no payment id")
        return _apply_verified(gateway_order_id, payment.get("id"), orchestrator)

    if event == "payment.failed":
        gateway_order_id = payment.get("order_id")
        order = Order.query.filter_by(payment_order_id=gateway_order_id).first() if gateway_order_id else None
        if not order:
            return VerificationResult(VerificationStatus.UNKNOWN_ORDER)
        result = _orchestrator(orchestrator).on_payment_failed(
            order.id, payment.get("id"), payment.get("error_description")
        )
        return VerificationResult(VerificationStatus.VERIFIED, order_id=order.id, already_processed=not result.changed)

    logger.info("Ignoring gateway event", event_type=event)
    return VerificationResult(VerificationStatus.VERIFIED, already_processed=True)


def create_payment_order(order: Order, orchestrator=None, gateway=None) -> CarrierResult:
    """Open a gateway order for the order total (reused when one exists)."""
    if order.status != OrderStatus.AWAITING_PAYMENT.value:
        raise ValueError(f"Order is {order.status}, not awaiting payment")

    gateway = gateway or get_gateway()
    currency = current_app.config["PAYMENT_CURRENCY"]
    amount = to_minor_units(order.total)
    if order.payment_order_id:
        return CarrierResult.success(
            {"id": order.payment_order_id, "amount": amount, "currency": currency, "key_id": gateway.key_id}
        )

    result = gateway.create_order(
        amount,
        currency,
        receipt=order.order_number,
        notes={"order_id": str(order.id), "order_number": order.order_number},
    )
    if not result.ok:
        return result

    gateway_order_id = (result.data or {}).get("id")
    if not gateway_order_id:
        return CarrierResult.failure(FailureKind.PERMANENT_FAILURE, "Gateway returned no order id", errors=result.data)
    _orchestrator(orchestrator).attach_payment_order(order.id, gateway_order_id)
    logger.info("Payment order created", order_id=order.id, gateway_order_id=gateway_order_id, amount=amount)
    return CarrierResult.success(
        {"id": gateway_order_id, "amount": amount, "currency": currency, "key_id": gateway.key_id},
        status_code=result.status_code,
    )

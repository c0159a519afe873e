# storefront/services/order_service.py
"""Order orchestration: checkout, payment and shipment state changes.

The order state machine only moves through ``VALID_TRANSITIONS``. Payment
outcomes and carrier events are idempotent; shipment booking runs after
the confirming transaction has committed and can never undo a sale.
"""
from datetime import datetime, timezone

import structlog
from flask import current_app
from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..model import (
    ConsumedPayment,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShipmentStatus,
)
from ..model.order import STATUS_RANK, can_transition, new_order_number
from ..utils.money import D, round_money
from . import coupon_service, pricing
from .carrier import get_carrier
from .catalog import SqlCatalog
from .dispatch import get_dispatcher
from .results import (
    CarrierResult,
    CheckoutResult,
    CouponRejection,
    OrderTotals,
    TransitionError,
    TransitionResult,
)

logger = structlog.get_logger(__name__)

REQUIRED_ADDRESS_FIELDS = ("first_name", "last_name", "email", "phone", "address", "city", "state", "zip", "country")
DEFAULT_UNIT_WEIGHT = D("0.5")

# Carrier status vocabulary -> order status
CARRIER_STATUS_MAP = {
    "NEW": OrderStatus.PROCESSING,
    "AWB ASSIGNED": OrderStatus.PROCESSING,
    "LABEL GENERATED": OrderStatus.PROCESSING,
    "MANIFEST GENERATED": OrderStatus.PROCESSING,
    "PICKUP SCHEDULED": OrderStatus.PROCESSING,
    "PICKUP GENERATED": OrderStatus.PROCESSING,
    "PICKUP QUEUED": OrderStatus.PROCESSING,
    "OUT FOR PICKUP": OrderStatus.PROCESSING,
    "PICKED UP": OrderStatus.SHIPPED,
    "SHIPPED": OrderStatus.SHIPPED,
    "IN TRANSIT": OrderStatus.SHIPPED,
    "REACHED AT DESTINATION HUB": OrderStatus.SHIPPED,
    "OUT FOR DELIVERY": OrderStatus.SHIPPED,
    "DELIVERED": OrderStatus.DELIVERED,
}

_FULFILMENT_LINE = (
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

_PROVISIONABLE = (OrderStatus.CONFIRMED.value, OrderStatus.PROCESSING.value)


def map_carrier_status(carrier_status) -> OrderStatus | None:
    key = " ".join(str(carrier_status or "").replace("_", " ").upper().split())
    return CARRIER_STATUS_MAP.get(key)


def _parse_payment_method(value) -> PaymentMethod:
    try:
        return PaymentMethod((value or "").strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in PaymentMethod)
        raise ValueError(f"payment_method must be one of: {allowed}")


def _validate_address(address, field="shipping_address") -> dict:
    if not isinstance(address, dict):
        raise ValueError(f"{field} is required")
    missing = [k for k in REQUIRED_ADDRESS_FIELDS if not str(address.get(k) or "").strip()]
    if missing:
        raise ValueError(f"{field} is missing: {', '.join(missing)}")
    return address


def build_shipment_payload(order: Order, config) -> dict:
    """Carrier 'adhoc order' body built from the order snapshot."""
    address = order.shipping_address or {}
    items = [
        {
            "name": item.product_name,
            "sku": item.sku or f"SKU-{item.product_id}",
            "units": item.quantity,
            "selling_price": float(item.unit_price),
            "discount": 0,
            "tax": 0,
            "hsn": "",
        }
        for item in order.items
    ]
    # 0.5kg per unit when the catalog has no weight
    weight = sum((D(item.weight_kg or DEFAULT_UNIT_WEIGHT) * item.quantity for item in order.items), D(0))
    weight = max(DEFAULT_UNIT_WEIGHT, weight)
    return {
        "order_id": order.order_number,
        "order_date": (order.created_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S"),
        "pickup_location": config.get("CARRIER_PICKUP_LOCATION", "Primary"),
        "channel_id": config.get("CARRIER_CHANNEL_ID", ""),
        "comment": order.notes or "",
        "billing_customer_name": address.get("first_name", ""),
        "billing_last_name": address.get("last_name", ""),
        "billing_address": address.get("address", ""),
        "billing_address_2": address.get("address_2", ""),
        "billing_city": address.get("city", ""),
        "billing_pincode": address.get("zip") or address.get("postal_code", ""),
        "billing_state": address.get("state", ""),
        "billing_country": address.get("country", "India"),
        "billing_email": address.get("email", ""),
        "billing_phone": address.get("phone", ""),
        "shipping_is_billing": True,
        "order_items": items,
        "payment_method": "COD" if order.is_cod else "Prepaid",
        "shipping_charges": float(order.shipping or 0),
        "giftwrap_charges": 0,
        "transaction_charges": float(order.cod_fee or 0),
        "total_discount": float(order.discount_amount or 0),
        "sub_total": float(order.subtotal or 0),
        "length": 20,
        "breadth": 15,
        "height": 10,
        "weight": float(weight),
    }


def _awb_from(data) -> tuple[str | None, str | None]:
    payload = ((data or {}).get("response") or {}).get("data") or {}
    return payload.get("awb_code"), payload.get("courier_name")


class OrderOrchestrator:
    def __init__(self, config, catalog=None, carrier=None, dispatcher=None, clock=None):
        self.config = config
        self.catalog = catalog or SqlCatalog()
        self._carrier = carrier
        self._dispatcher = dispatcher
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_app(cls, app=None, **kwargs) -> "OrderOrchestrator":
        app = app or current_app._get_current_object()
        return cls(app.config, **kwargs)

    @property
    def carrier(self):
        return self._carrier or get_carrier()

    @property
    def dispatcher(self):
        return self._dispatcher or get_dispatcher()

    # ---- totals --------------------------------------------------------

    def compute_totals(self, lines, coupon, is_cod: bool) -> OrderTotals:
        return pricing.compute_totals(
            lines,
            coupon,
            shipping_fee=self.config["SHIPPING_FLAT_FEE"],
            tax_rate=self.config["TAX_RATE"],
            cod_fee=self.config["COD_FEE"],
            is_cod=is_cod,
        )

    def quote(self, cart, payment_method, coupon_code=None) -> CheckoutResult | OrderTotals:
        """Totals for a cart without creating anything or consuming a coupon use."""
        method = _parse_payment_method(payment_method)
        snap = self.catalog.snapshot(cart)
        if not snap.ok:
            return CheckoutResult.rejected("Some items in your cart are unavailable", problems=snap.problems)
        coupon = None
        if coupon_code:
            check, coupon, _ = coupon_service.apply_preview(coupon_code, pricing.line_subtotal(snap.lines), self._clock())
            if not check.ok:
                return CheckoutResult.coupon_rejected(check.rejection)
        return self.compute_totals(snap.lines, coupon, method is PaymentMethod.CASH_ON_DELIVERY)

    # ---- state machine helpers ----------------------------------------

    def _transition(self, order: Order, target: OrderStatus) -> None:
        current = OrderStatus(order.status)
        if not can_transition(current, target):
            raise ValueError(f"cannot move order {order.order_number} from {current.value} to {target.value}")
        order.status = target.value
        logger.info(
            "Order status changed",
            order_id=order.id,
            order_number=order.order_number,
            from_status=current.value,
            to_status=target.value,
        )

    def _load(self, order_id, lock=False) -> Order | None:
        return db.session.get(Order, order_id, with_for_update=lock or None)

    def _schedule_provisioning(self, order: Order) -> None:
        self.dispatcher.submit(provision_shipment_job, order.id)
        # the job commits through its own session; show what it has written so far
        db.session.refresh(order)

    # ---- checkout --------------------------------------------------------

    def create_order(
        self,
        cart,
        shipping_address,
        payment_method,
        coupon_code=None,
        billing_address=None,
        notes=None,
        user_id=None,
    ) -> CheckoutResult:
        method = _parse_payment_method(payment_method)
        shipping_address = _validate_address(shipping_address)
        if billing_address:
            billing_address = _validate_address(billing_address, "billing_address")
        is_cod = method is PaymentMethod.CASH_ON_DELIVERY

        try:
            snap = self.catalog.snapshot(cart)
            if not snap.ok:
                db.session.rollback()
                return CheckoutResult.rejected("Some items in your cart are unavailable", problems=snap.problems)

            subtotal = pricing.line_subtotal(snap.lines)
            coupon = None
            if coupon_code:
                coupon = coupon_service.find_coupon(coupon_code)
                if not coupon:
                    db.session.rollback()
                    return CheckoutResult.coupon_rejected(CouponRejection.NOT_FOUND)
                check = coupon_service.validate(coupon, subtotal, self._clock())
                if not check.ok:
                    db.session.rollback()
                    return CheckoutResult.coupon_rejected(check.rejection)

            totals = self.compute_totals(snap.lines, coupon, is_cod)

            order = Order(
                order_number=new_order_number(),
                user_id=user_id,
                status=OrderStatus.CREATED.value,
                subtotal=totals.subtotal,
                discount_amount=totals.discount,
                shipping=totals.shipping,
                tax=totals.tax,
                cod_fee=totals.cod_fee,
                total=totals.total,
                coupon_code=coupon.code if coupon else None,
                shipping_address=shipping_address,
                billing_address=billing_address or shipping_address,
                notes=notes,
                payment_method=method.value,
                payment_status=PaymentStatus.PENDING.value,
                shipment_status=ShipmentStatus.UNPROVISIONED.value,
            )
            for line in snap.lines:
                order.items.append(OrderItem(
                    product_id=line.product_id,
                    product_name=line.name,
                    sku=line.sku,
                    unit_price=round_money(line.unit_price),
                    quantity=line.quantity,
                    line_total=round_money(D(line.unit_price) * line.quantity),
                    weight_kg=line.weight_kg,
                ))
            db.session.add(order)
            db.session.flush()

            if coupon:
                redeemed = coupon_service.redeem(coupon)
                if not redeemed.ok:
                    db.session.rollback()
                    return CheckoutResult.coupon_rejected(redeemed.rejection)

            self._transition(order, OrderStatus.CONFIRMED if is_cod else OrderStatus.AWAITING_PAYMENT)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Order created",
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            total=str(order.total),
            coupon_code=order.coupon_code,
        )
        if is_cod:
            self._schedule_provisioning(order)
        return CheckoutResult.success(order)

    def attach_payment_order(self, order_id, gateway_order_id: str) -> TransitionResult:
        order = self._load(order_id, lock=True)
        if not order:
            return TransitionResult.failure(TransitionError.UNKNOWN_ORDER, "Order not found")
        if order.status != OrderStatus.AWAITING_PAYMENT.value:
            db.session.rollback()
            return TransitionResult.failure(
                TransitionError.INVALID_TRANSITION, f"Order is {order.status}, not awaiting payment", order
            )
        order.payment_order_id = gateway_order_id
        db.session.commit()
        return TransitionResult.success(order)

    # ---- payment ----------------------------------------------------------

    def on_payment_verified(self, order_id, payment_id: str, gateway_order_id=None) -> TransitionResult:
        """Apply a verified payment exactly once per ``payment_id``."""
        order = self._load(order_id, lock=True)
        if not order:
            db.session.rollback()
            return TransitionResult.failure(TransitionError.UNKNOWN_ORDER, "Order not found")

        if ConsumedPayment.query.filter_by(payment_id=payment_id).first():
            db.session.rollback()
            logger.info("Payment already applied", order_id=order_id, payment_id=payment_id)
            return TransitionResult.success(order, changed=False)

        db.session.add(ConsumedPayment(
            payment_id=payment_id,
            order_id=order.id,
            gateway_order_id=gateway_order_id or order.payment_order_id,
        ))

        confirmed = False
        current = OrderStatus(order.status)
        if current in (OrderStatus.CREATED, OrderStatus.AWAITING_PAYMENT):
            order.payment_status = PaymentStatus.PAID.value
            order.payment_id = payment_id
            self._transition(order, OrderStatus.CONFIRMED)
            confirmed = True
        elif order.payment_status != PaymentStatus.PAID.value:
            order.payment_status = PaymentStatus.PAID.value
            order.payment_id = payment_id
            if current is OrderStatus.CANCELLED:
                logger.warning("Payment captured for cancelled order", order_id=order.id, payment_id=payment_id)
        else:
            logger.warning(
                "Second payment captured for paid order",
                order_id=order.id,
                payment_id=payment_id,
                recorded_payment_id=order.payment_id,
            )

        try:
            db.session.commit()
        except IntegrityError:
            # a concurrent delivery of the same payment committed first
            db.session.rollback()
            logger.info("Payment applied concurrently", order_id=order_id, payment_id=payment_id)
            return TransitionResult.success(self._load(order_id), changed=False)

        if confirmed:
            self._schedule_provisioning(order)
        return TransitionResult.success(order)

    def on_payment_failed(self, order_id, payment_id=None, reason=None) -> TransitionResult:
        """Record the failure; the order stays open for another attempt."""
        order = self._load(order_id, lock=True)
        if not order:
            db.session.rollback()
            return TransitionResult.failure(TransitionError.UNKNOWN_ORDER, "Order not found")
        if order.status != OrderStatus.AWAITING_PAYMENT.value or order.payment_status == PaymentStatus.PAID.value:
            db.session.rollback()
            return TransitionResult.success(order, changed=False)
        order.payment_status = PaymentStatus.FAILED.value
        db.session.commit()
        logger.info("Payment failed", order_id=order.id, payment_id=payment_id, reason=reason)
        return TransitionResult.success(order)

    # ---- cancellation ---------------------------------------------------

    def cancel(self, order_id) -> TransitionResult:
        order = self._load(order_id, lock=True)
        if not order:
            db.session.rollback()
            return TransitionResult.failure(TransitionError.UNKNOWN_ORDER, "Order not found")
        if order.status == OrderStatus.CANCELLED.value:
            db.session.rollback()
            return TransitionResult.success(order, changed=False)
        if not can_transition(order.status, OrderStatus.CANCELLED):
            db.session.rollback()
            return TransitionResult.failure(
                TransitionError.INVALID_TRANSITION,
                f"Orders that are {order.status} can no longer be cancelled",
                order,
            )

        self._transition(order, OrderStatus.CANCELLED)
        db.session.commit()

        booked = order.shipment_status not in (ShipmentStatus.UNPROVISIONED.value, ShipmentStatus.CANCELLED.value)
        if booked and (order.carrier_order_id or order.shipment_id):
            self.dispatcher.submit(cancel_shipment_job, order.id)
        return TransitionResult.success(order)

    def cancel_shipment(self, order_id) -> CarrierResult | None:
        order = self._load(order_id)
        if not order or not (order.carrier_order_id or order.shipment_id):
            return None
        result = self.carrier.cancel([order.carrier_order_id or order.shipment_id])
        if result.ok:
            order.shipment_status = ShipmentStatus.CANCELLED.value
            db.session.commit()
            logger.info("Carrier shipment cancelled", order_id=order.id)
        else:
            logger.warning(
                "Carrier shipment cancellation failed",
                order_id=order.id,
                kind=result.kind.value,
                message=result.message,
            )
        return result

    # ---- shipments --------------------------------------------------------

    def _claim_for_booking(self, order_id) -> bool:
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.status.in_(_PROVISIONABLE),
                Order.shipment_status == ShipmentStatus.UNPROVISIONED.value,
            )
            .values(
                shipment_status=ShipmentStatus.BOOKING.value,
                shipment_attempts=func.coalesce(Order.shipment_attempts, 0) + 1,
            )
            .execution_options(synchronize_session=False)
        )
        claimed = db.session.execute(stmt).rowcount == 1
        db.session.commit()
        return claimed

    def _settle_booking(self, order_id, values, status=None) -> bool:
        """Write the carrier outcome while this provisioner still holds the claim."""
        stmt = update(Order).where(Order.id == order_id, Order.shipment_status == ShipmentStatus.BOOKING.value)
        if status is not None:
            stmt = stmt.where(Order.status.in_([s.value for s in _FULFILMENT_LINE]))
            values = {**values, "status": status}
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        settled = db.session.execute(stmt).rowcount == 1
        db.session.commit()
        return settled

    def provision_shipment(self, order_id) -> CarrierResult | None:
        """Book the shipment with the carrier; failures leave the sale intact.

        The order is claimed (``unprovisioned -> booking``) and committed
        before the carrier is called, so no transaction or row lock spans
        the HTTP round trip and a second provisioner finds nothing to claim.
        The outcome is only written back while the claim still holds, and
        never over a cancellation that landed during the call.
        """
        if not self._claim_for_booking(order_id):
            if not self._load(order_id):
                logger.warning("Shipment provisioning for unknown order", order_id=order_id)
            return None

        order = self._load(order_id)
        order_number, status_at_claim = order.order_number, order.status
        payload = build_shipment_payload(order, self.config)
        db.session.commit()

        try:
            result = self.carrier.create_shipment(payload)
        except Exception:
            self._settle_booking(order_id, {"shipment_status": ShipmentStatus.UNPROVISIONED.value})
            raise

        if not result.ok:
            error = f"{result.kind.value}: {result.message}"[:500]
            self._settle_booking(order_id, {
                "shipment_status": ShipmentStatus.UNPROVISIONED.value,
                "shipment_error": error,
            })
            logger.warning(
                "Shipment left unprovisioned",
                order_id=order_id,
                kind=result.kind.value,
                message=result.message,
            )
            return result

        data = result.data or {}
        booked = {
            "carrier_order_id": str(data["order_id"]) if data.get("order_id") is not None else None,
            "shipment_id": str(data["shipment_id"]) if data.get("shipment_id") is not None else None,
            "shipment_status": ShipmentStatus.BOOKED.value,
            "shipment_error": None,
        }
        if data.get("awb_code"):
            booked.update(awb_code=data["awb_code"], courier_name=data.get("courier_name"))

        # confirmed -> processing; later fulfilment states are kept
        next_status = case(
            (Order.status == OrderStatus.CONFIRMED.value, OrderStatus.PROCESSING.value),
            else_=Order.status,
        )
        if self._settle_booking(order_id, booked, status=next_status):
            logger.info("Shipment booked", order_id=order_id, shipment_id=booked["shipment_id"])
            if status_at_claim == OrderStatus.CONFIRMED.value:
                logger.info(
                    "Order status changed",
                    order_id=order_id,
                    order_number=order_number,
                    from_status=OrderStatus.CONFIRMED.value,
                    to_status=OrderStatus.PROCESSING.value,
                )
            return result

        # cancelled while the carrier call was in flight
        self._settle_booking(order_id, booked)
        logger.warning("Shipment booked for cancelled order", order_id=order_id, shipment_id=booked["shipment_id"])
        self.dispatcher.submit(cancel_shipment_job, order_id)
        return result

    def unprovisioned_orders(self, limit=100):
        """Confirmed sales still waiting for a carrier booking."""
        return (
            Order.query
            .filter(Order.status.in_(_PROVISIONABLE))
            .filter(Order.shipment_status == ShipmentStatus.UNPROVISIONED.value)
            .order_by(Order.created_at.asc())
            .limit(limit)
            .all()
        )

    def _require_shipment(self, order_id):
        order = self._load(order_id)
        if not order:
            return None, TransitionResult.failure(TransitionError.UNKNOWN_ORDER, "Order not found")
        if not order.shipment_id:
            return order, TransitionResult.failure(
                TransitionError.NO_SHIPMENT, "Create shipment first", order
            )
        return order, None

    def assign_awb(self, order_id, courier_id=None):
        order, problem = self._require_shipment(order_id)
        if problem:
            return problem
        result = self.carrier.generate_awb(order.shipment_id, courier_id)
        awb_code, courier_name = _awb_from(result.data) if result.ok else (None, None)
        if awb_code:
            order.awb_code = awb_code
            order.courier_name = courier_name
            order.shipment_status = ShipmentStatus.AWB_ASSIGNED.value
            db.session.commit()
            logger.info("AWB assigned", order_id=order.id, awb_code=awb_code, courier_name=courier_name)
        return result

    def schedule_pickup(self, order_id):
        order, problem = self._require_shipment(order_id)
        if problem:
            return problem
        result = self.carrier.schedule_pickup(order.shipment_id)
        if result.ok:
            order.shipment_status = ShipmentStatus.PICKUP_SCHEDULED.value
            db.session.commit()
            logger.info("Pickup scheduled", order_id=order.id)
        return result

    def track(self, order_id):
        order = self._load(order_id)
        if not order:
            return TransitionResult.failure(TransitionError.UNKNOWN_ORDER, "Order not found")
        if order.awb_code:
            return self.carrier.track(order.awb_code)
        if order.carrier_order_id:
            return self.carrier.track_by_order(order.order_number)
        return TransitionResult.failure(TransitionError.NO_SHIPMENT, "Shipment not found for this order", order)

    def on_shipment_event(self, order_id, carrier_status) -> TransitionResult:
        """Move the order forward along the fulfilment line; stale events are no-ops."""
        order = self._load(order_id, lock=True)
        if not order:
            db.session.rollback()
            return TransitionResult.failure(TransitionError.UNKNOWN_ORDER, "Order not found")

        target = map_carrier_status(carrier_status)
        if target is None:
            db.session.rollback()
            logger.info("Ignoring carrier status", order_id=order.id, carrier_status=carrier_status)
            return TransitionResult.success(order, changed=False)

        current = OrderStatus(order.status)
        if current not in _FULFILMENT_LINE:
            db.session.rollback()
            return TransitionResult.failure(
                TransitionError.INVALID_TRANSITION,
                f"Carrier reported {carrier_status} for an order that is {current.value}",
                order,
            )
        if STATUS_RANK[current] >= STATUS_RANK[target]:
            db.session.rollback()
            return TransitionResult.success(order, changed=False)

        for step in _FULFILMENT_LINE[_FULFILMENT_LINE.index(current) + 1:]:
            self._transition(order, step)
            if step is target:
                break
        db.session.commit()
        return TransitionResult.success(order)

    # ---- admin --------------------------------------------------------------

    def set_status(self, order_id, status) -> TransitionResult:
        try:
            target = OrderStatus(status)
        except ValueError:
            raise ValueError(f"unknown order status: {status}")
        if target is OrderStatus.CANCELLED:
            return self.cancel(order_id)

        order = self._load(order_id, lock=True)
        if not order:
            db.session.rollback()
            return TransitionResult.failure(TransitionError.UNKNOWN_ORDER, "Order not found")
        if order.status == target.value:
            db.session.rollback()
            return TransitionResult.success(order, changed=False)
        if not can_transition(order.status, target):
            db.session.rollback()
            return TransitionResult.failure(
                TransitionError.INVALID_TRANSITION,
                f"cannot move order from {order.status} to {target.value}",
                order,
            )

        confirmed_manually = target is OrderStatus.CONFIRMED and order.status == OrderStatus.AWAITING_PAYMENT.value
        if confirmed_manually:
            # offline payment (bank transfer) reconciled by an operator
            order.payment_status = PaymentStatus.PAID.value
        self._transition(order, target)
        db.session.commit()
        if confirmed_manually:
            self._schedule_provisioning(order)
        return TransitionResult.success(order)

    def list_orders(self, filters=None, page=1, per_page=20, user_id=None):
        filters = filters or {}
        q = Order.query
        if user_id is not None:
            q = q.filter(Order.user_id == user_id)
        if filters.get("status"):
            q = q.filter(Order.status == filters["status"])
        if filters.get("payment_status"):
            q = q.filter(Order.payment_status == filters["payment_status"])
        if filters.get("shipment_status"):
            q = q.filter(Order.shipment_status == filters["shipment_status"])
        if filters.get("search"):
            like = f"%{filters['search'].strip()}%"
            q = q.filter(Order.order_number.ilike(like))
        return q.order_by(Order.created_at.desc(), Order.id.desc()).paginate(
            page=page, per_page=per_page, error_out=False
        )

    def order_stats(self, today=None) -> dict:
        today = today or self._clock().date()
        counts = dict(
            db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
        )
        delivered = Order.query.filter(Order.status == OrderStatus.DELIVERED.value)
        revenue = delivered.with_entities(func.coalesce(func.sum(Order.total), 0)).scalar()
        today_q = Order.query.filter(func.date(Order.created_at) == today.isoformat())
        return {
            "total_orders": sum(counts.values()),
            "by_status": {s.value: counts.get(s.value, 0) for s in OrderStatus},
            "total_revenue": float(round_money(revenue or 0)),
            "today_orders": today_q.count(),
            "unprovisioned_shipments": Order.query.filter(
                Order.status.in_(_PROVISIONABLE),
                Order.shipment_status == ShipmentStatus.UNPROVISIONED.value,
            ).count(),
        }


def provision_shipment_job(order_id):
    return OrderOrchestrator.from_app().provision_shipment(order_id)


def cancel_shipment_job(order_id):
    return OrderOrchestrator.from_app().cancel_shipment(order_id)

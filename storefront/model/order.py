import secrets
import string
from datetime import datetime, timezone
from enum import Enum

from ..extensions import db


class OrderStatus(str, Enum):
    CREATED = "created"
    AWAITING_PAYMENT = "awaiting_payment"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class ShipmentStatus(str, Enum):
    UNPROVISIONED = "unprovisioned"
    BOOKING = "booking"  # claimed by a provisioner, carrier call in flight
    BOOKED = "booked"
    AWB_ASSIGNED = "awb_assigned"
    PICKUP_SCHEDULED = "pickup_scheduled"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CASH_ON_DELIVERY = "cash_on_delivery"


# State machine transition map
VALID_TRANSITIONS = {
    OrderStatus.CREATED: {OrderStatus.AWAITING_PAYMENT, OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.AWAITING_PAYMENT: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,  # carrier may report pickup before we saw "processing"
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

# Forward order of the fulfilment line, used to ignore stale carrier events
STATUS_RANK = {
    OrderStatus.CREATED: 0,
    OrderStatus.AWAITING_PAYMENT: 1,
    OrderStatus.CONFIRMED: 2,
    OrderStatus.PROCESSING: 3,
    OrderStatus.SHIPPED: 4,
    OrderStatus.DELIVERED: 5,
}

_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def new_order_number() -> str:
    """e.g. ORD-7K2QX9BD"""
    return "ORD-" + "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(8))


def can_transition(current, target) -> bool:
    return OrderStatus(target) in VALID_TRANSITIONS[OrderStatus(current)]


def _utcnow():
    return datetime.now(timezone.utc)


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    status = db.Column(db.String(20), nullable=False, default=OrderStatus.CREATED.value, index=True)

    # Money snapshot
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cod_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    coupon_code = db.Column(db.String(64), db.ForeignKey("coupons.code"), nullable=True)

    shipping_address = db.Column(db.JSON)
    billing_address = db.Column(db.JSON)
    notes = db.Column(db.String(500))

    # Payment gateway references
    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_order_id = db.Column(db.String(64), unique=True, index=True)
    payment_id = db.Column(db.String(64), index=True)

    # Carrier references (owned by this order)
    carrier_order_id = db.Column(db.String(64))
    shipment_id = db.Column(db.String(64), index=True)
    awb_code = db.Column(db.String(64), index=True)
    courier_name = db.Column(db.String(120))
    shipment_status = db.Column(db.String(20), nullable=False, default=ShipmentStatus.UNPROVISIONED.value, index=True)
    shipment_error = db.Column(db.String(500))
    shipment_attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id.asc()",
    )

    @property
    def is_cod(self) -> bool:
        return self.payment_method == PaymentMethod.CASH_ON_DELIVERY.value

    @property
    def items_count(self) -> int:
        return sum(i.quantity for i in self.items)

    def as_api(self):
        return {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status,
            "money": {
                "subtotal": float(self.subtotal or 0),
                "discount_amount": float(self.discount_amount or 0),
                "shipping": float(self.shipping or 0),
                "tax": float(self.tax or 0),
                "cod_fee": float(self.cod_fee or 0),
                "total": float(self.total or 0),
            },
            "coupon_code": self.coupon_code,
            "payment": {
                "method": self.payment_method,
                "status": self.payment_status,
                "payment_order_id": self.payment_order_id,
                "payment_id": self.payment_id,
            },
            "shipment": {
                "status": self.shipment_status,
                "shipment_id": self.shipment_id,
                "awb_code": self.awb_code,
                "courier_name": self.courier_name,
            },
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "notes": self.notes,
            "items": [i.as_api() for i in self.items],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, index=True)
    product_name = db.Column(db.String(255))
    sku = db.Column(db.String(64))
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)
    weight_kg = db.Column(db.Numeric(8, 3), nullable=True)

    def as_api(self):
        return {
            "product_id": self.product_id,
            "name": self.product_name,
            "sku": self.sku,
            "unit_price": float(self.unit_price or 0),
            "quantity": self.quantity,
            "line_total": float(self.line_total or 0),
        }

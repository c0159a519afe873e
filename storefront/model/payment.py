# storefront/model/payment.py
from datetime import datetime, timezone

from ..extensions import db


class ConsumedPayment(db.Model):
    """A gateway payment id that has already been applied to an order.

    The unique constraint on ``payment_id`` is what makes webhook
    re-delivery safe: a second insert for the same payment fails.
    """
    __tablename__ = "consumed_payments"

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    gateway_order_id = db.Column(db.String(64), index=True)
    consumed_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

# --- storefront/model/coupon.py ---
from enum import Enum

from sqlalchemy.sql import func

from ..extensions import db


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(db.Model):
    __tablename__ = "coupons"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), unique=True, nullable=False, index=True)  # stored upper-case
    description = db.Column(db.String(255))

    # "percentage" or "fixed"
    discount_type = db.Column(db.String(16), nullable=False, default=DiscountType.PERCENTAGE.value)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Optional constraints
    min_order_amount = db.Column(db.Numeric(12, 2), nullable=True)
    max_discount = db.Column(db.Numeric(12, 2), nullable=True)
    usage_limit = db.Column(db.Integer, nullable=True)       # global usage cap
    used_count = db.Column(db.Integer, nullable=False, default=0)
    valid_from = db.Column(db.Date, nullable=True)           # inclusive
    valid_until = db.Column(db.Date, nullable=True)          # inclusive

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    def as_api(self):
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": float(self.discount_value or 0),
            "min_order_amount": float(self.min_order_amount) if self.min_order_amount is not None else None,
            "max_discount": float(self.max_discount) if self.max_discount is not None else None,
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "is_active": self.is_active,
        }

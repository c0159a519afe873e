# ------ storefront/model/__init__.py ------

from .coupon import Coupon, DiscountType
from .order import Order, OrderItem, OrderStatus, PaymentStatus, ShipmentStatus, PaymentMethod
from .payment import ConsumedPayment
from .product import Product

__all__ = [
    "Coupon",
    "DiscountType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "ShipmentStatus",
    "PaymentMethod",
    "ConsumedPayment",
    "Product",
]

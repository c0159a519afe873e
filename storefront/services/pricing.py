# storefront/services/pricing.py
from decimal import Decimal

from ..utils.money import D, ZERO, round_money
from . import coupon_service
from .results import OrderTotals


def line_subtotal(lines) -> Decimal:
    return round_money(sum((D(l.unit_price) * int(l.quantity) for l in lines), Decimal("0")))


def compute_totals(lines, coupon, shipping_fee, tax_rate, cod_fee, is_cod: bool) -> OrderTotals:
    """Deterministic order totals; no database or clock access.

    Every component is rounded to cents before it is summed, so
    ``total == subtotal - discount + shipping + tax + cod_fee`` holds exactly.
    """
    subtotal = line_subtotal(lines)
    discount = coupon_service.calculate_discount(coupon, max(ZERO, subtotal)) if coupon else ZERO
    taxable = max(ZERO, subtotal - discount)
    tax = round_money(taxable * D(tax_rate))
    shipping = round_money(shipping_fee)
    cod = round_money(cod_fee) if is_cod else ZERO
    total = subtotal - discount + shipping + tax + cod
    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        shipping=shipping,
        tax=tax,
        cod_fee=cod,
        total=round_money(total),
    )

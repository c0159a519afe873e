"""Checkout: totals, order creation and its single transaction."""

import re
from decimal import Decimal

import pytest

from storefront.extensions import db
from storefront.model import Coupon, Order, OrderStatus, PaymentStatus, ShipmentStatus
from storefront.services import coupon_service, pricing
from storefront.services.catalog import CartLine
from storefront.services.order_service import OrderOrchestrator
from storefront.services.results import CouponRejection


@pytest.fixture
def orchestrator(app, ctx):
    return OrderOrchestrator.from_app(app)


def _lines():
    return [
        CartLine(product_id=1, unit_price=Decimal("40.00"), quantity=2, name="Canvas Tote"),
        CartLine(product_id=2, unit_price=Decimal("125.50"), quantity=1, name="Desk Lamp"),
    ]


def _identity_holds(t):
    return t.total == t.subtotal - t.discount + t.shipping + t.tax + t.cod_fee


class TestComputeTotals:
    def test_without_coupon(self):
        t = pricing.compute_totals(_lines(), None, Decimal("15.00"), Decimal("0.08"), Decimal("5.00"), is_cod=False)
        assert t.subtotal == Decimal("205.50")
        assert t.discount == Decimal("0")
        assert t.tax == Decimal("16.44")
        assert t.cod_fee == Decimal("0")
        assert t.total == Decimal("236.94")
        assert _identity_holds(t)

    def test_with_percentage_coupon_and_cod(self):
        coupon = Coupon(code="SAVE10", discount_type="percentage", discount_value=Decimal("10"),
                        max_discount=Decimal("50"))
        t = pricing.compute_totals(_lines(), coupon, Decimal("15.00"), Decimal("0.08"), Decimal("5.00"), is_cod=True)
        assert t.discount == Decimal("20.55")
        # (205.50 - 20.55) * 0.08 = 14.796
        assert t.tax == Decimal("14.80")
        assert t.cod_fee == Decimal("5.00")
        assert t.total == Decimal("219.75")
        assert _identity_holds(t)

    @pytest.mark.parametrize("price", ["0.01", "0.05", "1.99", "33.33", "49.95", "1000.01"])
    @pytest.mark.parametrize("qty", [1, 3, 7])
    def test_identity_holds_exactly(self, price, qty):
        lines = [CartLine(product_id=1, unit_price=Decimal(price), quantity=qty)]
        coupon = Coupon(code="P", discount_type="percentage", discount_value=Decimal("7.5"))
        t = pricing.compute_totals(lines, coupon, Decimal("4.99"), Decimal("0.0725"), Decimal("1.25"), is_cod=True)
        assert _identity_holds(t)
        assert t.tax >= 0


class TestCreateOrder:
    def test_card_order_awaits_payment(self, orchestrator, seed, address, carrier):
        result = orchestrator.create_order(
            [{"product_id": seed["tote"], "quantity": 2}, {"product_id": seed["lamp"], "quantity": 1}],
            address,
            "card",
            coupon_code="save10",
            user_id=42,
        )
        assert result.ok
        order = result.order
        assert re.fullmatch(r"ORD-[A-Z0-9]{8}", order.order_number)
        assert order.status == OrderStatus.AWAITING_PAYMENT.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.shipment_status == ShipmentStatus.UNPROVISIONED.value
        assert order.subtotal == Decimal("205.50")
        assert order.discount_amount == Decimal("20.55")
        assert order.total == Decimal("214.75")
        assert order.total == order.subtotal - order.discount_amount + order.shipping + order.tax + order.cod_fee
        assert order.coupon_code == "SAVE10"
        assert order.billing_address == address
        assert [(i.product_name, i.quantity, i.line_total) for i in order.items] == [
            ("Canvas Tote", 2, Decimal("80.00")),
            ("Desk Lamp", 1, Decimal("125.50")),
        ]
        assert db.session.get(Coupon, seed["SAVE10"]).used_count == 1
        assert carrier.calls == []

    def test_cod_order_is_confirmed_and_booked(self, orchestrator, seed, address, carrier):
        result = orchestrator.create_order([{"product_id": seed["tote"], "quantity": 1}], address, "cash_on_delivery")
        assert result.ok
        # inline provisioning has already committed; the returned order shows it
        assert result.order.status == OrderStatus.PROCESSING.value
        assert result.order.shipment_status == ShipmentStatus.BOOKED.value

        db.session.expire_all()
        order = db.session.get(Order, result.order.id)
        assert order.cod_fee == Decimal("5.00")
        assert order.status == OrderStatus.PROCESSING.value
        assert order.shipment_status == ShipmentStatus.BOOKED.value
        assert order.shipment_id == "7001"
        assert order.carrier_order_id == "9001"

        (_, _, _, payload), = carrier.calls_to("orders/create/adhoc")
        assert payload["payment_method"] == "COD"
        assert payload["order_id"] == order.order_number
        assert payload["billing_pincode"] == "560001"

    def test_stock_is_not_decremented(self, orchestrator, seed, address):
        from storefront.model import Product

        orchestrator.create_order([{"product_id": seed["lamp"], "quantity": 3}], address, "card")
        assert db.session.get(Product, seed["lamp"]).stock == 3

    def test_unavailable_product_rejected(self, orchestrator, seed, address):
        result = orchestrator.create_order(
            [{"product_id": seed["mug"], "quantity": 1}, {"product_id": 999, "quantity": 1}], address, "card"
        )
        assert not result.ok
        assert {p["product_id"] for p in result.details["problems"]} == {seed["mug"], 999}
        assert Order.query.count() == 0

    def test_insufficient_stock_rejected(self, orchestrator, seed, address):
        result = orchestrator.create_order([{"product_id": seed["lamp"], "quantity": 4}], address, "card")
        assert not result.ok
        assert "only 3 available" in result.details["problems"][0]["reason"]

    def test_repeated_product_lines_are_merged(self, orchestrator, seed, address):
        result = orchestrator.create_order(
            [{"product_id": seed["lamp"], "quantity": 2}, {"product_id": seed["lamp"], "quantity": 2}],
            address,
            "card",
        )
        assert not result.ok

    @pytest.mark.parametrize(
        "code, rejection",
        [
            ("EXPIRED", CouponRejection.OUT_OF_WINDOW),
            ("OFF", CouponRejection.INACTIVE),
            ("FLAT20", CouponRejection.MINIMUM_NOT_MET),
            ("MISSING", CouponRejection.NOT_FOUND),
        ],
    )
    def test_coupon_rejections(self, orchestrator, seed, address, code, rejection):
        result = orchestrator.create_order([{"product_id": seed["tote"], "quantity": 1}], address, "card", coupon_code=code)
        assert result.coupon_rejection is rejection
        assert Order.query.count() == 0

    def test_bad_input_raises_value_error(self, orchestrator, seed, address):
        with pytest.raises(ValueError, match="payment_method"):
            orchestrator.create_order([{"product_id": seed["tote"], "quantity": 1}], address, "bitcoin")
        with pytest.raises(ValueError, match="zip"):
            orchestrator.create_order([{"product_id": seed["tote"], "quantity": 1}], {**address, "zip": ""}, "card")
        with pytest.raises(ValueError, match="quantity"):
            orchestrator.create_order([{"product_id": seed["tote"], "quantity": 0}], address, "card")

    def test_coupon_lost_between_validate_and_redeem(self, app, orchestrator, seed, address, monkeypatch):
        real_validate = coupon_service.validate

        def validate_then_lose_race(coupon, amount, now=None):
            check = real_validate(coupon, amount, now)
            # another checkout takes the last use meanwhile
            with app.app_context():
                db.session.get(Coupon, seed["ONCE"]).used_count = 1
                db.session.commit()
            return check

        monkeypatch.setattr(coupon_service, "validate", validate_then_lose_race)
        result = orchestrator.create_order([{"product_id": seed["tote"], "quantity": 1}], address, "card", coupon_code="ONCE")

        assert result.coupon_rejection is CouponRejection.RACE_LOST
        assert Order.query.count() == 0
        assert db.session.get(Coupon, seed["ONCE"]).used_count == 1

    def test_failure_after_redeem_rolls_back_everything(self, orchestrator, seed, address, monkeypatch):
        def boom(self, order, target):
            raise RuntimeError("database went away")

        monkeypatch.setattr(OrderOrchestrator, "_transition", boom)
        with pytest.raises(RuntimeError):
            orchestrator.create_order([{"product_id": seed["tote"], "quantity": 1}], address, "card", coupon_code="SAVE10")

        assert Order.query.count() == 0
        assert db.session.get(Coupon, seed["SAVE10"]).used_count == 0

    def test_quote_does_not_consume_coupon(self, orchestrator, seed):
        totals = orchestrator.quote([{"product_id": seed["tote"], "quantity": 1}], "card", coupon_code="ONCE")
        assert totals.discount == Decimal("5.00")
        assert totals.total == Decimal("40.00") - Decimal("5.00") + Decimal("15.00") + Decimal("2.80")
        assert db.session.get(Coupon, seed["ONCE"]).used_count == 0

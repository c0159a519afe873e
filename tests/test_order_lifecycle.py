"""Order state machine: cancellation, carrier events and admin operations."""

import pytest

from storefront.extensions import db
from storefront.model import Coupon, Order, OrderStatus, PaymentStatus, ShipmentStatus
from storefront.model.order import VALID_TRANSITIONS, can_transition, new_order_number
from storefront.services.order_service import OrderOrchestrator, build_shipment_payload, map_carrier_status
from storefront.services.results import TransitionError


@pytest.fixture
def orchestrator(app, ctx):
    return OrderOrchestrator.from_app(app)


@pytest.fixture
def place(orchestrator, seed, address):
    def _place(method="card", coupon_code=None, qty=1):
        result = orchestrator.create_order(
            [{"product_id": seed["tote"], "quantity": qty}], address, method, coupon_code=coupon_code
        )
        assert result.ok, result.message
        return result.order.id
    return _place


def _reload(order_id):
    db.session.expire_all()
    return db.session.get(Order, order_id)


def test_order_numbers_are_unique_tokens():
    numbers = {new_order_number() for _ in range(500)}
    assert len(numbers) == 500
    assert all(n.startswith("ORD-") and len(n) == 12 for n in numbers)


def test_terminal_states_have_no_exits():
    assert VALID_TRANSITIONS[OrderStatus.DELIVERED] == set()
    assert VALID_TRANSITIONS[OrderStatus.CANCELLED] == set()
    assert not can_transition("shipped", "cancelled")
    assert can_transition("processing", "cancelled")


@pytest.mark.parametrize(
    "status, expected",
    [
        ("NEW", OrderStatus.PROCESSING),
        ("pickup scheduled", OrderStatus.PROCESSING),
        ("In Transit", OrderStatus.SHIPPED),
        ("OUT_FOR_DELIVERY", OrderStatus.SHIPPED),
        ("DELIVERED", OrderStatus.DELIVERED),
        ("RTO INITIATED", None),
        ("", None),
    ],
)
def test_carrier_status_vocabulary(status, expected):
    assert map_carrier_status(status) is expected


class TestCancel:
    def test_cancel_awaiting_payment(self, orchestrator, place, seed):
        order_id = place(coupon_code="SAVE10")
        result = orchestrator.cancel(order_id)

        assert result.ok and result.changed
        assert _reload(order_id).status == OrderStatus.CANCELLED.value
        # coupon use is not given back
        assert db.session.get(Coupon, seed["SAVE10"]).used_count == 1

    def test_cancel_is_idempotent(self, orchestrator, place):
        order_id = place()
        orchestrator.cancel(order_id)
        again = orchestrator.cancel(order_id)
        assert again.ok
        assert again.changed is False

    def test_cancel_booked_order_cancels_shipment(self, orchestrator, place, carrier):
        order_id = place("cash_on_delivery")
        assert _reload(order_id).shipment_status == ShipmentStatus.BOOKED.value

        assert orchestrator.cancel(order_id).ok
        order = _reload(order_id)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.shipment_status == ShipmentStatus.CANCELLED.value
        (_, _, _, body), = carrier.calls_to("orders/cancel")
        assert body == {"ids": ["9001"]}

    def test_carrier_cancel_failure_does_not_block(self, orchestrator, place, carrier):
        order_id = place("cash_on_delivery")
        carrier.respond("POST", "orders/cancel", 400, {"message": "Order already picked up"})

        assert orchestrator.cancel(order_id).ok
        order = _reload(order_id)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.shipment_status == ShipmentStatus.BOOKED.value

    def test_cannot_cancel_after_shipping(self, orchestrator, place):
        order_id = place("cash_on_delivery")
        orchestrator.on_shipment_event(order_id, "SHIPPED")

        result = orchestrator.cancel(order_id)
        assert result.error is TransitionError.INVALID_TRANSITION
        assert _reload(order_id).status == OrderStatus.SHIPPED.value

    def test_unknown_order(self, orchestrator):
        assert orchestrator.cancel(12345).error is TransitionError.UNKNOWN_ORDER


class TestShipmentEvents:
    def test_forward_only(self, orchestrator, place):
        order_id = place("cash_on_delivery")
        assert _reload(order_id).status == OrderStatus.PROCESSING.value

        assert orchestrator.on_shipment_event(order_id, "IN TRANSIT").changed
        assert _reload(order_id).status == OrderStatus.SHIPPED.value

        stale = orchestrator.on_shipment_event(order_id, "PICKUP SCHEDULED")
        assert stale.ok and not stale.changed
        assert _reload(order_id).status == OrderStatus.SHIPPED.value

        assert orchestrator.on_shipment_event(order_id, "Delivered").changed
        assert _reload(order_id).status == OrderStatus.DELIVERED.value

    def test_jump_walks_the_fulfilment_line(self, orchestrator, place, carrier):
        carrier.respond("POST", "orders/create/adhoc", 422, {"message": "Invalid pincode"})
        order_id = place("cash_on_delivery")
        assert _reload(order_id).status == OrderStatus.CONFIRMED.value

        assert orchestrator.on_shipment_event(order_id, "DELIVERED").ok
        assert _reload(order_id).status == OrderStatus.DELIVERED.value

    def test_unknown_status_ignored(self, orchestrator, place):
        order_id = place("cash_on_delivery")
        result = orchestrator.on_shipment_event(order_id, "LOST IN SPACE")
        assert result.ok and not result.changed
        assert _reload(order_id).status == OrderStatus.PROCESSING.value

    def test_event_for_unpaid_order_rejected(self, orchestrator, place):
        order_id = place()
        result = orchestrator.on_shipment_event(order_id, "SHIPPED")
        assert result.error is TransitionError.INVALID_TRANSITION
        assert _reload(order_id).status == OrderStatus.AWAITING_PAYMENT.value


class TestShipmentOperations:
    def test_permanent_booking_failure_recorded(self, orchestrator, place, carrier):
        carrier.respond("POST", "orders/create/adhoc", 422, {"message": "Invalid pincode"})
        order_id = place("cash_on_delivery")

        order = _reload(order_id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.shipment_status == ShipmentStatus.UNPROVISIONED.value
        assert order.shipment_error.startswith("permanent_failure")
        assert len(carrier.calls_to("orders/create/adhoc")) == 1
        assert [o.id for o in orchestrator.unprovisioned_orders()] == [order_id]

    def test_retry_books_unprovisioned_order(self, orchestrator, place, carrier):
        carrier.respond("POST", "orders/create/adhoc", 503)
        order_id = place("cash_on_delivery")
        carrier.respond("POST", "orders/create/adhoc", 200, {"order_id": 9002, "shipment_id": 7002})

        result = orchestrator.provision_shipment(order_id)
        assert result.ok
        order = _reload(order_id)
        assert order.shipment_status == ShipmentStatus.BOOKED.value
        assert order.shipment_id == "7002"
        assert order.shipment_attempts == 2
        assert order.shipment_error is None

        # booked orders are not booked twice
        assert orchestrator.provision_shipment(order_id) is None

    def test_crashed_booking_releases_the_claim(self, app, place, carrier):
        carrier.respond("POST", "orders/create/adhoc", 422, {"message": "Invalid pincode"})
        order_id = place("cash_on_delivery")

        class BrokenCarrier:
            def create_shipment(self, payload):
                raise RuntimeError("connection pool exhausted")

        with pytest.raises(RuntimeError):
            OrderOrchestrator(app.config, carrier=BrokenCarrier()).provision_shipment(order_id)

        assert _reload(order_id).shipment_status == ShipmentStatus.UNPROVISIONED.value
        assert OrderOrchestrator.from_app(app).provision_shipment(order_id) is not None

    def test_awb_pickup_and_tracking(self, orchestrator, place, carrier):
        order_id = place("cash_on_delivery")

        assert orchestrator.assign_awb(order_id, courier_id=12).ok
        order = _reload(order_id)
        assert order.awb_code == "AWB123"
        assert order.courier_name == "Delhivery"
        assert order.shipment_status == ShipmentStatus.AWB_ASSIGNED.value
        (_, _, _, body), = carrier.calls_to("courier/assign/awb")
        assert body == {"shipment_id": "7001", "courier_id": 12}

        assert orchestrator.schedule_pickup(order_id).ok
        assert _reload(order_id).shipment_status == ShipmentStatus.PICKUP_SCHEDULED.value

        tracking = orchestrator.track(order_id)
        assert tracking.data == {"tracking_data": {"shipment_status": "IN TRANSIT"}}

    def test_track_by_order_number_before_awb(self, orchestrator, place, carrier):
        order_id = place("cash_on_delivery")
        assert orchestrator.track(order_id).ok
        (_, _, params, _), = carrier.calls_to("courier/track")
        assert params == {"order_id": _reload(order_id).order_number}

    def test_operations_need_a_shipment(self, orchestrator, place):
        order_id = place()
        assert orchestrator.assign_awb(order_id).error is TransitionError.NO_SHIPMENT
        assert orchestrator.schedule_pickup(order_id).error is TransitionError.NO_SHIPMENT
        assert orchestrator.track(order_id).error is TransitionError.NO_SHIPMENT

    def test_shipment_payload(self, app, place):
        order = _reload(place("cash_on_delivery", qty=3))
        payload = build_shipment_payload(order, app.config)

        assert payload["order_id"] == order.order_number
        assert payload["pickup_location"] == "Primary"
        assert payload["billing_customer_name"] == "Asha"
        assert payload["billing_country"] == "India"
        assert payload["shipping_is_billing"] is True
        assert payload["order_items"] == [{
            "name": "Canvas Tote",
            "sku": "TOTE-1",
            "units": 3,
            "selling_price": 40.0,
            "discount": 0,
            "tax": 0,
            "hsn": "",
        }]
        assert payload["payment_method"] == "COD"
        assert payload["sub_total"] == 120.0
        assert payload["weight"] == 1.5
        assert (payload["length"], payload["breadth"], payload["height"]) == (20, 15, 10)

    def test_shipment_weight_uses_catalog_weights(self, app, orchestrator, seed, address):
        result = orchestrator.create_order(
            [{"product_id": seed["lamp"], "quantity": 2}, {"product_id": seed["tote"], "quantity": 1}],
            address,
            "card",
        )
        order = _reload(result.order.id)

        assert {i.sku: i.weight_kg for i in order.items}["TOTE-1"] is None
        # 2 x 1.2kg lamp + one tote at the 0.5kg default
        assert build_shipment_payload(order, app.config)["weight"] == 2.9


class TestAdmin:
    def test_set_status_follows_transition_table(self, orchestrator, place):
        order_id = place()
        result = orchestrator.set_status(order_id, "shipped")
        assert result.error is TransitionError.INVALID_TRANSITION

    def test_manual_confirmation_marks_paid_and_books(self, orchestrator, place):
        order_id = place("bank_transfer")
        assert orchestrator.set_status(order_id, "confirmed").ok

        order = _reload(order_id)
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.status == OrderStatus.PROCESSING.value

    def test_set_status_cancel_goes_through_cancel(self, orchestrator, place):
        order_id = place()
        assert orchestrator.set_status(order_id, "cancelled").ok
        assert _reload(order_id).status == OrderStatus.CANCELLED.value

    def test_unknown_status_is_malformed(self, orchestrator, place):
        with pytest.raises(ValueError):
            orchestrator.set_status(place(), "teleported")

    def test_stats_and_listing(self, orchestrator, place):
        a = place()
        b = place("cash_on_delivery")
        orchestrator.on_shipment_event(b, "DELIVERED")
        orchestrator.cancel(place())

        stats = orchestrator.order_stats()
        assert stats["total_orders"] == 3
        assert stats["by_status"]["awaiting_payment"] == 1
        assert stats["by_status"]["delivered"] == 1
        assert stats["by_status"]["cancelled"] == 1
        assert stats["total_revenue"] == float(_reload(b).total)
        assert stats["today_orders"] == 3

        paged = orchestrator.list_orders({"status": "awaiting_payment"})
        assert [o.id for o in paged.items] == [a]

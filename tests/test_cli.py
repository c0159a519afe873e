from storefront.extensions import db
from storefront.model import Coupon, Order, ShipmentStatus
from storefront.services.order_service import OrderOrchestrator


def test_create_coupon(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "create-coupon", "--code", "launch", "--type", "fixed", "--value", "12.50", "--usage-limit", "3",
    ])
    assert result.exit_code == 0, result.output
    assert "LAUNCH" in result.output
    with app.app_context():
        c = Coupon.query.filter_by(code="LAUNCH").one()
        assert c.usage_limit == 3


def test_create_coupon_invalid(app):
    result = app.test_cli_runner().invoke(args=["create-coupon", "--code", "X", "--value", "250"])
    assert result.exit_code != 0
    assert "<= 100" in result.output


def test_provision_shipments_retries_unprovisioned(app, seed, address, carrier):
    carrier.respond("POST", "orders/create/adhoc", 503)
    with app.app_context():
        result = OrderOrchestrator.from_app(app).create_order(
            [{"product_id": seed["tote"], "quantity": 1}], address, "cash_on_delivery"
        )
        order_id = result.order.id
    carrier.respond("POST", "orders/create/adhoc", 200, {"order_id": 9005, "shipment_id": 7005})

    result = app.test_cli_runner().invoke(args=["provision-shipments"])

    assert result.exit_code == 0, result.output
    assert "Booked 1/1" in result.output
    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.shipment_status == ShipmentStatus.BOOKED.value
        assert order.shipment_id == "7005"


def test_provision_shipments_nothing_to_do(app):
    result = app.test_cli_runner().invoke(args=["provision-shipments"])
    assert "No unprovisioned orders" in result.output


def test_refresh_carrier_token(app, carrier):
    result = app.test_cli_runner().invoke(args=["refresh-carrier-token"])
    assert result.exit_code == 0
    assert carrier.logins == 1

    carrier.login_status = 401
    result = app.test_cli_runner().invoke(args=["refresh-carrier-token"])
    assert result.exit_code != 0
    assert "authentication_failure" in result.output

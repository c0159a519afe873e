"""Pytest fixtures: app on a SQLite file database, carrier and gateway doubles."""

import json
import threading
import time
from datetime import date, timedelta
from decimal import Decimal

import httpx
import pytest
from flask_jwt_extended import create_access_token

from storefront import create_app
from storefront.config import TestConfig
from storefront.extensions import db
from storefront.model import Coupon, Product
from storefront.services.carrier import ShiprocketAdapter, set_carrier
from storefront.services.gateway import PaymentGatewayClient, set_gateway

CARRIER_PREFIX = "/v1/external/"


class CarrierStub:
    """Carrier REST API served through ``httpx.MockTransport``.

    Tokens issued by ``auth/login`` are the only ones accepted; ``routes``
    maps ``(method, endpoint)`` to a handler and can be overridden per test.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.calls = []
        self.logins = 0
        self.issued = set()
        self.sleeps = []
        self.login_delay = 0.0
        self.login_status = 200
        self.routes = {
            ("POST", "orders/create/adhoc"): self._json({"order_id": 9001, "shipment_id": 7001, "status": "NEW"}),
            ("POST", "courier/assign/awb"): self._json({
                "awb_assign_status": 1,
                "response": {"data": {"awb_code": "AWB123", "courier_name": "Delhivery"}},
            }),
            ("GET", "courier/track/awb/AWB123"): self._json({"tracking_data": {"shipment_status": "IN TRANSIT"}}),
            ("GET", "courier/track"): self._json([{"tracking_data": {"track_status": 1}}]),
            ("POST", "orders/cancel"): self._json({"status": 200, "message": "Cancelled"}),
            ("POST", "courier/generate/pickup"): self._json({"pickup_status": 1}),
            ("GET", "courier/serviceability/"): self._json({"data": {"available_courier_companies": [{"courier_name": "Delhivery"}]}}),
            ("GET", "courier/courierListWithCounts"): self._json({"courier_data": [{"courier_name": "Delhivery"}]}),
            ("GET", "settings/company/pickup"): self._json({"data": {"shipping_address": [{"pickup_location": "Primary"}]}}),
            ("POST", "orders/create/return"): self._json({"order_id": 9100, "status": "RETURN PENDING"}),
        }

    @staticmethod
    def _json(body, status=200):
        return lambda request: httpx.Response(status, json=body)

    def respond(self, method, endpoint, status, body=None):
        self.routes[(method, endpoint)] = self._json(body if body is not None else {}, status)

    def calls_to(self, endpoint):
        return [c for c in self.calls if c[1] == endpoint]

    def handler(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.split(CARRIER_PREFIX, 1)[-1]
        body = json.loads(request.content) if request.content else None
        with self.lock:
            self.calls.append((request.method, endpoint, dict(request.url.params), body))

        if endpoint == "auth/login":
            if self.login_delay:
                time.sleep(self.login_delay)
            if self.login_status != 200:
                return httpx.Response(self.login_status, json={"message": "Invalid email and password combination"})
            with self.lock:
                self.logins += 1
                token = f"tok-{self.logins}"
                self.issued.add(token)
            return httpx.Response(200, json={"token": token})

        auth = request.headers.get("Authorization", "")
        if auth.removeprefix("Bearer ") not in self.issued:
            return httpx.Response(401, json={"message": "Token has expired"})

        route = self.routes.get((request.method, endpoint))
        if route is None:
            return httpx.Response(404, json={"message": f"no route {endpoint}"})
        return route(request)


class GatewayStub:
    def __init__(self):
        self.orders = []
        self.status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not request.headers.get("Authorization", "").startswith("Basic "):
            return httpx.Response(401, json={"error": {"description": "Authentication failed"}})
        if self.status != 200:
            return httpx.Response(self.status, json={"error": {"description": "gateway error"}})
        body = json.loads(request.content)
        gateway_order = {"id": f"order_GW{len(self.orders) + 1}", "entity": "order", "status": "created", **body}
        self.orders.append(gateway_order)
        return httpx.Response(200, json=gateway_order)


@pytest.fixture
def carrier():
    return CarrierStub()


@pytest.fixture
def gateway():
    return GatewayStub()


@pytest.fixture
def app(tmp_path, carrier, gateway):
    app = create_app(TestConfig, overrides={"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}"})

    adapter = ShiprocketAdapter.from_config(
        app.config,
        app.extensions["carrier_token_cache"],
        transport=httpx.MockTransport(carrier.handler),
        sleep=carrier.sleeps.append,
    )
    set_carrier(app, adapter)
    client = PaymentGatewayClient.from_config(app.config, transport=httpx.MockTransport(gateway.handler))
    set_gateway(app, client)

    yield app

    app.extensions["shipment_dispatcher"].shutdown()
    adapter.close()
    client.close()
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield
        db.session.rollback()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seed(app):
    today = date.today()
    with app.app_context():
        products = {
            "tote": Product(name="Canvas Tote", sku="TOTE-1", price=Decimal("40.00"), stock=10),
            "lamp": Product(name="Desk Lamp", sku="LAMP-1", price=Decimal("125.50"), stock=3, weight_kg=Decimal("1.200")),
            "mug": Product(name="Retired Mug", sku="MUG-1", price=Decimal("12.00"), stock=50, is_active=False),
        }
        coupons = {
            "SAVE10": Coupon(code="SAVE10", discount_type="percentage", discount_value=Decimal("10"),
                             max_discount=Decimal("50.00")),
            "FLAT20": Coupon(code="FLAT20", discount_type="fixed", discount_value=Decimal("20.00"),
                             min_order_amount=Decimal("100.00")),
            "ONCE": Coupon(code="ONCE", discount_type="fixed", discount_value=Decimal("5.00"), usage_limit=1),
            "EXPIRED": Coupon(code="EXPIRED", discount_type="percentage", discount_value=Decimal("15"),
                              valid_from=today - timedelta(days=30), valid_until=today - timedelta(days=10)),
            "OFF": Coupon(code="OFF", discount_type="fixed", discount_value=Decimal("5.00"), is_active=False),
        }
        db.session.add_all([*products.values(), *coupons.values()])
        db.session.commit()
        ids = {key: p.id for key, p in products.items()}
        ids.update({code: c.id for code, c in coupons.items()})
    return ids


@pytest.fixture
def address():
    return {
        "first_name": "Asha",
        "last_name": "Rao",
        "email": "asha@example.com",
        "phone": "9876543210",
        "address": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "zip": "560001",
        "country": "India",
    }


def _bearer(app, identity, role):
    with app.app_context():
        token = create_access_token(identity=identity, additional_claims={"role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(app):
    return _bearer(app, "1", "admin")


@pytest.fixture
def user_headers(app):
    return _bearer(app, "42", "user")


@pytest.fixture
def other_user_headers(app):
    return _bearer(app, "77", "user")

# storefront/services/gateway.py
"""Payment gateway (Razorpay-compatible) client and signature helpers."""
import hashlib
import hmac
import threading

import httpx
import structlog
from flask import current_app

from .results import CarrierResult, FailureKind

logger = structlog.get_logger(__name__)


def sign(secret: str, message: str | bytes) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def payment_signature(secret: str, gateway_order_id: str, payment_id: str) -> str:
    """Signature the gateway attaches to a checkout callback."""
    return sign(secret, f"{gateway_order_id}|{payment_id}")


def signatures_match(expected: str, provided) -> bool:
    if not isinstance(provided, str):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


class PaymentGatewayClient:
    def __init__(self, base_url: str, key_id: str, key_secret: str, timeout: float = 5.0, transport=None):
        self.key_id = key_id
        self._client = httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_config(cls, config, **kwargs) -> "PaymentGatewayClient":
        return cls(
            base_url=config["PAYMENT_BASE_URL"],
            key_id=config["PAYMENT_KEY_ID"],
            key_secret=config["PAYMENT_KEY_SECRET"],
            timeout=config["PAYMENT_TIMEOUT"],
            **kwargs,
        )

    def close(self):
        self._client.close()

    def create_order(self, amount_minor: int, currency: str, receipt: str, notes: dict | None = None) -> CarrierResult:
        payload = {"amount": amount_minor, "currency": currency, "receipt": receipt, "notes": notes or {}}
        try:
            response = self._client.post("orders", json=payload)
        except httpx.TimeoutException as e:
            return CarrierResult.failure(FailureKind.TRANSIENT_FAILURE, f"Gateway timeout: {e}")
        except httpx.TransportError as e:
            return CarrierResult.failure(FailureKind.TRANSIENT_FAILURE, f"Gateway network error: {e}")

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"raw": response.text}

        if response.is_success:
            return CarrierResult.success(body, status_code=response.status_code)
        logger.error("Gateway order creation failed", status_code=response.status_code, receipt=receipt)
        if response.status_code in (401, 403):
            kind = FailureKind.AUTHENTICATION_FAILURE
        elif response.status_code >= 500:
            kind = FailureKind.TRANSIENT_FAILURE
        else:
            kind = FailureKind.PERMANENT_FAILURE
        return CarrierResult.failure(kind, "Failed to create payment order", errors=body, status_code=response.status_code)


_gateway_lock = threading.Lock()


def get_gateway(app=None) -> PaymentGatewayClient:
    app = app or current_app._get_current_object()
    with _gateway_lock:
        client = app.extensions.get("payment_gateway")
        if client is None:
            client = PaymentGatewayClient.from_config(app.config)
            app.extensions["payment_gateway"] = client
    return client


def set_gateway(app, client: PaymentGatewayClient) -> None:
    with _gateway_lock:
        app.extensions["payment_gateway"] = client

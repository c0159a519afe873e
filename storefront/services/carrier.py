# storefront/services/carrier.py
"""Carrier (Shiprocket) adapter.

Every carrier operation goes through ``request`` which owns the bearer
token, retries transient failures with exponential backoff and, on an
auth rejection, re-authenticates once and replays the call once. Callers
always get a ``CarrierResult`` back.
"""
import threading
import time
from enum import Enum

import httpx
import structlog
from flask import current_app

from .results import CarrierResult, FailureKind
from .token_cache import TokenCache

logger = structlog.get_logger(__name__)

AUTH_REJECTED = {401, 403}


class HttpVerb(str, Enum):
    GET = "GET"
    POST = "POST"


def _send_get(client, url, payload, headers):
    return client.get(url, params=payload or None, headers=headers)


def _send_post(client, url, payload, headers):
    return client.post(url, json=payload or {}, headers=headers)


_DISPATCH = {
    HttpVerb.GET: _send_get,
    HttpVerb.POST: _send_post,
}


class _LoginFailed(Exception):
    def __init__(self, kind: FailureKind, message: str, errors=None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.errors = errors


def _payload_of(response: httpx.Response):
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


class ShiprocketAdapter:
    def __init__(
        self,
        base_url: str,
        email: str,
        password: str,
        token_cache: TokenCache,
        token_ttl: float = 24 * 60 * 60,
        timeout: float = 5.0,
        max_attempts: int = 3,
        backoff_base: float = 0.2,
        transport: httpx.BaseTransport | None = None,
        sleep=time.sleep,
    ):
        self.email = email
        self._password = password
        self.token_cache = token_cache
        self.token_ttl = token_ttl
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )

    @classmethod
    def from_config(cls, config, token_cache: TokenCache, **kwargs) -> "ShiprocketAdapter":
        return cls(
            base_url=config["CARRIER_BASE_URL"],
            email=config["CARRIER_EMAIL"],
            password=config["CARRIER_PASSWORD"],
            token_cache=token_cache,
            token_ttl=config["CARRIER_TOKEN_TTL"],
            timeout=config["CARRIER_TIMEOUT"],
            max_attempts=config["CARRIER_MAX_ATTEMPTS"],
            backoff_base=config["CARRIER_BACKOFF_BASE"],
            **kwargs,
        )

    def close(self):
        self._client.close()

    # ---- transport --------------------------------------------------------

    @property
    def _cache_key(self) -> str:
        return f"carrier:{self.email}"

    def _send(self, verb: HttpVerb, endpoint: str, payload=None, token: str | None = None):
        """One logical call: network errors and 5xx are retried, anything else returned as-is."""
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        send = _DISPATCH[verb]
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = send(self._client, endpoint, payload, headers)
            except httpx.TimeoutException as e:
                last_error = f"timeout: {e}"
            except httpx.TransportError as e:
                last_error = f"network error: {e}"
            else:
                if response.status_code < 500:
                    return response
                last_error = f"carrier returned {response.status_code}"

            logger.warning(
                "Carrier call failed",
                endpoint=endpoint,
                attempt=attempt,
                max_attempts=self.max_attempts,
                error=last_error,
            )
            if attempt < self.max_attempts:
                self._sleep(self.backoff_base * (2 ** (attempt - 1)))

        return CarrierResult.failure(
            FailureKind.TRANSIENT_FAILURE,
            f"Carrier unavailable after {self.max_attempts} attempts ({last_error})",
        )

    def _login(self):
        response = self._send(HttpVerb.POST, "auth/login", {"email": self.email, "password": self._password})
        if isinstance(response, CarrierResult):
            raise _LoginFailed(response.kind, response.message)
        token = _payload_of(response).get("token") if response.is_success else None
        if not token:
            logger.error("Carrier authentication failed", status_code=response.status_code)
            raise _LoginFailed(
                FailureKind.AUTHENTICATION_FAILURE,
                "Carrier authentication failed",
                errors=_payload_of(response),
            )
        logger.info("Carrier token refreshed", account=self.email)
        return token, self.token_ttl

    def _token(self) -> str:
        return self.token_cache.get_or_refresh(self._cache_key, self._login)

    def refresh_token(self) -> CarrierResult:
        """Force a fresh login (operator command)."""
        self.token_cache.invalidate(self._cache_key)
        try:
            self._token()
        except _LoginFailed as e:
            return CarrierResult.failure(e.kind, e.message, errors=e.errors)
        return CarrierResult.success({"refreshed": True})

    def request(self, verb: HttpVerb, endpoint: str, payload=None, failure_message="Carrier request failed") -> CarrierResult:
        try:
            token = self._token()
            response = self._send(verb, endpoint, payload, token)
            if isinstance(response, httpx.Response) and response.status_code in AUTH_REJECTED:
                logger.info("Carrier rejected token, re-authenticating", endpoint=endpoint)
                self.token_cache.invalidate(self._cache_key, token)
                token = self._token()
                response = self._send(verb, endpoint, payload, token)
        except _LoginFailed as e:
            return CarrierResult.failure(e.kind, e.message, errors=e.errors)

        if isinstance(response, CarrierResult):
            return response

        body = _payload_of(response)
        if response.is_success:
            return CarrierResult.success(body, status_code=response.status_code)
        if response.status_code in AUTH_REJECTED:
            logger.error("Carrier rejected fresh token", endpoint=endpoint)
            return CarrierResult.failure(
                FailureKind.AUTHENTICATION_FAILURE,
                "Carrier authentication failed",
                errors=body,
                status_code=response.status_code,
            )
        logger.error("Carrier request rejected", endpoint=endpoint, status_code=response.status_code, errors=body)
        return CarrierResult.failure(
            FailureKind.PERMANENT_FAILURE,
            failure_message,
            errors=body,
            status_code=response.status_code,
        )

    # ---- carrier operations --------------------------------------------

    def create_shipment(self, order_data: dict) -> CarrierResult:
        return self.request(HttpVerb.POST, "orders/create/adhoc", order_data, "Failed to create carrier order")

    def generate_awb(self, shipment_id, courier_id=None) -> CarrierResult:
        data = {"shipment_id": shipment_id}
        if courier_id:
            data["courier_id"] = courier_id
        return self.request(HttpVerb.POST, "courier/assign/awb", data, "Failed to generate AWB")

    def track(self, awb_code: str) -> CarrierResult:
        return self.request(HttpVerb.GET, f"courier/track/awb/{awb_code}", None, "Failed to get tracking info")

    def track_by_order(self, order_id: str) -> CarrierResult:
        return self.request(HttpVerb.GET, "courier/track", {"order_id": order_id}, "Failed to get tracking info")

    def _lane(self, pickup_pincode, delivery_pincode, weight, cod: bool):
        return {
            "pickup_postcode": pickup_pincode,
            "delivery_postcode": delivery_pincode,
            "weight": weight,
            "cod": 1 if cod else 0,
        }

    def check_serviceability(self, pickup_pincode, delivery_pincode, weight, cod: bool = False) -> CarrierResult:
        return self.request(
            HttpVerb.GET,
            "courier/serviceability/",
            self._lane(pickup_pincode, delivery_pincode, weight, cod),
            "Service not available",
        )

    def list_couriers(self, pickup_pincode, delivery_pincode, weight, cod: bool = False) -> CarrierResult:
        return self.request(
            HttpVerb.GET,
            "courier/courierListWithCounts",
            self._lane(pickup_pincode, delivery_pincode, weight, cod),
            "Failed to get couriers",
        )

    def cancel(self, shipment_ids: list) -> CarrierResult:
        return self.request(HttpVerb.POST, "orders/cancel", {"ids": list(shipment_ids)}, "Failed to cancel shipment")

    def schedule_pickup(self, shipment_id) -> CarrierResult:
        return self.request(
            HttpVerb.POST, "courier/generate/pickup", {"shipment_id": [shipment_id]}, "Failed to schedule pickup"
        )

    def list_pickup_locations(self) -> CarrierResult:
        return self.request(HttpVerb.GET, "settings/company/pickup", None, "Failed to get pickup locations")

    def create_return(self, return_data: dict) -> CarrierResult:
        return self.request(HttpVerb.POST, "orders/create/return", return_data, "Failed to create return order")


_carrier_lock = threading.Lock()


def get_carrier(app=None) -> ShiprocketAdapter:
    """Return the app's carrier adapter, building it from config on first use."""
    app = app or current_app._get_current_object()
    with _carrier_lock:
        adapter = app.extensions.get("carrier")
        if adapter is None:
            adapter = ShiprocketAdapter.from_config(app.config, app.extensions["carrier_token_cache"])
            app.extensions["carrier"] = adapter
    return adapter


def set_carrier(app, adapter: ShiprocketAdapter) -> None:
    """Override the app's carrier adapter (useful for tests)."""
    with _carrier_lock:
        app.extensions["carrier"] = adapter

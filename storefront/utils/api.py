# --- storefront/utils/api.py ---
from datetime import datetime, timezone


def _api_time():
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def api_ok(message, data=None):
    return {
        "status": True,
        "message": message,
        "data": {
            **(data or {}),
            "API_TIME_HUMAN": _api_time(),
        },
    }


def api_error(message, data=None):
    return {
        "status": False,
        "message": message,
        "data": {
            **(data or {}),
            "API_TIME_HUMAN": _api_time(),
        },
    }


def ok(msg, data=None, status=200):
    from flask import jsonify; r = jsonify(api_ok(msg, data)); r.status_code = status; return r
def err(msg, status=400, data=None):
    from flask import jsonify; r = jsonify(api_error(msg, data)); r.status_code = status; return r


def result_error(result, data=None):
    """HTTP error response for a failed TransitionResult or CarrierResult."""
    from ..services.results import FailureKind, TransitionError

    status = {
        TransitionError.UNKNOWN_ORDER: 404,
        TransitionError.INVALID_TRANSITION: 409,
        TransitionError.NO_SHIPMENT: 409,
        FailureKind.AUTHENTICATION_FAILURE: 502,
        FailureKind.TRANSIENT_FAILURE: 503,
        FailureKind.PERMANENT_FAILURE: 400,
    }.get(getattr(result, "error", None) or getattr(result, "kind", None), 400)
    payload = dict(data or {})
    if getattr(result, "kind", None) is not None:
        payload.update({"kind": result.kind.value, "errors": result.errors})
    elif getattr(result, "error", None) is not None:
        payload["reason"] = result.error.value
    return err(result.message or "Request failed", status, payload)

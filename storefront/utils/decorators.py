# ------- storefront/utils/decorators.py -------
from functools import wraps
from flask import jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from ..utils.api import api_error


def current_user_id():
    """Identity issued by the auth service; None for anonymous callers."""
    verify_jwt_in_request(optional=True)
    uid = get_jwt_identity()
    try:
        return int(uid)
    except (TypeError, ValueError):
        return None


def current_role():
    verify_jwt_in_request()
    return (get_jwt() or {}).get("role", "user")


def role_required(*roles, message: str | None = None):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if current_role() not in roles:
                return jsonify(api_error(message or "Forbidden")), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator

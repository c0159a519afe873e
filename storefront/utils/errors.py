# storefront/utils/errors.py
import structlog
from flask import jsonify

from ..extensions import db
from .api import api_error

logger = structlog.get_logger(__name__)


def register_error_handlers(app):
    @app.errorhandler(ValueError)
    def handle_value_error(e):
        db.session.rollback()
        logger.info("Rejected malformed request", error=str(e))
        r = jsonify(api_error(str(e)))
        r.status_code = 422
        return r

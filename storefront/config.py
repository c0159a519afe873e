import os
from datetime import timedelta
from decimal import Decimal


def _env_decimal(name, default):
    return Decimal(os.environ.get(name, default))


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    ENV = os.getenv("FLASK_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=1)

    # Checkout pricing (flat, single currency)
    SHIPPING_FLAT_FEE = _env_decimal("SHIPPING_FLAT_FEE", "15.00")
    TAX_RATE = _env_decimal("TAX_RATE", "0.08")
    COD_FEE = _env_decimal("COD_FEE", "0.00")

    # Carrier account (Shiprocket external API)
    CARRIER_BASE_URL = os.environ.get("CARRIER_BASE_URL", "https://apiv2.shiprocket.in/v1/external")
    CARRIER_EMAIL = os.environ.get("CARRIER_EMAIL", "")
    CARRIER_PASSWORD = os.environ.get("CARRIER_PASSWORD", "")
    CARRIER_TOKEN_TTL = int(os.environ.get("CARRIER_TOKEN_TTL", 24 * 60 * 60))
    CARRIER_TIMEOUT = float(os.environ.get("CARRIER_TIMEOUT", "5.0"))
    CARRIER_MAX_ATTEMPTS = int(os.environ.get("CARRIER_MAX_ATTEMPTS", 3))
    CARRIER_BACKOFF_BASE = float(os.environ.get("CARRIER_BACKOFF_BASE", "0.2"))
    CARRIER_PICKUP_LOCATION = os.environ.get("CARRIER_PICKUP_LOCATION", "Primary")
    CARRIER_PICKUP_PINCODE = os.environ.get("CARRIER_PICKUP_PINCODE", "110001")
    CARRIER_CHANNEL_ID = os.environ.get("CARRIER_CHANNEL_ID", "")
    CARRIER_WEBHOOK_TOKEN = os.environ.get("CARRIER_WEBHOOK_TOKEN", "")

    # Payment gateway (Razorpay-compatible)
    PAYMENT_BASE_URL = os.environ.get("PAYMENT_BASE_URL", "https://api.razorpay.com/v1")
    PAYMENT_KEY_ID = os.environ.get("PAYMENT_KEY_ID", "")
    PAYMENT_KEY_SECRET = os.environ.get("PAYMENT_KEY_SECRET", "")
    PAYMENT_WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET", "")
    PAYMENT_TIMEOUT = float(os.environ.get("PAYMENT_TIMEOUT", "5.0"))
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "INR")

    # "thread" runs shipment provisioning in a background pool, "inline" runs it in-process
    SHIPMENT_DISPATCH = os.environ.get("SHIPMENT_DISPATCH", "thread")
    SHIPMENT_WORKERS = int(os.environ.get("SHIPMENT_WORKERS", 4))

    @staticmethod
    def init_app(app):
        if app.config.get("SQLALCHEMY_DATABASE_URI"):
            return
        if not os.getenv("DATABASE_URL"):
            os.makedirs(app.instance_path, exist_ok=True)
            app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{os.path.join(app.instance_path, 'app.db')}"
        else:
            app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL")


class TestConfig(Config):
    TESTING = True
    JWT_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    SHIPPING_FLAT_FEE = Decimal("15.00")
    TAX_RATE = Decimal("0.08")
    COD_FEE = Decimal("5.00")

    CARRIER_BASE_URL = "https://carrier.test/v1/external"
    CARRIER_EMAIL = "ops@example.com"
    CARRIER_PASSWORD = "carrier-pass"
    CARRIER_BACKOFF_BASE = 0.0
    CARRIER_WEBHOOK_TOKEN = "carrier-hook-token"

    PAYMENT_BASE_URL = "https://gateway.test/v1"
    PAYMENT_KEY_ID = "rzp_test_key"
    PAYMENT_KEY_SECRET = "gateway-secret"
    PAYMENT_WEBHOOK_SECRET = "webhook-secret"

    SHIPMENT_DISPATCH = "inline"

    @staticmethod
    def init_app(app):
        # tests set SQLALCHEMY_DATABASE_URI explicitly (file database, shared across threads)
        app.config.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite://")
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "connect_args": {"check_same_thread": False, "timeout": 30},
        }

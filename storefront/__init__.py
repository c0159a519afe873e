import os
from flask import Flask, jsonify
from .extensions import db, jwt, cors, migrate
from .config import Config
from .utils.logging import configure_logging


def create_app(config_object=Config, overrides=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)
    if overrides:
        app.config.update(overrides)

    os.makedirs(app.instance_path, exist_ok=True)
    config_object.init_app(app)
    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Init extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/*": {"origins": "*"}})
    migrate.init_app(app, db)

    # Services shared by the blueprints
    from .services.dispatch import ShipmentDispatcher
    from .services.token_cache import TokenCache
    app.extensions["carrier_token_cache"] = TokenCache()
    app.extensions["shipment_dispatcher"] = ShipmentDispatcher(
        app,
        mode=app.config["SHIPMENT_DISPATCH"],
        max_workers=app.config["SHIPMENT_WORKERS"],
    )

    # Register blueprints
    from .coupon import bp as coupon_bp; app.register_blueprint(coupon_bp)
    from .order import bp as order_bp; app.register_blueprint(order_bp)
    from .payment import bp as payment_bp; app.register_blueprint(payment_bp)
    from .shipping import bp as shipping_bp; app.register_blueprint(shipping_bp)

    from .utils.errors import register_error_handlers
    register_error_handlers(app)

    from .cli import register_cli
    register_cli(app)

    @app.get("/")
    def health():
        return jsonify(ok=True, msg="API running")

    with app.app_context():
        from . import model  # noqa: F401  (register tables)
        db.create_all()

    return app

# backend/orderledger/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.getLogger("orderledger").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.concurrency import install_sqlite_locking
    with app.app_context():
        install_sqlite_locking(db.engine, app.config["LOCK_TIMEOUT_SECONDS"])

    # Register blueprints
    from .routes.system import system_bp
    from .routes.items import items_bp
    from .routes.parties import suppliers_bp, customers_bp
    from .routes.orders import purchase_orders_bp, sales_orders_bp, orders_bp
    from .routes.payments import payments_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(items_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(sales_orders_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app

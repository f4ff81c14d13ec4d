# backend/vouchernet/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate
from .services.gateway_client import AsaasGatewayClient, GatewayConfig


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # One gateway client per app, configured explicitly
    app.extensions["payment_gateway"] = AsaasGatewayClient(GatewayConfig.from_app_config(app.config))

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.vouchers import vouchers_bp
    from .routes.transactions import transactions_bp
    from .routes.commissions import commissions_bp
    from .routes.charges import charges_bp
    from .routes.merchants import merchants_bp
    from .routes.webhooks import webhooks_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(vouchers_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(commissions_bp)
    app.register_blueprint(charges_bp)
    app.register_blueprint(merchants_bp)
    app.register_blueprint(webhooks_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app

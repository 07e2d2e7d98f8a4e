"""
App factory: create_app()

- Loads config (env, storage backend, timing knobs)
- Sets up logging
- Wires DI container (durable tier, clock, tab registry)
- Registers middleware (tab IDs, timing log)
- Registers blueprints from routes/*
- Installs global error handlers
"""

from __future__ import annotations
import logging
from typing import Any, Dict

from flask import Flask, jsonify

from app.config import Settings, load_settings
from app.logging_setup import configure_logging
from app.container import Container
from app import middleware


def _register_blueprints(app: Flask) -> None:
    # Lazy imports to avoid circulars
    from routes.health_routes import bp as health_bp
    from routes.checkout_routes import bp as checkout_bp
    from routes.cart_routes import bp as cart_bp
    from routes.confirmation_routes import bp as confirmation_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(confirmation_bp)


def _install_error_handlers(app: Flask) -> None:
    @app.errorhandler(400)
    def bad_request(err):
        app.logger.warning(f"400: {err}")
        return jsonify({"error": "bad_request", "detail": getattr(err, "description", None)}), 400

    @app.errorhandler(404)
    def not_found(err):
        return jsonify({"error": "not_found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(err):
        return jsonify({"error": "method_not_allowed"}), 405

    @app.errorhandler(500)
    def server_error(err):
        app.logger.exception("Unhandled server error")
        return jsonify({"error": "server_error"}), 500


def create_app(config_override: Dict[str, Any] | None = None, **container_kwargs: Any) -> Flask:
    # Settings & logging
    settings: Settings = load_settings(config_override)
    configure_logging(settings)

    app = Flask(__name__, static_folder=None)
    app.config["SECRET_KEY"] = settings.SECRET_KEY
    app.config["SETTINGS"] = settings

    # Dependency container (storage tiers, clock, tabs)
    container = Container(settings, **container_kwargs)
    app.container = container  # type: ignore[attr-defined]

    # Middleware
    middleware.install_tab_id(app)
    middleware.install_timing_log(app)

    # Blueprints
    _register_blueprints(app)

    # Error handlers
    _install_error_handlers(app)

    logging.getLogger("Checkout").info(
        f"App started STORAGE={settings.STORAGE_BACKEND} STATE_DIR={settings.STATE_DIR}"
    )

    # Simple root
    @app.get("/")
    def root():
        return {"ok": True, "storage": settings.STORAGE_BACKEND}

    return app

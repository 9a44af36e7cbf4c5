# backend/gridledger/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config: dict | None = None, **context_overrides) -> Flask:
    """
    Build the Flask app.

    `config` entries override Config (tests pass TESTING, an in-memory
    database and GRID_BACKEND=memory). `context_overrides` are handed to
    build_context (grid, properties, cache_backend, inference, blobs,
    renderer, clock) so tests can inject collaborators.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Settings are read from app.config once, here
    from .services.context import build_context
    app.extensions["gridledger"] = build_context(app.config, **context_overrides)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.estimates import estimates_bp
    from .routes.orders import orders_bp
    from .routes.invoices import invoices_bp
    from .routes.cash import cash_bp
    from .routes.masters import masters_bp
    from .routes.reports import reports_bp
    from .routes.records import records_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(estimates_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(cash_bp)
    app.register_blueprint(masters_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(records_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-User-Email, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app

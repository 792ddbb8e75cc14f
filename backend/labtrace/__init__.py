# backend/labtrace/__init__.py
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import LabTraceError, error_response
from .extensions import db, migrate, EMAIL_SENDER_KEY



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app: the engine is built from them
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # External collaborators
    if app.config.get("EMAIL_RELAY_URL") and EMAIL_SENDER_KEY not in app.extensions:
        from .services.email_service import HttpRelayEmailSender
        app.extensions[EMAIL_SENDER_KEY] = HttpRelayEmailSender(
            app.config["EMAIL_RELAY_URL"],
            timeout=app.config.get("EMAIL_RELAY_TIMEOUT", 10.0),
        )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.dentists import dentists_bp
    from .routes.orders import orders_bp
    from .routes.worksheets import worksheets_bp
    from .routes.materials import materials_bp
    from .routes.quality_control import quality_control_bp
    from .routes.invoices import invoices_bp
    from .routes.audit import audit_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(dentists_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(worksheets_bp)
    app.register_blueprint(materials_bp)
    app.register_blueprint(quality_control_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(audit_bp)

    @app.errorhandler(LabTraceError)
    def handle_domain_error(e):
        return error_response(e)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        db.session.rollback()
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config.get("CORS_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-User-Id, X-User-Role, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app

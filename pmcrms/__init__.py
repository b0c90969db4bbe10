"""
PMC Licensing Workflow
Flask Application Factory.

Usage:
    from pmcrms import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from pmcrms.config import config
from pmcrms.middleware.jwt_auth import init_jwt_middleware
from pmcrms.middleware.logging_config import configure_logging
from pmcrms.middleware.rate_limiter import init_rate_limits
from pmcrms.models import db

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine  # noqa: E402


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; apply per-route
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiate so ProductionConfig can validate required settings
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── JWT auth middleware (sets g.current_user_id / g.current_role) ────
    init_jwt_middleware(app)

    # ── Request guards (uploads travel as base64 JSON) ───────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 20 * 1024 * 1024)  # 20 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from pmcrms.models import application as _application_models  # noqa: F401
    from pmcrms.models import audit as _audit_models              # noqa: F401
    from pmcrms.models import auth as _auth_models                # noqa: F401
    from pmcrms.models import notification as _notification_models  # noqa: F401
    from pmcrms.models import otp as _otp_models                  # noqa: F401
    from pmcrms.models import payment as _payment_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from pmcrms.blueprints.application_bp import application_bp
    from pmcrms.blueprints.auth_bp import auth_bp
    from pmcrms.blueprints.health_bp import health_bp
    from pmcrms.blueprints.payment_bp import payment_bp

    app.register_blueprint(application_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(payment_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-admin")
    @click.option("--email", required=True)
    @click.option("--password", required=True)
    @click.option("--full-name", default="PMC Administrator")
    def create_admin_cmd(email, password, full_name):
        """Create (or reset) the Admin account that invites officers."""
        from pmcrms.models.auth import User
        from pmcrms.services.auth_service import normalize_email
        from pmcrms.services.roles import ADMIN_ROLE
        from pmcrms.utils.crypto import hash_password

        email = normalize_email(email)
        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(email=email)
            db.session.add(user)
        user.full_name = full_name
        user.role = ADMIN_ROLE
        user.status = "active"
        user.password_hash = hash_password(password)
        db.session.commit()
        logger.info("Admin account ready: %s", email)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "code": "ERR_THROTTLED", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app

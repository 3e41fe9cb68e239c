"""
Procurement Portal
Flask Application Factory.

Usage:
    from portal import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from portal.config import config
from portal.core.exceptions import StatusCorruptionError
from portal.middleware.logging_config import configure_logging
from portal.middleware.rate_limiter import init_rate_limits
from portal.middleware.timing import init_request_timing
from portal.models import db
from portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
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

    config_class = config[config_name]
    config_class.validate()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from portal.models import audit as _audit_models                # noqa: F401
    from portal.models import auth as _auth_models                  # noqa: F401
    from portal.models import load_balancing as _lb_models          # noqa: F401
    from portal.models import request as _request_models            # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        if (app.config.get("SQLALCHEMY_DATABASE_URI") or "").startswith("sqlite:///") and not app.testing:
            os.makedirs(app.instance_path, exist_ok=True)
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from portal.blueprints.health_bp import health_bp
    from portal.blueprints.load_balancing_bp import load_balancing_bp
    from portal.blueprints.request_bp import request_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(request_bp)
    app.register_blueprint(load_balancing_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("repair-statuses")
    def repair_statuses_cmd():
        """Normalise legacy / unknown request statuses."""
        from portal.services.status_normalizer import repair_statuses
        touched = repair_statuses()
        if touched is None:
            db.session.rollback()
            logger.error("Status repair failed; nothing committed.")
            raise SystemExit(1)
        db.session.commit()
        logger.info("Status repair touched %s request row(s).", touched)

    @app.cli.command("auto-assign-pending")
    def auto_assign_pending_cmd():
        """Assign every unassigned request waiting in procurement review."""
        from portal.services.load_balancing import auto_assign_pending_requests, get_settings
        settings = get_settings()
        if settings is None or not settings.enabled:
            logger.warning("Auto-assignment is not enabled; nothing to do.")
            return
        assigned = auto_assign_pending_requests(settings)
        db.session.commit()
        logger.info("Auto-assigned %s pending request(s).", assigned)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(StatusCorruptionError)
    def status_corruption(e):
        db.session.rollback()
        logger.error("Status corruption: %s", e)
        return api_error(E.DATA_CORRUPTION, str(e))

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app

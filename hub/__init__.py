"""
NIA Excellence Hub
Flask Application Factory.

Usage:
    from hub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate

from hub.auth import init_auth
from hub.config import config
from hub.core.exceptions import (
    ConflictError, GoneError, NotConnectedError, NotFoundError, UpstreamError, ValidationError,
)
from hub.middleware.logging_config import configure_logging
from hub.middleware.rate_limiter import init_rate_limits, user_rate_limit_key
from hub.models import db

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
    key_func=user_rate_limit_key,
    default_limits=[],                     # per-route limits only
    strategy="moving-window",
)


def _register_error_handlers(app):
    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        logger.info("%s", e)
        return {"error": e.public_message}, 404

    @app.errorhandler(ValidationError)
    def handle_validation(e):
        body = {"error": e.message}
        if e.details:
            body["details"] = e.details
        return body, 400

    @app.errorhandler(ConflictError)
    def handle_conflict(e):
        return {"error": e.message}, 409

    @app.errorhandler(GoneError)
    def handle_gone(e):
        return {"error": e.message, **e.details}, 410

    @app.errorhandler(NotConnectedError)
    def handle_not_connected(e):
        return {"error": e.code, "message": e.message}, e.status

    @app.errorhandler(UpstreamError)
    def handle_upstream(e):
        logger.warning("Upstream failure (%s): %s", e.code or "-", e.message)
        if e.code:
            return {"error": e.code, "message": e.message}, 502
        return {"error": e.message}, 502

    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return {"error": "Not found", "path": request.path}, 404
        return {"error": "Not found"}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429


def _register_cli(app):
    @app.cli.command("issue-token")
    @click.argument("auth_id")
    @click.option("--email", default=None, help="Email claim for a first sign-in.")
    @click.option("--name", default=None, help="Display name claim for a first sign-in.")
    @click.option("--hours", default=None, type=int, help="Token lifetime in hours.")
    def issue_token_cmd(auth_id, email, name, hours):
        """Print a session token for AUTH_ID."""
        from hub.auth import issue_session_token
        click.echo(issue_session_token(auth_id, email=email, name=name, hours=hours))

    @app.cli.command("run-survey-scheduler")
    def run_survey_scheduler_cmd():
        """Open due scheduled waves and close expired open ones."""
        from hub.services.survey_service import run_scheduler
        result = run_scheduler()
        logger.info(
            "Survey scheduler: opened=%s closed=%s metrics=%s",
            result["opened"], result["closed"], result["metricsGenerated"],
        )
        click.echo(f"opened={result['opened']} closed={result['closed']} "
                   f"metricsGenerated={result['metricsGenerated']}")


def create_app(config_name=None):
    """Create and configure the Flask application."""
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    # dev SQLite lives under instance/
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging ───────────────────────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()],
             supports_credentials=True)
    else:
        CORS(app)

    # ── Auth (session token + proxy cookie) ──────────────────────────────
    # registered before the limiter so its key function sees g.current_user
    init_auth(app)
    limiter.init_app(app)

    # ── Models (ensure metadata is complete) ─────────────────────────────
    from hub.models import metric as _metric_models      # noqa: F401
    from hub.models import process as _process_models    # noqa: F401
    from hub.models import strategy as _strategy_models  # noqa: F401
    from hub.models import survey as _survey_models      # noqa: F401
    from hub.models import task as _task_models          # noqa: F401
    from hub.models import user as _user_models          # noqa: F401

    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from hub.blueprints.admin_bp import admin_bp
    from hub.blueprints.ai_bp import ai_bp
    from hub.blueprints.asana_bp import asana_bp
    from hub.blueprints.auth_bp import auth_bp
    from hub.blueprints.cron_bp import cron_bp
    from hub.blueprints.health_bp import health_bp
    from hub.blueprints.metric_bp import metric_bp
    from hub.blueprints.process_bp import process_bp
    from hub.blueprints.strategy_bp import strategy_bp
    from hub.blueprints.survey_bp import survey_bp
    from hub.blueprints.task_bp import task_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(process_bp)
    app.register_blueprint(metric_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(survey_bp)
    app.register_blueprint(strategy_bp)
    app.register_blueprint(asana_bp)
    app.register_blueprint(ai_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(health_bp)

    _register_cli(app)
    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app

"""
Freelance Escrow Marketplace
Flask Application Factory.

Usage:
    from marketplace import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from marketplace.config import config
from marketplace.middleware.jwt_auth import init_jwt_middleware
from marketplace.middleware.logging_config import configure_logging
from marketplace.middleware.timing import init_request_timing
from marketplace.models import db
from marketplace.utils.errors import register_error_handlers

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
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
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
    app.config.from_object(config[config_name])

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

    # ── JWT auth middleware (sets g.actor) ───────────────────────────────
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from marketplace.models import project as _project_models           # noqa: F401
    from marketplace.models import proposal as _proposal_models         # noqa: F401
    from marketplace.models import escrow as _escrow_models             # noqa: F401
    from marketplace.models import deliverable as _deliverable_models   # noqa: F401
    from marketplace.models import milestone as _milestone_models       # noqa: F401
    from marketplace.models import notification as _notification_models  # noqa: F401
    from marketplace.models import invitation as _invitation_models     # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if not app.config.get("TESTING"):
        with app.app_context():
            db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
            if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
                os.makedirs(os.path.dirname(db_uri[len("sqlite:///"):]), exist_ok=True)
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from marketplace.blueprints.deliverable_bp import deliverable_bp
    from marketplace.blueprints.escrow_bp import escrow_bp
    from marketplace.blueprints.health_bp import health_bp
    from marketplace.blueprints.invitation_bp import invitation_bp
    from marketplace.blueprints.milestone_bp import milestone_bp
    from marketplace.blueprints.notification_bp import notification_bp
    from marketplace.blueprints.project_bp import project_bp
    from marketplace.blueprints.proposal_bp import proposal_bp

    app.register_blueprint(project_bp)
    app.register_blueprint(proposal_bp)
    app.register_blueprint(escrow_bp)
    app.register_blueprint(deliverable_bp)
    app.register_blueprint(milestone_bp)
    app.register_blueprint(invitation_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("platform-fees")
    @click.option("--start", default=None, help="Released on/after YYYY-MM-DD")
    @click.option("--end", default=None, help="Released on/before YYYY-MM-DD")
    def platform_fees_cmd(start, end):
        """Print the platform fees earned on released escrows."""
        from datetime import datetime, time, timezone

        from marketplace.services.escrow_service import platform_fee_totals
        from marketplace.utils.helpers import parse_date

        start_date = parse_date(start, "start")
        end_date = parse_date(end, "end")
        totals = platform_fee_totals(
            datetime.combine(start_date, time.min, tzinfo=timezone.utc) if start_date else None,
            datetime.combine(end_date, time.max, tzinfo=timezone.utc) if end_date else None,
        )
        click.echo(
            f"Released escrows: {totals['released_count']}  "
            f"Platform fees: {totals['total_platform_fees']}"
        )

    return app

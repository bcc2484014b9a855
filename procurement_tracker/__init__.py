"""
procurement_tracker/__init__.py

Flask application factory for the Procurement Request Tracker.

Requirements:
- One ProcurementService (and its RequestStore) per application, kept in
  app.extensions["procurement"]. No module-level store.
- JSON API only; every ProcurementError becomes a JSON error response.
- PostgreSQL-ready (SQLAlchemy + migrations) but SQLite is used for dev.
- UI is never trusted; server-side access control is enforced in the blueprints.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError

from .errors import ProcurementError
from .extensions import csrf, db, login_manager, migrate
from .logging_config import configure_logging
from .models import User
from .service import ProcurementService

logger = logging.getLogger(__name__)


def create_app(config_object: str = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            return db.session.get(User, user_id)
        except SQLAlchemyError as exc:
            logger.warning("Could not load user %s: %s", user_id, exc)
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "UNAUTHORIZED", "message": "Authentication required"}), 401

    # ----------------------------------------------------------------------
    # Request store + operations
    # ----------------------------------------------------------------------
    ProcurementService().init_app(app)

    # ----------------------------------------------------------------------
    # Errors
    # ----------------------------------------------------------------------
    @app.errorhandler(ProcurementError)
    def handle_procurement_error(exc: ProcurementError):
        return jsonify({"error": exc.error_code, "message": exc.message}), exc.status_code

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.activity import activity_bp
    from .blueprints.auth import auth_bp
    from .blueprints.reports import reports_bp
    from .blueprints.requests import files_bp, requests_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(files_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(activity_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables (development; use `flask db upgrade` with migrations)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed-demo")
    @click.option("--password", default=None, help="Password for the demo users (default: demo1234).")
    def seed_demo_command(password):
        """Seed demo users and requests (idempotent)."""
        from .seed import DEMO_PASSWORD, seed_demo_data

        users, requests = seed_demo_data(password or DEMO_PASSWORD)
        click.echo(f"Demo data seeded: {users} users, {requests} requests created.")

    @app.route("/")
    def index():
        return jsonify({"app": app.config.get("APP_NAME"), "status": "ok"})

    logger.debug("Application created with %s", config_object)
    return app

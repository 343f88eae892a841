import os
import logging

import click
from flask import Flask, jsonify, request

from paybridge.config import config_by_name
from paybridge.errors import BridgeError
from paybridge.extensions import db, limiter

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    limiter.init_app(app)

    # --- Create tables (webhook ledger, durable session store) ---
    with app.app_context():
        from paybridge import models  # noqa: F401
        db.create_all()

    # --- Session store + periodic sweep ---
    from paybridge.services.session_store import build_session_store
    from paybridge.services.sweeper import SessionSweeper

    store = build_session_store(app.config)
    app.extensions["session_store"] = store
    sweeper = SessionSweeper(app, app.config["SESSION_SWEEP_INTERVAL_SECONDS"])
    app.extensions["session_sweeper"] = sweeper
    if app.config["SESSION_SWEEP_INTERVAL_SECONDS"] > 0:
        sweeper.start()

    # --- Register blueprints ---
    from paybridge.blueprints.checkout import checkout_bp
    from paybridge.blueprints.webhooks import webhooks_bp
    from paybridge.blueprints.health import health_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(health_bp)

    # --- Request logging ---
    @app.before_request
    def log_request():
        logger.info(f"{request.method} {request.path}")

    # --- Error handlers (JSON only, this is an API) ---
    @app.errorhandler(BridgeError)
    def bridge_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"success": False, "error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("sweep-sessions")
    def sweep_sessions():
        """Evict expired checkout sessions once.

        Usage:
            flask sweep-sessions
        """
        removed = app.extensions["session_sweeper"].run_once()
        click.echo(f"Removed {removed} expired checkout session(s).")

    @app.cli.command("check-config")
    def check_config():
        """Print which integrations are configured and validate required settings.

        Usage:
            flask check-config
        """
        from paybridge.blueprints.health import config_checklist
        from paybridge.services.plan_selector import load_plan_table

        click.echo("Integration checklist:")
        for name, value in config_checklist(app.config).items():
            click.echo(f"  {name}: {value}")

        click.echo("")
        click.echo("Price bands:")
        try:
            table = load_plan_table(app.config)
        except ValueError as e:
            click.echo(f"  ERROR: {e}")
        else:
            for band in table.bands:
                upper = band.max_price if band.max_price is not None else "and up"
                plan = band.plan_id or "(not set)"
                click.echo(f"  {band.min_price} - {upper}: {band.plan_name} [{plan}]")
            click.echo(f"  fallback: {table.default_plan.plan_name} [{table.default_plan.plan_id}]")

        click.echo("")
        try:
            config_by_name[os.environ.get("FLASK_ENV", "development")].validate()
            click.echo("Required settings: OK")
        except RuntimeError as e:
            click.echo(f"Required settings: {e}")

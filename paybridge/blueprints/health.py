"""Health blueprint — /api/health

Liveness probe. Reports uptime, live session count and which integrations
are configured. No side effects.
"""

import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

from paybridge.services.session_store import get_session_store

health_bp = Blueprint("health", __name__, url_prefix="/api")

_started_at = time.monotonic()


def config_checklist(config):
    """Which integrations are configured (booleans only, never values)."""
    return {
        "payment_api_key": bool(config.get("PAYMENT_API_KEY")),
        "payment_default_plan": bool(config.get("PAYMENT_DEFAULT_PLAN_ID")),
        "order_api_key": bool(config.get("ORDER_API_KEY")),
        "order_account": bool(config.get("ORDER_ACCOUNT_NAME")),
        "webhook_secret": bool(config.get("WEBHOOK_SECRET")),
        "redirect_urls": {
            "success": bool(config.get("SUCCESS_REDIRECT_URL")),
            "cancel": bool(config.get("CANCEL_REDIRECT_URL")),
        },
    }


@health_bp.route("/health")
def health():
    config = current_app.config
    return jsonify({
        "success": True,
        "status": "healthy",
        "service": config["SERVICE_NAME"],
        "version": config["SERVICE_VERSION"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _started_at, 1),
        "sessions": get_session_store().count(),
        "checklist": config_checklist(config),
    })

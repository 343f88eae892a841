"""Webhooks blueprint — /api/payment-webhook

Receives settlement events from the payment platform.
Raw body is required for signature verification.
"""

import json
import logging

from flask import Blueprint, jsonify, request

from paybridge.errors import AuthenticationError
from paybridge.services.settlement_service import handle_webhook_event
from paybridge.services.webhook_service import authenticate_webhook

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api")


@webhooks_bp.route("/payment-webhook", methods=["POST"])
def payment_webhook():
    """Receive and process payment platform webhook events.

    1. Get raw body (the signature covers the exact bytes)
    2. Verify signature, 401 and stop on failure
    3. Relay settlement to the order platform (idempotent via processed_webhooks)
    4. Return 200 to acknowledge receipt, whatever the relay outcome
    """
    payload = request.get_data()

    # --- Verify signature ---
    try:
        authenticate_webhook(request.headers, payload)
    except AuthenticationError as e:
        return jsonify(e.to_dict()), e.status_code

    # --- Process event ---
    try:
        event = json.loads(payload)
    except ValueError:
        logger.warning("Verified webhook body is not valid JSON")
        return jsonify({"received": True, "status": "invalid_payload"}), 200

    if not isinstance(event, dict):
        logger.warning("Verified webhook body is not a JSON object")
        return jsonify({"received": True, "status": "invalid_payload"}), 200

    try:
        message = handle_webhook_event(event, webhook_id=request.headers.get("webhook-id"))
    except Exception as e:
        # Acknowledged regardless; the sender only retries on non-2xx.
        logger.error(f"Webhook processing failed: {e}", exc_info=True)
        message = "error"

    return jsonify({"received": True, "status": message}), 200

"""Checkout blueprint — /api/create-checkout, /api/checkout-status/*

Called by the order platform when a buyer places an order, then polled by
the buyer's browser until the payment link is ready.

Routes:
- POST|GET /api/create-checkout              — create a payment link for an order
- GET      /api/checkout-status/<order_id>   — poll readiness of that link
"""

import logging

from flask import Blueprint, jsonify, request

from paybridge.errors import BridgeError
from paybridge.extensions import limiter
from paybridge.services.checkout_service import (
    checkout_requires_amount,
    create_checkout,
    parse_checkout_request,
    poll_status,
)

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


def _request_fields():
    """Merge query string, form body and JSON body (JSON wins)."""
    fields = request.args.to_dict()
    fields.update(request.form.to_dict())
    if request.is_json:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            fields.update(body)
    return fields


# ──────────────────────────────────────────────
# POST|GET /api/create-checkout
# ──────────────────────────────────────────────

@checkout_bp.route("/create-checkout", methods=["GET", "POST"])
@limiter.limit("30 per minute")
def create():
    """Create a checkout link for an order.

    Required: order_id, user_email, amount (unless CHECKOUT_REQUIRE_AMOUNT is off)
    Optional: user_name, user_phone, offer_id, offer_title, currency

    Returns: { success: true, checkout_url, ... } or { success: false, error }
    """
    try:
        checkout_request = parse_checkout_request(
            _request_fields(), require_amount=checkout_requires_amount()
        )
        result = create_checkout(checkout_request)
    except BridgeError as e:
        logger.warning(f"Create checkout rejected ({e.status_code}): {e.message}")
        return jsonify(e.to_dict()), e.status_code

    return jsonify({
        "success": True,
        "order_id": result.order_id,
        "checkout_url": result.checkout_url,
        "plan_id": result.plan_id,
        "plan_name": result.plan_name,
        "amount": float(result.amount),
    }), 200


# ──────────────────────────────────────────────
# GET /api/checkout-status/<order_id> (polled)
# ──────────────────────────────────────────────

@checkout_bp.route("/checkout-status/<order_id>")
@limiter.limit("300 per minute")
def status(order_id):
    """Polling endpoint. Read-only apart from evicting an expired session."""
    payload, status_code = poll_status(order_id)
    return jsonify(payload), status_code

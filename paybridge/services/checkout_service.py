"""Checkout service — creates payment links and reports their readiness.

Responsible for:
- Validating inbound creation requests (field aliases, required fields)
- Selecting the plan for the order amount
- Tracking the attempt in the session store (pending -> ready, or removed)
- Calling the payment platform exactly once per creation
- Translating session state into the polling response
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from flask import current_app

from paybridge.errors import BridgeError, UpstreamError, ValidationError
from paybridge.models.checkout_session import SessionStatus
from paybridge.services.payment_client import get_payment_client
from paybridge.services.plan_selector import get_plan_table, parse_amount, select_plan
from paybridge.services.session_store import get_session_store

logger = logging.getLogger(__name__)

# Canonical field -> accepted spellings, first match wins.
FIELD_ALIASES = {
    "order_id": ("order_id", "orderId", "deal_number"),
    "user_email": ("user_email", "userEmail", "email"),
    "user_name": ("user_name", "userName", "name"),
    "user_phone": ("user_phone", "userPhone", "phone"),
    "amount": ("amount", "deal_cost"),
    "offer_id": ("offer_id", "offerId"),
    "offer_title": ("offer_title", "offerTitle"),
    "currency": ("currency",),
}

REQUIRED_FIELDS = ("order_id", "user_email")


@dataclass(frozen=True)
class CheckoutRequest:
    order_id: str
    user_email: str
    amount: Decimal
    user_name: Optional[str] = None
    user_phone: Optional[str] = None
    offer_id: Optional[str] = None
    offer_title: Optional[str] = None
    currency: Optional[str] = None

    def metadata(self, plan):
        """Metadata echoed back by the payment platform in its webhooks."""
        meta = {
            "order_id": self.order_id,
            "user_email": self.user_email,
            "user_name": self.user_name,
            "user_phone": self.user_phone,
            "offer_id": self.offer_id,
            "offer_title": self.offer_title,
            "currency": self.currency,
            "plan_name": plan.plan_name,
            "source": "order_platform",
        }
        return {key: value for key, value in meta.items() if value}


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    checkout_url: str
    plan_id: str
    plan_name: str
    amount: Decimal


def _pick(data, names):
    for name in names:
        value = data.get(name)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def parse_checkout_request(data, require_amount=True):
    """Normalize raw request fields into a CheckoutRequest.

    Raises ValidationError naming every missing required field. An amount
    that is present but unparseable is treated as 0, not rejected.
    """
    fields = {name: _pick(data, aliases) for name, aliases in FIELD_ALIASES.items()}

    required = list(REQUIRED_FIELDS)
    if require_amount:
        required.append("amount")
    missing = [name for name in required if not fields[name]]
    if missing:
        raise ValidationError(
            f"Missing required parameters: {', '.join(missing)}", missing=missing
        )

    return CheckoutRequest(
        order_id=fields["order_id"],
        user_email=fields["user_email"],
        amount=parse_amount(fields["amount"]),
        user_name=fields["user_name"],
        user_phone=fields["user_phone"],
        offer_id=fields["offer_id"],
        offer_title=fields["offer_title"],
        currency=fields["currency"],
    )


def create_checkout(request, store=None, payment_client=None, plan_table=None):
    """Obtain a checkout link for `request` and record it for polling.

    Returns a CheckoutResult.
    Raises UpstreamError if the payment platform call fails (the pending
    session is removed first), or BridgeError(409) if a newer request for
    the same order replaced this attempt while it was in flight.
    """
    store = store or get_session_store()
    payment_client = payment_client or get_payment_client()
    plan_table = plan_table or get_plan_table()

    plan = select_plan(request.amount, plan_table)
    logger.info(
        f"Creating checkout for order {request.order_id}: "
        f"amount={request.amount} plan={plan.plan_id} ({plan.plan_name})"
    )

    handle = store.create(
        request.order_id,
        request.amount,
        plan.plan_id,
        plan_name=plan.plan_name,
        offer_title=request.offer_title,
    )

    try:
        link = payment_client.create_checkout_session(
            plan.plan_id, request.amount, metadata=request.metadata(plan)
        )
    except Exception as e:
        store.mark_failed(handle)
        logger.error(f"Checkout creation failed for order {request.order_id}: {e}")
        if isinstance(e, UpstreamError):
            raise
        raise UpstreamError(f"Payment platform error: {e}", platform="payment") from e

    if not store.mark_ready(handle, link.checkout_url):
        logger.warning(
            f"Discarding checkout link for order {request.order_id} "
            f"(attempt {handle.attempt_id} was superseded or expired)"
        )
        raise BridgeError("Checkout was superseded by a newer request", status_code=409)

    logger.info(f"Checkout ready for order {request.order_id} (session {link.session_id})")
    return CheckoutResult(
        order_id=request.order_id,
        checkout_url=link.checkout_url,
        plan_id=plan.plan_id,
        plan_name=plan.plan_name,
        amount=request.amount,
    )


def poll_status(order_id, store=None):
    """Read-only view of a session for a polling client.

    Returns (payload, http_status). Distinguishes "never created" from
    "existed and timed out".
    """
    store = store or get_session_store()
    session, expired = store.lookup(order_id)

    if session is None:
        return {
            "success": True,
            "ready": False,
            "message": "Waiting for order confirmation...",
        }, 200

    if expired:
        logger.info(f"Checkout expired for order {order_id}")
        return {
            "success": False,
            "ready": False,
            "expired": True,
            "error": "expired",
            "message": "Checkout expired",
        }, 410

    payload = {
        "success": True,
        "order_id": session.order_id,
        "amount": float(session.amount),
        "offer_title": session.offer_title,
        "plan_name": session.plan_name,
    }
    if session.status is SessionStatus.READY:
        payload.update(ready=True, checkout_url=session.checkout_url)
    else:
        payload.update(ready=False, message="Preparing payment link...")
    return payload, 200


def checkout_requires_amount():
    return current_app.config.get("CHECKOUT_REQUIRE_AMOUNT", True)

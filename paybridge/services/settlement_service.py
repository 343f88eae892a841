"""Settlement service — relays verified payment events to the order platform.

Responsible for:
- Dispatching verified webhook events by type
- Extracting the order id / buyer email from checkout metadata
- Converting the settled amount from minor to major units
- Forwarding "paid" to the order platform
- Idempotency via the processed_webhooks table

Relay failures are logged, never raised to the webhook sender. Unrelayed
settlements are left out of processed_webhooks so a redelivery retries them.
"""

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError

from paybridge.errors import RelayError
from paybridge.extensions import db
from paybridge.models.processed_webhook import ProcessedWebhook
from paybridge.services.order_client import PaymentInfo, get_order_client

logger = logging.getLogger(__name__)

SETTLEMENT_EVENT_TYPES = ("payment.succeeded", "payment_succeeded")

# Metadata spellings echoed back by the payment platform, first match wins.
ORDER_ID_KEYS = ("order_id", "orderId", "deal_number")
USER_EMAIL_KEYS = ("user_email", "userEmail", "email")


def metadata_value(metadata, keys):
    for key in keys:
        value = metadata.get(key)
        if value:
            return str(value).strip() or None
    return None


def minor_to_major(value):
    """99700 -> Decimal("997.00"). Returns None if `value` is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return (Decimal(str(value)) / 100).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def event_type_of(event):
    return event.get("type") or event.get("action")


def relay_settlement(order_id, user_email, payment_info, client=None):
    """Forward a settled payment to the order platform.

    Raises RelayError if the order platform is not configured or the call
    fails.
    """
    client = client or get_order_client()
    if not client.is_configured:
        raise RelayError("Order platform credentials are not configured", platform="order")
    try:
        return client.update_order_status(order_id, user_email, "paid", payment_info=payment_info)
    except Exception as e:
        raise RelayError(str(e), platform="order") from e


def _handle_payment_succeeded(event, client=None):
    """Handle payment.succeeded. Returns a status message."""
    data = event.get("data") or {}
    metadata = data.get("metadata") or {}
    order_id = metadata_value(metadata, ORDER_ID_KEYS)
    user_email = metadata_value(metadata, USER_EMAIL_KEYS)
    payment_id = data.get("id")

    if not order_id or not user_email:
        logger.warning(
            f"payment.succeeded without order_id/user_email in metadata (payment {payment_id})"
        )
        return "skipped"

    amount = minor_to_major(data.get("amount"))
    logger.info(f"Payment succeeded for order {order_id}: payment={payment_id} amount={amount}")

    try:
        relay_settlement(
            order_id,
            user_email,
            PaymentInfo(payment_id=payment_id, amount=amount),
            client=client,
        )
    except RelayError as e:
        # Reconciliation line: the payment is settled but the order is not.
        logger.error(
            f"settlement relay failed order_id={order_id} user_email={user_email} "
            f"payment_id={payment_id} amount={amount} error={e.message}"
        )
        return "relay_failed"

    return "processed"


EVENT_HANDLERS = {event_type: _handle_payment_succeeded for event_type in SETTLEMENT_EVENT_TYPES}


def handle_webhook_event(event, webhook_id=None, client=None):
    """Process a verified webhook event.

    Returns a status message: "processed", "already_processed", "ignored",
    "skipped" or "relay_failed". Never raises for relay failures.
    """
    event_type = event_type_of(event)

    if webhook_id and db.session.get(ProcessedWebhook, webhook_id) is not None:
        logger.info(f"Duplicate webhook {webhook_id}, skipping")
        return "already_processed"

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Ignoring webhook event type {event_type!r}")
        return "ignored"

    message = handler(event, client=client)

    if message == "processed" and webhook_id:
        metadata = (event.get("data") or {}).get("metadata") or {}
        db.session.add(ProcessedWebhook(
            webhook_id=webhook_id,
            event_type=event_type,
            order_id=metadata_value(metadata, ORDER_ID_KEYS),
        ))
        try:
            db.session.commit()
        except IntegrityError:
            # A concurrent delivery of the same webhook-id recorded it first.
            db.session.rollback()
            logger.info(f"Webhook {webhook_id} was recorded by a concurrent delivery")
            return "already_processed"

    return message

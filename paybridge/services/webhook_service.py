"""Webhook signature verification.

Signed content is "{webhook-id}.{webhook-timestamp}.{raw body}", hashed with
HMAC-SHA256 under the base64-decoded shared secret and base64-encoded. The
`webhook-signature` header may carry several candidates separated by spaces
or commas, each optionally tagged with a version ("v1=<sig>" or "v1,<sig>").
Any matching candidate authenticates the request.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import re
import time

from flask import current_app

from paybridge.errors import AuthenticationError

logger = logging.getLogger(__name__)

SECRET_PREFIX = "whsec_"
_VERSION_TAG = re.compile(r"^v\d+$")
_VERSION_PREFIX = re.compile(r"^v\d+=")


def decode_secret(secret):
    """Return the raw HMAC key for a base64 secret (optional whsec_ prefix)."""
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    return base64.b64decode(secret, validate=True)


def compute_signature(webhook_id, timestamp, raw_body, secret):
    """Base64 HMAC-SHA256 of "{id}.{timestamp}.{body}" under `secret`."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    signed_content = f"{webhook_id}.{timestamp}.".encode("utf-8") + raw_body
    digest = hmac.new(decode_secret(secret), signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def signature_candidates(signature_header):
    """Split a signature header into bare base64 candidates."""
    candidates = []
    for token in re.split(r"[\s,]+", signature_header or ""):
        if not token or _VERSION_TAG.match(token):
            continue
        candidates.append(_VERSION_PREFIX.sub("", token, count=1))
    return candidates


def verify_signature(signature_header, timestamp, webhook_id, raw_body, secret):
    """Return True if any candidate in `signature_header` matches.

    Fails closed: a missing header, id, timestamp or secret, or a secret that
    is not valid base64, returns False.
    """
    if not (signature_header and timestamp and webhook_id and secret):
        return False
    try:
        expected = compute_signature(webhook_id, timestamp, raw_body, secret)
    except (binascii.Error, ValueError):
        logger.error("Webhook secret is not valid base64")
        return False
    return any(
        hmac.compare_digest(candidate.encode("ascii", "ignore"), expected.encode("ascii"))
        for candidate in signature_candidates(signature_header)
    )


def _timestamp_is_fresh(timestamp, tolerance_seconds, now=None):
    if not tolerance_seconds:
        return True
    try:
        sent_at = int(timestamp)
    except (TypeError, ValueError):
        return False
    now = time.time() if now is None else now
    return abs(now - sent_at) <= tolerance_seconds


def authenticate_webhook(headers, raw_body, config=None, now=None):
    """Apply the configured verification policy to an inbound webhook.

    Raises AuthenticationError if the request must be rejected. With no
    secret configured the request is rejected unless WEBHOOK_ALLOW_UNVERIFIED
    is set, in which case it is accepted with a warning.
    """
    config = config if config is not None else current_app.config
    secret = config.get("WEBHOOK_SECRET")

    if not secret:
        if config.get("WEBHOOK_ALLOW_UNVERIFIED"):
            logger.warning("WEBHOOK_SECRET not set, accepting unverified webhook")
            return
        logger.error("WEBHOOK_SECRET not set, rejecting webhook")
        raise AuthenticationError("Webhook verification is not configured")

    signature = headers.get("webhook-signature")
    timestamp = headers.get("webhook-timestamp")
    webhook_id = headers.get("webhook-id")

    if not verify_signature(signature, timestamp, webhook_id, raw_body, secret):
        logger.warning(f"Webhook signature verification failed (id={webhook_id})")
        raise AuthenticationError("Invalid signature")

    if not _timestamp_is_fresh(timestamp, config.get("WEBHOOK_TOLERANCE_SECONDS", 0), now):
        logger.warning(f"Webhook timestamp outside tolerance (id={webhook_id}, ts={timestamp})")
        raise AuthenticationError("Stale webhook timestamp")

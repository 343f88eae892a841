"""Payment platform client — hosted checkout sessions.

One call matters to the bridge: create a checkout session for a plan and get
back the URL the buyer is sent to. The response shape has varied across API
versions, so the URL is read from the first present field in
CHECKOUT_URL_FIELDS. A response without any of them is an error.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests
from flask import current_app

from paybridge.errors import UpstreamError

logger = logging.getLogger(__name__)

PLATFORM = "payment"

# Accepted names for the hosted checkout link, in priority order.
CHECKOUT_URL_FIELDS = ("checkout_url", "purchase_url", "url")
SESSION_ID_FIELDS = ("id", "checkout_session_id", "checkout_config_id")


@dataclass(frozen=True)
class CheckoutLink:
    checkout_url: str
    session_id: Optional[str] = None


def first_present(data, fields):
    """Return the first non-empty value among `fields` in `data`, else None."""
    for name in fields:
        value = data.get(name)
        if value:
            return value
    return None


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        return body.get("message") or error or f"HTTP {response.status_code}"
    return f"HTTP {response.status_code}"


class PaymentPlatformClient:
    def __init__(self, api_key, base_url, timeout=15, redirect_url=None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.redirect_url = redirect_url

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config.get("PAYMENT_API_KEY"),
            base_url=config["PAYMENT_API_BASE_URL"],
            timeout=config.get("HTTP_TIMEOUT_SECONDS", 15),
            redirect_url=config.get("SUCCESS_REDIRECT_URL"),
        )

    def _headers(self):
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def create_checkout_session(self, plan_id, amount, metadata=None):
        """Create a hosted checkout session for `plan_id`.

        Returns a CheckoutLink.
        Raises UpstreamError on transport errors, non-2xx responses, or a
        response without a checkout URL.
        """
        if not self.api_key:
            raise UpstreamError("Payment platform API key is not configured", platform=PLATFORM)

        payload = {
            "plan_id": plan_id,
            "metadata": {**(metadata or {}), "amount": str(amount)},
        }
        if self.redirect_url:
            payload["redirect_url"] = self.redirect_url

        try:
            resp = requests.post(
                f"{self.base_url}/checkout_sessions",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Payment platform request failed: {e}")
            raise UpstreamError(f"Payment platform unreachable: {e}", platform=PLATFORM) from e

        if not resp.ok:
            message = _error_message(resp)
            logger.error(f"Payment platform returned {resp.status_code}: {message}")
            raise UpstreamError(f"Payment platform error: {message}", platform=PLATFORM)

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("Payment platform returned invalid JSON", platform=PLATFORM) from e
        if not isinstance(data, dict):
            raise UpstreamError("Payment platform returned an unexpected response", platform=PLATFORM)

        checkout_url = first_present(data, CHECKOUT_URL_FIELDS)
        if not checkout_url:
            logger.error(f"Payment platform response has no checkout URL: keys={sorted(data)}")
            raise UpstreamError("Payment platform response did not include a checkout URL", platform=PLATFORM)

        return CheckoutLink(
            checkout_url=checkout_url,
            session_id=first_present(data, SESSION_ID_FIELDS),
        )


def get_payment_client():
    return PaymentPlatformClient.from_config(current_app.config)

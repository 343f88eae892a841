"""Order platform client — deal status updates.

The order platform takes a base64-encoded JSON document in the `params`
query/form field, alongside `action=add` and the account API key:

    POST https://{account}.getcourse.ru/pl/api/deals?action=add&key=...&params=...

Credentials are optional at the application level. When they are missing,
`is_configured` is False and callers skip the update.
"""

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import requests
from flask import current_app

from paybridge.errors import UpstreamError

logger = logging.getLogger(__name__)

PLATFORM = "order"

# Internal status -> the order platform's deal_status vocabulary.
DEAL_STATUSES = {
    "paid": "payed",
    "pending": "in_work",
    "cancelled": "cancelled",
}


@dataclass(frozen=True)
class PaymentInfo:
    payment_id: Optional[str]
    amount: Optional[Decimal]  # major units
    payment_type: str = "CARD"
    payment_status: str = "accepted"
    paid_at: Optional[datetime] = None


def encode_params(document):
    """Base64-encode a JSON document the way the order platform expects."""
    raw = json.dumps(document, ensure_ascii=False).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def build_deal_document(order_id, user_email, status, payment_info=None):
    document = {
        "user": {"email": user_email},
        "deal": {
            "deal_number": order_id,
            "deal_status": DEAL_STATUSES.get(status, status),
        },
    }
    if payment_info is not None:
        paid_at = payment_info.paid_at or datetime.now(timezone.utc)
        document["payment"] = {
            "payment_id": payment_info.payment_id,
            "payment_amount": str(payment_info.amount) if payment_info.amount is not None else None,
            "payment_status": payment_info.payment_status,
            "payment_type": payment_info.payment_type,
            "payment_date": paid_at.isoformat(),
        }
    return document


class OrderPlatformClient:
    def __init__(self, api_key, account_name, base_url_template, timeout=15):
        self.api_key = api_key
        self.account_name = account_name
        self.base_url_template = base_url_template
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config.get("ORDER_API_KEY"),
            account_name=config.get("ORDER_ACCOUNT_NAME"),
            base_url_template=config["ORDER_API_BASE_URL"],
            timeout=config.get("HTTP_TIMEOUT_SECONDS", 15),
        )

    @property
    def is_configured(self):
        return bool(self.api_key and self.account_name)

    @property
    def base_url(self):
        return self.base_url_template.format(account=self.account_name).rstrip("/")

    def update_order_status(self, order_id, user_email, status, payment_info=None):
        """Create or update the deal for `order_id`.

        Returns the decoded response body.
        Raises UpstreamError on transport errors, non-2xx responses, or a
        body that reports failure.
        """
        if not self.is_configured:
            raise UpstreamError("Order platform credentials are not configured", platform=PLATFORM)

        document = build_deal_document(order_id, user_email, status, payment_info)
        params = {
            "action": "add",
            "key": self.api_key,
            "params": encode_params(document),
        }

        try:
            resp = requests.post(f"{self.base_url}/deals", params=params, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as e:
            raise UpstreamError(f"Order platform request failed: {e}", platform=PLATFORM) from e
        except ValueError as e:
            raise UpstreamError("Order platform returned invalid JSON", platform=PLATFORM) from e

        # Failures come back as HTTP 200 with success=false, either at the
        # top level or inside "result".
        result = body.get("result") if isinstance(body, dict) else None
        for section in (body, result):
            if isinstance(section, dict) and section.get("success") is False:
                message = section.get("error_message") or "Unknown error"
                raise UpstreamError(f"Order platform rejected update: {message}", platform=PLATFORM)

        logger.info(f"Order platform updated deal {order_id} -> {status}")
        return body


def get_order_client():
    return OrderPlatformClient.from_config(current_app.config)

# Models package: import all models here so create_all() can discover them.

from paybridge.models.checkout_session import (  # noqa: F401
    CheckoutSession,
    CheckoutSessionRecord,
    SessionHandle,
    SessionStatus,
)
from paybridge.models.processed_webhook import ProcessedWebhook  # noqa: F401

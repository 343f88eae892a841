"""Processed webhook model (idempotency table).

A webhook is recorded by its `webhook-id` header once its settlement has been
relayed. A redelivery with the same id is acknowledged without relaying again.
"""

from paybridge.extensions import db


class ProcessedWebhook(db.Model):
    __tablename__ = "processed_webhooks"

    webhook_id = db.Column(db.String(255), primary_key=True)  # e.g. "msg_2abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "payment.succeeded"
    order_id = db.Column(db.String(255))
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<ProcessedWebhook {self.webhook_id} ({self.event_type})>"

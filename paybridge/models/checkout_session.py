"""Checkout session models.

- CheckoutSession: one attempt to obtain a payment link for one order.
  Returned by the stores as an immutable snapshot.
- SessionHandle: identifies a specific attempt (order_id + attempt_id) so a
  replaced attempt can no longer finalize or discard the live one.
- CheckoutSessionRecord: SQL row backing SqlSessionStore.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from paybridge.extensions import db


class SessionStatus(str, enum.Enum):
    PENDING = "pending"
    READY = "ready"
    EXPIRED = "expired"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionHandle:
    order_id: str
    attempt_id: str


@dataclass(frozen=True)
class CheckoutSession:
    order_id: str
    attempt_id: str
    status: SessionStatus
    amount: Decimal
    plan_id: str
    plan_name: str
    created_at: datetime
    expires_at: datetime
    checkout_url: Optional[str] = None
    offer_title: Optional[str] = None

    @property
    def handle(self):
        return SessionHandle(self.order_id, self.attempt_id)

    @property
    def is_ready(self):
        return self.status is SessionStatus.READY and bool(self.checkout_url)

    def is_expired(self, now):
        """A session lives for [created_at, expires_at)."""
        return now >= self.expires_at


def _as_utc(value):
    # SQLite hands back naive datetimes even for timezone=True columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CheckoutSessionRecord(db.Model):
    __tablename__ = "checkout_sessions"

    order_id = db.Column(db.String(255), primary_key=True)
    attempt_id = db.Column(db.String(36), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default=SessionStatus.PENDING.value
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    plan_id = db.Column(db.String(255), nullable=False)
    plan_name = db.Column(db.String(255))
    offer_title = db.Column(db.String(500))
    checkout_url = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_session(self):
        return CheckoutSession(
            order_id=self.order_id,
            attempt_id=self.attempt_id,
            status=SessionStatus(self.status),
            amount=Decimal(self.amount),
            plan_id=self.plan_id,
            plan_name=self.plan_name or "",
            created_at=_as_utc(self.created_at),
            expires_at=_as_utc(self.expires_at),
            checkout_url=self.checkout_url,
            offer_title=self.offer_title,
        )

    def __repr__(self):
        return f"<CheckoutSessionRecord {self.order_id} ({self.status})>"

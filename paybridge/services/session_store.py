"""Session store — keyed, expiring record of checkout attempts.

Contract shared by every backend:
- create(order_id, ...) replaces any live session for the order (last
  create wins) and returns a SessionHandle for the new attempt.
- mark_ready(handle, url) finalizes a Pending attempt. Returns False when the
  attempt was replaced, removed or has expired; the caller must then discard
  the checkout link it holds.
- mark_failed(handle) removes the attempt so a new one can start at once.
- lookup(order_id) evicts an expired entry on read and reports that it did.
- sweep(now) evicts every expired entry.

A session lives for [created_at, created_at + ttl). Reads and sweeps use the
same boundary: an entry is expired once now >= expires_at.

Backends:
- InMemorySessionStore: process-local dict with striped per-key locks.
- SqlSessionStore: Flask-SQLAlchemy table; row-level conditional updates.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from paybridge.extensions import db
from paybridge.models.checkout_session import (
    CheckoutSession,
    CheckoutSessionRecord,
    SessionHandle,
    SessionStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=20)


def utcnow():
    return datetime.now(timezone.utc)


class SessionStore(ABC):
    """Interface the orchestrator and poller depend on."""

    def __init__(self, ttl=DEFAULT_TTL, clock=None):
        self.ttl = ttl
        self.clock = clock or utcnow

    @abstractmethod
    def create(self, order_id, amount, plan_id, plan_name="", offer_title=None):
        ...

    @abstractmethod
    def mark_ready(self, handle, checkout_url):
        ...

    @abstractmethod
    def mark_failed(self, handle):
        ...

    @abstractmethod
    def lookup(self, order_id):
        """Return (session, expired).

        (None, False): no such session.
        (session, True): it existed but had expired; it is now removed and
        the returned snapshot carries status EXPIRED.
        (session, False): live session.
        """

    @abstractmethod
    def sweep(self, now=None):
        """Remove all expired sessions. Returns how many were removed."""

    @abstractmethod
    def count(self):
        """Number of stored sessions (live or not yet swept)."""

    def get(self, order_id):
        session, expired = self.lookup(order_id)
        if expired:
            return None
        return session

    def _new_session(self, order_id, amount, plan_id, plan_name, offer_title):
        now = self.clock()
        return CheckoutSession(
            order_id=order_id,
            attempt_id=str(uuid.uuid4()),
            status=SessionStatus.PENDING,
            amount=Decimal(amount),
            plan_id=plan_id,
            plan_name=plan_name or "",
            created_at=now,
            expires_at=now + self.ttl,
            offer_title=offer_title,
        )


# ──────────────────────────────────────────────
# In-memory backend
# ──────────────────────────────────────────────

class InMemorySessionStore(SessionStore):
    """Process-local store.

    Mutations for one order_id serialize on that key's lock stripe. Keys on
    different stripes never contend, and no lock spans the whole store.
    """

    LOCK_STRIPES = 64

    def __init__(self, ttl=DEFAULT_TTL, clock=None):
        super().__init__(ttl=ttl, clock=clock)
        self._sessions = {}
        self._locks = [threading.Lock() for _ in range(self.LOCK_STRIPES)]

    def _lock_for(self, order_id):
        return self._locks[hash(order_id) % self.LOCK_STRIPES]

    def create(self, order_id, amount, plan_id, plan_name="", offer_title=None):
        session = self._new_session(order_id, amount, plan_id, plan_name, offer_title)
        with self._lock_for(order_id):
            replaced = self._sessions.get(order_id)
            self._sessions[order_id] = session
        if replaced is not None:
            logger.info(
                f"Replaced checkout session for order {order_id} "
                f"(attempt {replaced.attempt_id} -> {session.attempt_id})"
            )
        return session.handle

    def mark_ready(self, handle, checkout_url):
        if not checkout_url:
            raise ValueError("checkout_url is required to mark a session ready")
        with self._lock_for(handle.order_id):
            current = self._sessions.get(handle.order_id)
            if current is None or current.attempt_id != handle.attempt_id:
                return False
            if current.is_expired(self.clock()):
                del self._sessions[handle.order_id]
                return False
            if current.status is not SessionStatus.PENDING:
                return False
            self._sessions[handle.order_id] = replace(
                current, status=SessionStatus.READY, checkout_url=checkout_url
            )
        return True

    def mark_failed(self, handle):
        with self._lock_for(handle.order_id):
            current = self._sessions.get(handle.order_id)
            if current is None or current.attempt_id != handle.attempt_id:
                return False
            del self._sessions[handle.order_id]
        return True

    def lookup(self, order_id):
        with self._lock_for(order_id):
            current = self._sessions.get(order_id)
            if current is None:
                return None, False
            if current.is_expired(self.clock()):
                del self._sessions[order_id]
                return replace(current, status=SessionStatus.EXPIRED), True
        return current, False

    def sweep(self, now=None):
        now = now or self.clock()
        removed = 0
        # Snapshot first; each candidate is re-checked under its own lock so
        # a session re-created since the snapshot is left alone.
        for order_id, snapshot in list(self._sessions.items()):
            if not snapshot.is_expired(now):
                continue
            with self._lock_for(order_id):
                current = self._sessions.get(order_id)
                if current is not None and current.is_expired(now):
                    del self._sessions[order_id]
                    removed += 1
        if removed:
            logger.info(f"Cleaned up {removed} expired checkout sessions")
        return removed

    def count(self):
        return len(self._sessions)


# ──────────────────────────────────────────────
# SQL backend
# ──────────────────────────────────────────────

class SqlSessionStore(SessionStore):
    """Durable store on the checkout_sessions table.

    Every mutation is a single conditional statement on the order's row, so
    concurrent requests for the same order are ordered by the database.
    Must be used inside an app context.
    """

    def create(self, order_id, amount, plan_id, plan_name="", offer_title=None):
        session = self._new_session(order_id, amount, plan_id, plan_name, offer_title)
        values = {
            "attempt_id": session.attempt_id,
            "status": session.status.value,
            "amount": session.amount,
            "plan_id": session.plan_id,
            "plan_name": session.plan_name,
            "offer_title": session.offer_title,
            "checkout_url": None,
            "created_at": session.created_at,
            "expires_at": session.expires_at,
        }
        stmt = (
            update(CheckoutSessionRecord)
            .where(CheckoutSessionRecord.order_id == order_id)
            .values(**values)
        )
        result = db.session.execute(stmt)
        if result.rowcount == 0:
            db.session.add(CheckoutSessionRecord(order_id=order_id, **values))
            try:
                db.session.commit()
            except IntegrityError:
                # Another request inserted the row first; overwrite it.
                db.session.rollback()
                db.session.execute(stmt)
                db.session.commit()
        else:
            db.session.commit()
        return session.handle

    def mark_ready(self, handle, checkout_url):
        if not checkout_url:
            raise ValueError("checkout_url is required to mark a session ready")
        result = db.session.execute(
            update(CheckoutSessionRecord)
            .where(
                CheckoutSessionRecord.order_id == handle.order_id,
                CheckoutSessionRecord.attempt_id == handle.attempt_id,
                CheckoutSessionRecord.status == SessionStatus.PENDING.value,
                CheckoutSessionRecord.expires_at > self.clock(),
            )
            .values(status=SessionStatus.READY.value, checkout_url=checkout_url)
        )
        db.session.commit()
        return result.rowcount == 1

    def mark_failed(self, handle):
        result = db.session.execute(
            delete(CheckoutSessionRecord).where(
                CheckoutSessionRecord.order_id == handle.order_id,
                CheckoutSessionRecord.attempt_id == handle.attempt_id,
            )
        )
        db.session.commit()
        return result.rowcount == 1

    def lookup(self, order_id):
        record = db.session.get(CheckoutSessionRecord, order_id)
        if record is None:
            return None, False
        session = record.to_session()
        if not session.is_expired(self.clock()):
            return session, False
        db.session.execute(
            delete(CheckoutSessionRecord).where(
                CheckoutSessionRecord.order_id == order_id,
                CheckoutSessionRecord.attempt_id == session.attempt_id,
            )
        )
        db.session.commit()
        return replace(session, status=SessionStatus.EXPIRED), True

    def sweep(self, now=None):
        now = now or self.clock()
        result = db.session.execute(
            delete(CheckoutSessionRecord).where(CheckoutSessionRecord.expires_at <= now)
        )
        db.session.commit()
        if result.rowcount:
            logger.info(f"Cleaned up {result.rowcount} expired checkout sessions")
        return result.rowcount

    def count(self):
        return db.session.scalar(select(func.count()).select_from(CheckoutSessionRecord))


# ──────────────────────────────────────────────
# Wiring
# ──────────────────────────────────────────────

_BACKENDS = {
    "memory": InMemorySessionStore,
    "sql": SqlSessionStore,
}


def build_session_store(config, clock=None):
    """Instantiate the backend named by SESSION_STORE_BACKEND."""
    name = (config.get("SESSION_STORE_BACKEND") or "memory").strip().lower()
    backend = _BACKENDS.get(name)
    if backend is None:
        available = ", ".join(sorted(_BACKENDS))
        raise ValueError(f"Unknown session store backend '{name}'. Available: {available}")
    ttl = timedelta(minutes=config.get("CHECKOUT_SESSION_TTL_MINUTES", 20))
    return backend(ttl=ttl, clock=clock)


def get_session_store():
    return current_app.extensions["session_store"]

"""Shared test fixtures for the paybridge test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake credentials)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- clock: controllable time source for session expiry
- store: fresh in-memory session store wired into the app, driven by `clock`
- sign_webhook: builds valid webhook headers for a raw body
"""

import time
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from paybridge import create_app
from paybridge.extensions import db as _db
from paybridge.services.session_store import InMemorySessionStore
from paybridge.services.webhook_service import compute_signature


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def store(app, clock):
    """Replace the app's session store with a fresh one for each test."""
    original = app.extensions["session_store"]
    fresh = InMemorySessionStore(
        ttl=timedelta(minutes=app.config["CHECKOUT_SESSION_TTL_MINUTES"]),
        clock=clock,
    )
    app.extensions["session_store"] = fresh
    app.extensions.pop("plan_table", None)
    yield fresh
    app.extensions["session_store"] = original
    app.extensions.pop("plan_table", None)


@pytest.fixture
def sign_webhook(app):
    """Return a function building valid webhook headers for a raw body."""

    def _sign(body, webhook_id=None, timestamp=None, secret=None):
        webhook_id = webhook_id or f"msg_{uuid.uuid4().hex[:16]}"
        timestamp = str(timestamp if timestamp is not None else int(time.time()))
        signature = compute_signature(
            webhook_id, timestamp, body, secret or app.config["WEBHOOK_SECRET"]
        )
        return {
            "webhook-id": webhook_id,
            "webhook-timestamp": timestamp,
            "webhook-signature": f"v1,{signature}",
        }

    return _sign

"""Tests for the health endpoint, app-wide behavior and CLI commands.

Covers:
- GET /api/health payload and integration checklist
- Security headers on every response
- JSON 404 / 405 bodies
- Session sweeper (single run, background thread start/stop)
- flask sweep-sessions / check-config
"""

import time
from decimal import Decimal

from paybridge.blueprints.health import config_checklist
from paybridge.services.sweeper import SessionSweeper


class TestHealth:
    """Tests for GET /api/health."""

    def test_health_payload(self, client, store):
        store.create("D1", Decimal("10"), "plan_starter")

        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["status"] == "healthy"
        assert data["service"] == "paybridge"
        assert data["version"]
        assert data["sessions"] == 1
        assert data["uptime"] >= 0
        assert data["checklist"]["webhook_secret"] is True

    def test_checklist_reports_booleans_only(self):
        checklist = config_checklist({
            "PAYMENT_API_KEY": "pay_live_secret",
            "WEBHOOK_SECRET": "",
            "SUCCESS_REDIRECT_URL": "https://shop/ok",
        })
        assert checklist == {
            "payment_api_key": True,
            "payment_default_plan": False,
            "order_api_key": False,
            "order_account": False,
            "webhook_secret": False,
            "redirect_urls": {"success": True, "cancel": False},
        }


class TestAppBehavior:
    """Tests for headers and error handlers."""

    def test_security_headers(self, client):
        resp = client.get("/api/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_unknown_route_is_json_404(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.get_json() == {"success": False, "error": "Not found"}

    def test_wrong_method_is_json_405(self, client):
        resp = client.get("/api/payment-webhook")
        assert resp.status_code == 405
        assert resp.get_json()["success"] is False


class TestSweeper:
    """Tests for the periodic session sweep."""

    def test_run_once_evicts_expired(self, app, store, clock):
        store.create("old", Decimal("10"), "plan_starter")
        clock.advance(minutes=21)
        store.create("new", Decimal("10"), "plan_starter")

        assert app.extensions["session_sweeper"].run_once() == 1
        assert store.count() == 1

    def test_sweeper_not_started_in_tests(self, app):
        assert app.extensions["session_sweeper"]._thread is None

    def test_background_thread_evicts_and_stops(self, app, store, clock):
        store.create("old", Decimal("10"), "plan_starter")
        clock.advance(minutes=20)

        sweeper = SessionSweeper(app, interval_seconds=0.01)
        sweeper.start()
        try:
            assert sweeper._thread.is_alive()
            assert sweeper._thread.daemon
            deadline = time.monotonic() + 5
            while store.count() and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            sweeper.stop()

        assert store.count() == 0
        assert sweeper._thread is None

    def test_sweep_errors_do_not_kill_thread(self, app):
        sweeper = SessionSweeper(app, interval_seconds=0.01)
        calls = []

        def _flaky_run_once():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("database unavailable")
            return 0

        sweeper.run_once = _flaky_run_once
        sweeper.start()
        try:
            deadline = time.monotonic() + 5
            while len(calls) < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            sweeper.stop()

        assert len(calls) >= 2


class TestCli:
    """Tests for custom flask commands."""

    def test_sweep_sessions(self, app, store, clock):
        store.create("D1", Decimal("10"), "plan_starter")
        clock.advance(minutes=20)

        result = app.test_cli_runner().invoke(args=["sweep-sessions"])
        assert result.exit_code == 0
        assert "Removed 1 expired checkout session(s)." in result.output
        assert store.count() == 0

    def test_check_config(self, app):
        result = app.test_cli_runner().invoke(args=["check-config"])
        assert result.exit_code == 0
        assert "payment_api_key: True" in result.output
        assert "Starter [plan_starter_test]" in result.output
        assert "fallback: Standard [plan_default_test]" in result.output

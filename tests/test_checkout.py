"""Tests for the checkout blueprint and checkout service.

Covers:
- Request parsing (required fields, aliases, amount formatting)
- End-to-end create -> poll with a mocked payment platform
- Payment platform failure (500, session removed, retry succeeds)
- Superseded attempts (409, stale link discarded)
- Poll responses: unknown order, pending, ready, expired (410)
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from paybridge.errors import BridgeError, UpstreamError, ValidationError
from paybridge.services.checkout_service import (
    CheckoutRequest,
    create_checkout,
    parse_checkout_request,
    poll_status,
)
from paybridge.services.payment_client import CheckoutLink
from paybridge.services.plan_selector import Plan, PlanTable, build_bands


def _payment_response(data, status_code=200):
    resp = MagicMock()
    resp.ok = 200 <= status_code < 300
    resp.status_code = status_code
    resp.json.return_value = data
    return resp


def _plan_table():
    return PlanTable(
        build_bands([(0, "plan_starter", "Starter"), (500, "plan_standard", "Standard")]),
        Plan("plan_default", "Default"),
    )


class TestParseCheckoutRequest:
    """Tests for inbound field normalization."""

    def test_canonical_fields(self):
        req = parse_checkout_request({
            "order_id": "D100",
            "user_email": "a@b.com",
            "amount": "$997",
            "offer_title": "Course",
        })
        assert req.order_id == "D100"
        assert req.user_email == "a@b.com"
        assert req.amount == Decimal("997.00")
        assert req.offer_title == "Course"

    def test_aliases(self):
        req = parse_checkout_request({
            "deal_number": "D7",
            "email": "x@y.com",
            "deal_cost": "1 500",
            "offerTitle": "Bootcamp",
            "userName": "Ann",
        })
        assert req.order_id == "D7"
        assert req.user_email == "x@y.com"
        assert req.amount == Decimal("1500.00")
        assert req.offer_title == "Bootcamp"
        assert req.user_name == "Ann"

    def test_canonical_name_wins_over_alias(self):
        req = parse_checkout_request({
            "order_id": "D1",
            "orderId": "D2",
            "user_email": "a@b.com",
            "amount": "1",
        })
        assert req.order_id == "D1"

    def test_missing_fields_are_all_named(self):
        with pytest.raises(ValidationError) as exc:
            parse_checkout_request({"amount": "100"})
        assert exc.value.missing == ["order_id", "user_email"]
        assert exc.value.status_code == 400

    def test_blank_values_count_as_missing(self):
        with pytest.raises(ValidationError) as exc:
            parse_checkout_request({"order_id": "  ", "user_email": "a@b.com", "amount": ""})
        assert exc.value.missing == ["order_id", "amount"]

    def test_amount_optional_when_not_required(self):
        req = parse_checkout_request(
            {"order_id": "D1", "user_email": "a@b.com"}, require_amount=False
        )
        assert req.amount == Decimal("0.00")

    def test_unparseable_amount_is_zero(self):
        req = parse_checkout_request(
            {"order_id": "D1", "user_email": "a@b.com", "amount": "free"}
        )
        assert req.amount == Decimal("0.00")

    def test_metadata_drops_empty_values(self):
        req = CheckoutRequest(order_id="D1", user_email="a@b.com", amount=Decimal("10"))
        meta = req.metadata(Plan("plan_x", "X"))
        assert meta == {
            "order_id": "D1",
            "user_email": "a@b.com",
            "plan_name": "X",
            "source": "order_platform",
        }


class TestCreateCheckoutService:
    """Tests for create_checkout with injected collaborators."""

    def _request(self, amount="997"):
        return CheckoutRequest(order_id="D100", user_email="a@b.com", amount=Decimal(amount))

    def test_success_marks_session_ready(self, store):
        payment = MagicMock()
        payment.create_checkout_session.return_value = CheckoutLink("https://pay.example/x", "cs_1")

        result = create_checkout(
            self._request(), store=store, payment_client=payment, plan_table=_plan_table()
        )

        assert result.checkout_url == "https://pay.example/x"
        assert result.plan_id == "plan_standard"
        payment.create_checkout_session.assert_called_once()
        args, kwargs = payment.create_checkout_session.call_args
        assert args == ("plan_standard", Decimal("997.00"))
        assert kwargs["metadata"]["order_id"] == "D100"
        assert store.get("D100").is_ready

    def test_failure_removes_session(self, store):
        payment = MagicMock()
        payment.create_checkout_session.side_effect = UpstreamError("down", platform="payment")

        with pytest.raises(UpstreamError):
            create_checkout(
                self._request(), store=store, payment_client=payment, plan_table=_plan_table()
            )
        assert store.get("D100") is None

    def test_unexpected_exception_is_wrapped(self, store):
        payment = MagicMock()
        payment.create_checkout_session.side_effect = RuntimeError("boom")

        with pytest.raises(UpstreamError) as exc:
            create_checkout(
                self._request(), store=store, payment_client=payment, plan_table=_plan_table()
            )
        assert "boom" in exc.value.message
        assert store.get("D100") is None

    def test_superseded_attempt_returns_409(self, store):
        """A newer create lands while the payment call is in flight -> 409."""
        payment = MagicMock()

        def _newer_request_arrives(*args, **kwargs):
            store.create("D100", Decimal("1500"), "plan_standard", plan_name="Standard")
            return CheckoutLink("https://pay.example/stale")

        payment.create_checkout_session.side_effect = _newer_request_arrives

        with pytest.raises(BridgeError) as exc:
            create_checkout(
                self._request(), store=store, payment_client=payment, plan_table=_plan_table()
            )
        assert exc.value.status_code == 409

        session = store.get("D100")
        assert session.checkout_url is None
        assert session.amount == Decimal("1500.00")


class TestCreateCheckoutRoute:
    """Tests for POST|GET /api/create-checkout."""

    @patch("paybridge.services.payment_client.requests.post")
    def test_create_then_poll_ready(self, mock_post, client):
        """Order D100 at $997 -> Standard plan, poll shows the link."""
        mock_post.return_value = _payment_response({"checkout_url": "https://pay.example/x"})

        resp = client.post("/api/create-checkout", json={
            "order_id": "D100",
            "user_email": "a@b.com",
            "amount": "$997",
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["checkout_url"] == "https://pay.example/x"
        assert data["plan_id"] == "plan_standard_test"
        assert data["amount"] == 997.0

        sent = mock_post.call_args.kwargs
        assert mock_post.call_args.args[0] == "https://payments.test/v2/checkout_sessions"
        assert sent["json"]["plan_id"] == "plan_standard_test"
        assert sent["json"]["metadata"]["order_id"] == "D100"
        assert sent["json"]["metadata"]["amount"] == "997.00"
        assert sent["json"]["redirect_url"] == "https://shop.test/success"
        assert sent["headers"]["Authorization"] == "Bearer pay_test_fake"
        assert sent["timeout"] == 15

        poll = client.get("/api/checkout-status/D100")
        assert poll.status_code == 200
        body = poll.get_json()
        assert body["ready"] is True
        assert body["checkout_url"] == "https://pay.example/x"
        assert body["plan_name"] == "Standard"

    @patch("paybridge.services.payment_client.requests.post")
    def test_get_with_query_string(self, mock_post, client):
        mock_post.return_value = _payment_response({"purchase_url": "https://pay.example/q"})

        resp = client.get(
            "/api/create-checkout?deal_number=D5&email=a@b.com&deal_cost=2500"
        )
        assert resp.status_code == 200
        assert resp.get_json()["plan_id"] == "plan_vip_test"

    @patch("paybridge.services.payment_client.requests.post")
    def test_platform_failure_then_retry(self, mock_post, client):
        """Payment platform down -> 500, poll waits, second create succeeds."""
        mock_post.side_effect = requests.ConnectionError("connection refused")

        resp = client.post("/api/create-checkout", json={
            "order_id": "D200", "user_email": "a@b.com", "amount": "100",
        })
        assert resp.status_code == 500
        assert resp.get_json()["success"] is False

        poll = client.get("/api/checkout-status/D200")
        assert poll.status_code == 200
        assert poll.get_json() == {
            "success": True,
            "ready": False,
            "message": "Waiting for order confirmation...",
        }

        mock_post.side_effect = None
        mock_post.return_value = _payment_response({"url": "https://pay.example/retry"})
        resp = client.post("/api/create-checkout", json={
            "order_id": "D200", "user_email": "a@b.com", "amount": "100",
        })
        assert resp.status_code == 200
        assert client.get("/api/checkout-status/D200").get_json()["ready"] is True

    @patch("paybridge.services.payment_client.requests.post")
    def test_platform_error_status(self, mock_post, client, store):
        mock_post.return_value = _payment_response({"message": "plan not found"}, status_code=404)

        resp = client.post("/api/create-checkout", json={
            "order_id": "D300", "user_email": "a@b.com", "amount": "100",
        })
        assert resp.status_code == 500
        assert "plan not found" in resp.get_json()["error"]
        assert store.count() == 0

    @patch("paybridge.services.payment_client.requests.post")
    def test_missing_params_returns_400(self, mock_post, client):
        resp = client.post("/api/create-checkout", json={"amount": "100"})
        assert resp.status_code == 400
        data = resp.get_json()
        assert data["success"] is False
        assert data["missing"] == ["order_id", "user_email"]
        mock_post.assert_not_called()

    @patch("paybridge.services.payment_client.requests.post")
    def test_amount_optional_when_disabled(self, mock_post, client, app):
        mock_post.return_value = _payment_response({"checkout_url": "https://pay.example/z"})
        app.config["CHECKOUT_REQUIRE_AMOUNT"] = False
        try:
            resp = client.post("/api/create-checkout", json={
                "order_id": "D400", "user_email": "a@b.com",
            })
        finally:
            app.config["CHECKOUT_REQUIRE_AMOUNT"] = True
        assert resp.status_code == 200
        assert resp.get_json()["plan_id"] == "plan_starter_test"


class TestCheckoutStatus:
    """Tests for GET /api/checkout-status/<order_id>."""

    def test_unknown_order_is_waiting(self, client):
        resp = client.get("/api/checkout-status/nope")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["ready"] is False
        assert data["message"] == "Waiting for order confirmation..."

    def test_pending_session(self, client, store):
        store.create("D1", Decimal("10"), "plan_starter", plan_name="Starter", offer_title="Intro")

        data = client.get("/api/checkout-status/D1").get_json()
        assert data["success"] is True
        assert data["ready"] is False
        assert data["message"] == "Preparing payment link..."
        assert data["amount"] == 10.0
        assert data["offer_title"] == "Intro"

    def test_expired_session_returns_410(self, client, store, clock):
        handle = store.create("D1", Decimal("10"), "plan_starter")
        store.mark_ready(handle, "https://pay.example/x")
        clock.advance(minutes=20)

        resp = client.get("/api/checkout-status/D1")
        assert resp.status_code == 410
        data = resp.get_json()
        assert data["expired"] is True
        assert data["ready"] is False
        assert "checkout_url" not in data

        # Evicted: a later poll looks like an order that was never created.
        again = client.get("/api/checkout-status/D1")
        assert again.status_code == 200
        assert again.get_json()["message"] == "Waiting for order confirmation..."

    def test_poll_does_not_modify_live_session(self, store):
        store.create("D1", Decimal("10"), "plan_starter")
        before = store.get("D1")
        poll_status("D1", store=store)
        poll_status("D1", store=store)
        assert store.get("D1") == before

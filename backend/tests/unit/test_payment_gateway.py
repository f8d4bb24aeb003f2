"""
Unit tests for the Razorpay gateway adapter. HTTP is replaced by a fake
aiohttp session; no network access.
"""
import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import aiohttp

from core.exceptions import ExternalServiceException
from services.payments import RazorpayGateway, razorpay_signature, to_paise, from_paise


class FakeResponse:
    def __init__(self, status, payload):
        self.status = status
        self.payload = payload

    async def json(self, content_type=None):
        return self.payload


class FakeRequest:
    def __init__(self, outcome):
        self.outcome = outcome

    async def __aenter__(self):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    async def __aexit__(self, *exc):
        return False


class FakeClientSession:
    """Replays queued outcomes and records each request."""

    outcomes = []
    requests = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def request(self, method, url, auth=None, json=None):
        FakeClientSession.requests.append({"method": method, "url": url, "auth": auth, "json": json})
        return FakeRequest(FakeClientSession.outcomes.pop(0))


@pytest.fixture
def gateway():
    return RazorpayGateway("rzp_test_key", "secret", test_mode=True)


@pytest.fixture
def fake_http(monkeypatch):
    FakeClientSession.outcomes = []
    FakeClientSession.requests = []
    monkeypatch.setattr(aiohttp, "ClientSession", FakeClientSession)
    return FakeClientSession


@pytest.mark.unit
class TestAmounts:

    @pytest.mark.parametrize("amount,paise", [
        (Decimal("1230.00"), 123000),
        (Decimal("0.5"), 50),
        (Decimal("99.995"), 10000),
        ("15", 1500),
    ])
    def test_to_paise(self, amount, paise):
        assert to_paise(amount) == paise

    def test_from_paise(self):
        assert from_paise(123050) == Decimal("1230.50")
        assert from_paise(None) == Decimal("0.00")


@pytest.mark.unit
class TestSignatureVerification:

    def test_valid_signature(self, gateway):
        signature = razorpay_signature("secret", "order_abc", "pay_xyz")
        assert gateway.verify_payment("pay_xyz", "order_abc", signature) is True

    def test_signature_over_swapped_ids_is_rejected(self, gateway):
        signature = razorpay_signature("secret", "pay_xyz", "order_abc")
        assert gateway.verify_payment("pay_xyz", "order_abc", signature) is False

    def test_signature_with_other_secret_is_rejected(self, gateway):
        signature = razorpay_signature("not-the-secret", "order_abc", "pay_xyz")
        assert gateway.verify_payment("pay_xyz", "order_abc", signature) is False

    @pytest.mark.parametrize("payment_id,order_id,signature", [
        ("", "order_abc", "sig"),
        ("pay_xyz", "", "sig"),
        ("pay_xyz", "order_abc", ""),
    ])
    def test_missing_parts_are_rejected(self, gateway, payment_id, order_id, signature):
        assert gateway.verify_payment(payment_id, order_id, signature) is False

    def test_comparison_is_constant_time(self, gateway):
        with patch("services.payments.hmac.compare_digest", return_value=True) as compare:
            assert gateway.verify_payment("pay_xyz", "order_abc", "anything")
        compare.assert_called_once()


@pytest.mark.unit
class TestGatewayCalls:

    def test_credentials_required(self):
        with pytest.raises(ExternalServiceException) as exc:
            RazorpayGateway("", "secret")
        assert exc.value.service == "razorpay"
        assert exc.value.status_code == 502

    async def test_create_order_converts_to_paise(self, gateway, fake_http):
        fake_http.outcomes.append(FakeResponse(200, {
            "id": "order_abc123", "amount": 123000, "currency": "INR",
            "status": "created", "receipt": "rcpt_1",
        }))

        order = await gateway.create_order(Decimal("1230"), receipt="rcpt_1", notes={"user_id": "user-1"})

        assert order.id == "order_abc123"
        assert order.amount == Decimal("1230.00")
        sent = fake_http.requests[0]
        assert (sent["method"], sent["url"]) == ("POST", "https://api.razorpay.com/v1/orders")
        assert sent["json"] == {"amount": 123000, "currency": "INR", "receipt": "rcpt_1",
                                "notes": {"user_id": "user-1"}}
        assert sent["auth"] == aiohttp.BasicAuth("rzp_test_key", "secret")

    async def test_create_order_generates_receipt(self, gateway, fake_http):
        fake_http.outcomes.append(FakeResponse(200, {
            "id": "order_abc", "amount": 100, "currency": "INR", "status": "created"}))
        await gateway.create_order(Decimal("1"))
        assert fake_http.requests[0]["json"]["receipt"].startswith("receipt_")

    async def test_api_error_is_external_service_error(self, gateway, fake_http):
        fake_http.outcomes.append(FakeResponse(400, {"error": {"description": "amount too small"}}))
        with pytest.raises(ExternalServiceException) as exc:
            await gateway.create_order(Decimal("0.01"))
        assert "amount too small" in exc.value.message

    @pytest.mark.parametrize("error", [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()])
    async def test_transport_failures(self, gateway, fake_http, error):
        fake_http.outcomes.append(error)
        with pytest.raises(ExternalServiceException):
            await gateway.get_payment_details("pay_xyz")

    async def test_partial_refund(self, gateway):
        with patch.object(gateway, "_request", new=AsyncMock(return_value={
            "id": "rfnd_1", "amount": 50000, "status": "processed", "payment_id": "pay_xyz"})) as request:
            refund = await gateway.refund_payment("pay_xyz", Decimal("500"))

        request.assert_awaited_once_with("POST", "/payments/pay_xyz/refund", {"amount": 50000})
        assert refund.amount == Decimal("500.00")
        assert refund.status == "processed"

    async def test_full_refund_sends_no_amount(self, gateway):
        with patch.object(gateway, "_request", new=AsyncMock(return_value={
                "id": "rfnd_2", "amount": 123000, "status": "processed"})) as request:
            refund = await gateway.refund_payment("pay_xyz")

        request.assert_awaited_once_with("POST", "/payments/pay_xyz/refund", {})
        assert refund.payment_id == "pay_xyz"

    async def test_payment_details(self, gateway):
        with patch.object(gateway, "_request", new=AsyncMock(return_value={
                "id": "pay_xyz", "amount": 123000, "currency": "INR", "status": "captured",
                "method": "upi", "email": "asha@example.com", "contact": 919876543210,
                "created_at": 1736935200, "notes": []})):
            details = await gateway.get_payment_details("pay_xyz")

        assert details.amount == Decimal("1230.00")
        assert details.contact == "919876543210"
        assert details.created_at.year == 2025
        assert details.notes == {}

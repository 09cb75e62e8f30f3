"""
Unit tests for the Paystack and Flutterwave adapters.

Tests the provider API integration including:
- Checkout initialization and minor-unit conversion
- Transaction verification
- Webhook signature verification
- Webhook payload parsing
- Error handling
"""

import hashlib
import hmac
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from adapters.payments import (
    Customer,
    FlutterwaveAdapter,
    PaymentAPIError,
    PaymentAuthError,
    PaymentWebhookError,
    PaystackAdapter,
    generate_reference,
)
from adapters.payments.paystack_adapter import from_minor_units, to_minor_units

pytestmark = pytest.mark.asyncio


def json_response(method: str, url: str, body: dict[str, Any], status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=body, request=httpx.Request(method, url))


@pytest.fixture
def paystack() -> PaystackAdapter:
    return PaystackAdapter(
        secret_key="sk_test_123",
        public_key="pk_test_123",
        base_url="https://api.paystack.test",
    )


@pytest.fixture
def flutterwave() -> FlutterwaveAdapter:
    return FlutterwaveAdapter(
        secret_key="FLWSECK_TEST-123",
        public_key="FLWPUBK_TEST-123",
        secret_hash="hash-123",
        base_url="https://api.flutterwave.test/v3",
    )


@pytest.fixture
def customer() -> Customer:
    return Customer(email="reader@example.com", name="Rita Reader")


class TestReferences:
    async def test_reference_format(self):
        reference = generate_reference("ORD")
        prefix, stamp, suffix = reference.split("-")
        assert prefix == "ORD"
        assert stamp.isdigit()
        assert len(suffix) == 9
        assert suffix.isalnum() and suffix == suffix.upper()

    async def test_references_are_unique(self):
        assert len({generate_reference("EVT") for _ in range(50)}) == 50

    async def test_minor_units(self):
        assert to_minor_units(2500) == 250000
        assert to_minor_units(19.99) == 1999
        assert from_minor_units(250000) == 2500.0
        assert from_minor_units(None) == 0.0


class TestPaystackInitialize:
    async def test_initialize_success(self, paystack: PaystackAdapter, customer: Customer):
        url = "https://api.paystack.test/transaction/initialize"
        body = {
            "status": True,
            "message": "Authorization URL created",
            "data": {
                "authorization_url": "https://checkout.paystack.com/abc",
                "access_code": "abc",
                "reference": "ORD-1-XYZ",
            },
        }
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = json_response("POST", url, body)
            result = await paystack.initialize_payment(
                reference="ORD-1-XYZ",
                amount=2500,
                currency="ngn",
                customer=customer,
                callback_url="https://inkwell.test/payment/callback",
                metadata={"order_id": "o-1"},
            )

        assert result.payment_url == "https://checkout.paystack.com/abc"
        assert result.access_code == "abc"
        assert result.provider == "paystack"

        called_url = mock_post.call_args.args[0]
        sent = mock_post.call_args.kwargs["json"]
        headers = mock_post.call_args.kwargs["headers"]
        assert called_url == url
        assert sent["amount"] == 250000
        assert sent["currency"] == "NGN"
        assert sent["metadata"] == {"order_id": "o-1", "customer_name": "Rita Reader"}
        assert headers["Authorization"] == "Bearer sk_test_123"

    async def test_initialize_rejected(self, paystack: PaystackAdapter, customer: Customer):
        url = "https://api.paystack.test/transaction/initialize"
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = json_response(
                "POST", url, {"status": False, "message": "Invalid amount"}
            )
            with pytest.raises(PaymentAPIError, match="Invalid amount"):
                await paystack.initialize_payment("R", 1, "NGN", customer, "https://cb")

    async def test_http_error_uses_provider_message(
        self, paystack: PaystackAdapter, customer: Customer
    ):
        url = "https://api.paystack.test/transaction/initialize"
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = json_response(
                "POST", url, {"status": False, "message": "Duplicate reference"}, status_code=400
            )
            with pytest.raises(PaymentAPIError, match="Duplicate reference"):
                await paystack.initialize_payment("R", 1, "NGN", customer, "https://cb")

    async def test_unauthorized(self, paystack: PaystackAdapter, customer: Customer):
        url = "https://api.paystack.test/transaction/initialize"
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = json_response(
                "POST", url, {"message": "Invalid key"}, status_code=401
            )
            with pytest.raises(PaymentAuthError):
                await paystack.initialize_payment("R", 1, "NGN", customer, "https://cb")

    async def test_network_error(self, paystack: PaystackAdapter, customer: Customer):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ConnectError("connection refused")
            with pytest.raises(PaymentAPIError):
                await paystack.initialize_payment("R", 1, "NGN", customer, "https://cb")

    async def test_missing_secret_key(self, customer: Customer):
        with patch("adapters.payments.paystack_adapter.settings") as mock_settings:
            mock_settings.paystack_secret_key = None
            mock_settings.paystack_public_key = None
            mock_settings.paystack_base_url = "https://api.paystack.test"
            adapter = PaystackAdapter()

        assert adapter.is_configured is False
        with pytest.raises(PaymentAuthError):
            await adapter.initialize_payment("R", 1, "NGN", customer, "https://cb")


class TestPaystackVerify:
    async def test_verify_success(self, paystack: PaystackAdapter):
        url = "https://api.paystack.test/transaction/verify/ORD-1-XYZ"
        body = {
            "status": True,
            "data": {
                "id": 4099260516,
                "status": "success",
                "reference": "ORD-1-XYZ",
                "amount": 250000,
                "currency": "NGN",
                "paid_at": "2024-08-22T09:15:02.000Z",
                "customer": {"email": "reader@example.com"},
            },
        }
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = json_response("GET", url, body)
            result = await paystack.verify_payment("ORD-1-XYZ")

        assert mock_get.call_args.args[0] == url
        assert result.successful is True
        assert result.amount == 2500.0
        assert result.transaction_id == "4099260516"
        assert result.customer_email == "reader@example.com"
        assert result.paid_at.year == 2024

    async def test_verify_abandoned(self, paystack: PaystackAdapter):
        url = "https://api.paystack.test/transaction/verify/R"
        body = {"status": True, "data": {"status": "abandoned", "reference": "R", "amount": 0}}
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = json_response("GET", url, body)
            result = await paystack.verify_payment("R")

        assert result.successful is False
        assert result.status == "abandoned"
        assert result.paid_at is None


class TestPaystackWebhooks:
    def _sign(self, body: bytes, secret: str = "sk_test_123") -> str:
        return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()

    async def test_valid_signature(self, paystack: PaystackAdapter):
        body = b'{"event":"charge.success"}'
        assert paystack.verify_webhook_signature(body, self._sign(body)) is True

    async def test_invalid_signature(self, paystack: PaystackAdapter):
        body = b'{"event":"charge.success"}'
        assert paystack.verify_webhook_signature(body, self._sign(body, "other")) is False
        assert paystack.verify_webhook_signature(body, None) is False

    async def test_tampered_body(self, paystack: PaystackAdapter):
        signature = self._sign(b'{"amount":100}')
        assert paystack.verify_webhook_signature(b'{"amount":999}', signature) is False

    async def test_parse_charge_success(self, paystack: PaystackAdapter):
        event = paystack.parse_webhook_event({
            "event": "charge.success",
            "data": {"reference": "ORD-1", "status": "success", "amount": 250000, "currency": "NGN"},
        })
        assert event.successful is True
        assert event.reference == "ORD-1"
        assert event.amount == 2500.0
        assert event.currency == "NGN"

    async def test_parse_other_event(self, paystack: PaystackAdapter):
        event = paystack.parse_webhook_event({
            "event": "transfer.success",
            "data": {"reference": "TRF-1", "status": "success"},
        })
        assert event.successful is False
        assert event.amount is None

    async def test_parse_malformed(self, paystack: PaystackAdapter):
        with pytest.raises(PaymentWebhookError):
            paystack.parse_webhook_event({"data": {}})


class TestFlutterwave:
    async def test_initialize_success(self, flutterwave: FlutterwaveAdapter, customer: Customer):
        url = "https://api.flutterwave.test/v3/payments"
        body = {
            "status": "success",
            "message": "Hosted Link",
            "data": {"link": "https://checkout.flutterwave.com/v3/hosted/pay/abc"},
        }
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = json_response("POST", url, body)
            result = await flutterwave.initialize_payment(
                reference="CRS-1-ABC",
                amount=49.999,
                currency="usd",
                customer=customer,
                callback_url="https://inkwell.test/cb",
                description="Enrollment: Poetry",
            )

        assert result.payment_url.endswith("/abc")
        sent = mock_post.call_args.kwargs["json"]
        assert sent["tx_ref"] == "CRS-1-ABC"
        assert sent["amount"] == 50.0
        assert sent["currency"] == "USD"
        assert sent["customer"]["name"] == "Rita Reader"
        assert sent["customizations"]["description"] == "Enrollment: Poetry"

    async def test_initialize_without_link(
        self, flutterwave: FlutterwaveAdapter, customer: Customer
    ):
        url = "https://api.flutterwave.test/v3/payments"
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = json_response(
                "POST", url, {"status": "error", "message": "Invalid currency", "data": None}
            )
            with pytest.raises(PaymentAPIError, match="Invalid currency"):
                await flutterwave.initialize_payment("R", 1, "XYZ", customer, "https://cb")

    async def test_verify_by_reference(self, flutterwave: FlutterwaveAdapter):
        url = "https://api.flutterwave.test/v3/transactions/verify_by_reference?tx_ref=EVT-1"
        body = {
            "status": "success",
            "data": {
                "id": 288200108,
                "tx_ref": "EVT-1",
                "status": "successful",
                "amount": 75.5,
                "currency": "USD",
                "created_at": "2024-08-22T09:15:02.000Z",
                "customer": {"email": "reader@example.com"},
            },
        }
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = json_response("GET", url, body)
            result = await flutterwave.verify_payment("EVT-1")

        assert mock_get.call_args.args[0] == url
        assert result.successful is True
        assert result.amount == 75.5
        assert result.reference == "EVT-1"
        assert result.transaction_id == "288200108"

    async def test_webhook_hash(self, flutterwave: FlutterwaveAdapter):
        assert flutterwave.verify_webhook_signature(b"{}", "hash-123") is True
        assert flutterwave.verify_webhook_signature(b"{}", "wrong") is False
        assert flutterwave.verify_webhook_signature(b"{}", None) is False

    async def test_parse_charge_completed(self, flutterwave: FlutterwaveAdapter):
        event = flutterwave.parse_webhook_event({
            "event": "charge.completed",
            "data": {"tx_ref": "CRS-9", "status": "successful", "amount": 50, "currency": "USD"},
        })
        assert event.successful is True
        assert event.reference == "CRS-9"
        assert event.amount == 50.0
        assert event.currency == "USD"

        failed = flutterwave.parse_webhook_event({
            "event": "charge.completed",
            "data": {"tx_ref": "CRS-9", "status": "failed"},
        })
        assert failed.successful is False
        assert failed.status == "failed"

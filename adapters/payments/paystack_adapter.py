"""
Paystack payment adapter.

Paystack works in the currency's minor unit (kobo for NGN), so amounts are
multiplied by 100 on the way out and divided on the way back.  Webhooks
are signed with HMAC-SHA512 of the raw body using the secret key and
delivered in the ``x-paystack-signature`` header.
"""

import hashlib
import hmac
import logging
from typing import Any

from infrastructure.config.settings import settings

from .base import (
    Customer,
    PaymentAPIError,
    PaymentInitialization,
    PaymentProviderAdapter,
    PaymentVerification,
    PaymentWebhookError,
    WebhookEvent,
    parse_provider_datetime,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def from_minor_units(amount: int | float | None) -> float:
    return round((amount or 0) / 100, 2)


class PaystackAdapter(PaymentProviderAdapter):
    """Paystack transaction API client."""

    name = "paystack"

    def __init__(
        self,
        secret_key: str | None = None,
        public_key: str | None = None,
        base_url: str | None = None,
    ):
        super().__init__(secret_key=secret_key or settings.paystack_secret_key)
        self.public_key = public_key or settings.paystack_public_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")

    async def initialize_payment(
        self,
        reference: str,
        amount: float,
        currency: str,
        customer: Customer,
        callback_url: str,
        metadata: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> PaymentInitialization:
        """
        Start a Paystack transaction.

        Args:
            reference: Unique reference generated by us
            amount: Amount in major units (e.g. naira)
            currency: ISO currency code
            customer: Payer details
            callback_url: Where Paystack redirects after checkout
            metadata: Extra data echoed back on verify and webhooks

        Returns:
            PaymentInitialization with the hosted checkout URL

        Raises:
            PaymentAPIError: If Paystack rejects the request
        """
        body = {
            "email": customer.email,
            "amount": to_minor_units(amount),
            "currency": currency.upper(),
            "reference": reference,
            "callback_url": callback_url,
            "metadata": {**(metadata or {}), "customer_name": customer.name},
        }
        response = await self._make_request("POST", "transaction/initialize", body)

        if not response.get("status"):
            raise PaymentAPIError(response.get("message") or "Paystack initialization failed")

        data = response.get("data") or {}
        logger.info("Initialized Paystack transaction %s", reference)
        return PaymentInitialization(
            provider=self.name,
            reference=data.get("reference", reference),
            payment_url=data.get("authorization_url", ""),
            access_code=data.get("access_code"),
            raw=data,
        )

    async def verify_payment(self, reference: str) -> PaymentVerification:
        """Look up a transaction; successful only when Paystack reports ``success``."""
        response = await self._make_request("GET", f"transaction/verify/{reference}")
        data = response.get("data") or {}
        status = data.get("status", "unknown")

        return PaymentVerification(
            provider=self.name,
            reference=data.get("reference", reference),
            successful=status == "success",
            status=status,
            amount=from_minor_units(data.get("amount")),
            currency=data.get("currency", ""),
            customer_email=(data.get("customer") or {}).get("email"),
            transaction_id=str(data["id"]) if data.get("id") is not None else None,
            paid_at=parse_provider_datetime(data.get("paid_at")),
            raw=data,
        )

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        if not self.secret_key or not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    def parse_webhook_event(self, payload: dict[str, Any]) -> WebhookEvent:
        """Normalise a ``charge.*`` webhook body."""
        try:
            event_name = payload["event"]
            data = payload.get("data") or {}
        except (KeyError, TypeError) as e:
            raise PaymentWebhookError(f"Invalid Paystack webhook payload: {e}") from e

        status = data.get("status")
        return WebhookEvent(
            provider=self.name,
            event_name=event_name,
            reference=data.get("reference"),
            status=status,
            successful=event_name == "charge.success" and status == "success",
            data=data,
            amount=from_minor_units(data["amount"]) if data.get("amount") is not None else None,
            currency=data.get("currency"),
        )


def create_paystack_adapter(
    secret_key: str | None = None,
    public_key: str | None = None,
) -> PaystackAdapter:
    """Create a Paystack adapter (credentials default to settings)."""
    return PaystackAdapter(secret_key=secret_key, public_key=public_key)

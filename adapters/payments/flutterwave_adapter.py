"""
Flutterwave payment adapter.

Flutterwave Standard takes amounts in major units and returns a hosted
payment link.  Webhooks carry the dashboard "secret hash" verbatim in the
``verif-hash`` header.
"""

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

SIGNATURE_HEADER = "verif-hash"


class FlutterwaveAdapter(PaymentProviderAdapter):
    """Flutterwave v3 API client."""

    name = "flutterwave"

    def __init__(
        self,
        secret_key: str | None = None,
        public_key: str | None = None,
        secret_hash: str | None = None,
        base_url: str | None = None,
    ):
        super().__init__(secret_key=secret_key or settings.flutterwave_secret_key)
        self.public_key = public_key or settings.flutterwave_public_key
        self.secret_hash = secret_hash or settings.flutterwave_secret_hash
        self.base_url = (base_url or settings.flutterwave_base_url).rstrip("/")

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
        Create a Flutterwave Standard payment link.

        Raises:
            PaymentAPIError: If Flutterwave does not return a link
        """
        body = {
            "tx_ref": reference,
            "amount": round(amount, 2),
            "currency": currency.upper(),
            "redirect_url": callback_url,
            "customer": {
                "email": customer.email,
                "name": customer.name or customer.email,
                "phonenumber": customer.phone,
            },
            "customizations": {
                "title": settings.app_name,
                "description": description or "Payment",
            },
            "meta": metadata or {},
        }
        response = await self._make_request("POST", "payments", body)

        link = (response.get("data") or {}).get("link")
        if response.get("status") != "success" or not link:
            raise PaymentAPIError(response.get("message") or "Flutterwave initialization failed")

        logger.info("Initialized Flutterwave payment %s", reference)
        return PaymentInitialization(
            provider=self.name,
            reference=reference,
            payment_url=link,
            raw=response.get("data") or {},
        )

    def _to_verification(self, data: dict[str, Any], reference: str) -> PaymentVerification:
        status = data.get("status", "unknown")
        return PaymentVerification(
            provider=self.name,
            reference=data.get("tx_ref", reference),
            successful=status == "successful",
            status=status,
            amount=float(data.get("amount") or 0),
            currency=data.get("currency", ""),
            customer_email=(data.get("customer") or {}).get("email"),
            transaction_id=str(data["id"]) if data.get("id") is not None else None,
            paid_at=parse_provider_datetime(data.get("created_at")),
            raw=data,
        )

    async def verify_payment(self, reference: str) -> PaymentVerification:
        """Verify by our ``tx_ref``."""
        response = await self._make_request(
            "GET", f"transactions/verify_by_reference?tx_ref={reference}"
        )
        return self._to_verification(response.get("data") or {}, reference)

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        if not self.secret_hash or not signature:
            return False
        return hmac.compare_digest(self.secret_hash, signature)

    def parse_webhook_event(self, payload: dict[str, Any]) -> WebhookEvent:
        try:
            event_name = payload["event"]
            data = payload.get("data") or {}
        except (KeyError, TypeError) as e:
            raise PaymentWebhookError(f"Invalid Flutterwave webhook payload: {e}") from e

        status = data.get("status")
        return WebhookEvent(
            provider=self.name,
            event_name=event_name,
            reference=data.get("tx_ref"),
            status=status,
            successful=event_name == "charge.completed" and status == "successful",
            data=data,
            amount=float(data["amount"]) if data.get("amount") is not None else None,
            currency=data.get("currency"),
        )


def create_flutterwave_adapter(
    secret_key: str | None = None,
    public_key: str | None = None,
    secret_hash: str | None = None,
) -> FlutterwaveAdapter:
    """Create a Flutterwave adapter (credentials default to settings)."""
    return FlutterwaveAdapter(secret_key=secret_key, public_key=public_key, secret_hash=secret_hash)

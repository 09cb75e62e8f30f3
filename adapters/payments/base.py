"""
Base classes and shared types for payment provider adapters.

Each provider adapter turns an "initialize" call into a hosted checkout URL,
verifies a transaction by reference, and authenticates webhook deliveries.
"""

import logging
import random
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)


# Custom Exceptions
class PaymentProviderError(Exception):
    """Base exception for payment adapter errors."""

    pass


class PaymentAPIError(PaymentProviderError):
    """Raised when the provider API rejects a request or cannot be reached."""

    pass


class PaymentAuthError(PaymentProviderError):
    """Raised when provider credentials are missing or rejected."""

    pass


class PaymentWebhookError(PaymentProviderError):
    """Raised when a webhook payload cannot be parsed."""

    pass


@dataclass
class Customer:
    """Payer details sent to the provider."""

    email: str
    name: str | None = None
    phone: str | None = None


@dataclass
class PaymentInitialization:
    """Result of starting a hosted checkout."""

    provider: str
    reference: str
    payment_url: str
    access_code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "reference": self.reference,
            "payment_url": self.payment_url,
            "access_code": self.access_code,
        }


@dataclass
class PaymentVerification:
    """Provider view of a transaction after the customer returns."""

    provider: str
    reference: str
    successful: bool
    status: str
    amount: float
    currency: str
    customer_email: str | None = None
    transaction_id: str | None = None
    paid_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "reference": self.reference,
            "successful": self.successful,
            "status": self.status,
            "amount": self.amount,
            "currency": self.currency,
            "customer_email": self.customer_email,
            "transaction_id": self.transaction_id,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


@dataclass
class WebhookEvent:
    """Normalised webhook delivery."""

    provider: str
    event_name: str
    reference: str | None
    status: str | None
    successful: bool
    data: dict[str, Any]
    amount: float | None = None
    currency: str | None = None


def parse_provider_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def generate_reference(prefix: str) -> str:
    """Build a unique transaction reference: ``PREFIX-<ms timestamp>-<RANDOM>``."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


class PaymentProviderAdapter(ABC):
    """Abstract base for payment providers."""

    name: str = ""
    base_url: str = ""

    def __init__(self, secret_key: str | None = None, timeout: float = 30.0):
        self.secret_key = secret_key
        self.timeout = timeout

        if not self.secret_key:
            logger.warning("%s secret key not configured", self.name.capitalize())

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _get_headers(self) -> dict[str, str]:
        if not self.secret_key:
            raise PaymentAuthError(f"{self.name.capitalize()} secret key not configured")
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _extract_error(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        return body.get("message") or f"HTTP {response.status_code}"

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an HTTP request to the provider API.

        Args:
            method: HTTP method (GET or POST)
            endpoint: Path relative to ``base_url``
            data: JSON body for POST requests

        Returns:
            Decoded JSON response

        Raises:
            PaymentAuthError: If credentials are missing or rejected
            PaymentAPIError: If the request fails
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = self._get_headers()

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.info("Making %s request to %s %s", method, self.name, endpoint)

                if method == "GET":
                    response = await client.get(url, headers=headers)
                elif method == "POST":
                    response = await client.post(url, headers=headers, json=data)
                else:
                    raise ValueError(f"Unsupported HTTP method: {method}")

                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            detail = self._extract_error(e.response)
            logger.error("%s API error (%s): %s", self.name, e.response.status_code, detail)
            if e.response.status_code == 401:
                raise PaymentAuthError(f"{self.name} rejected credentials: {detail}") from e
            raise PaymentAPIError(f"{self.name} request failed: {detail}") from e
        except httpx.RequestError as e:
            logger.error("%s HTTP request error: %s", self.name, e)
            raise PaymentAPIError(f"{self.name} request failed: {e}") from e

    @abstractmethod
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
        pass

    @abstractmethod
    async def verify_payment(self, reference: str) -> PaymentVerification:
        pass

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        pass

    @abstractmethod
    def parse_webhook_event(self, payload: dict[str, Any]) -> WebhookEvent:
        pass

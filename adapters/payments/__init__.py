"""Payment provider adapters."""

from .base import (
    Customer,
    PaymentAPIError,
    PaymentAuthError,
    PaymentInitialization,
    PaymentProviderAdapter,
    PaymentProviderError,
    PaymentVerification,
    PaymentWebhookError,
    WebhookEvent,
    generate_reference,
)
from .flutterwave_adapter import FlutterwaveAdapter, create_flutterwave_adapter
from .paystack_adapter import PaystackAdapter, create_paystack_adapter

__all__ = [
    "PaymentProviderAdapter",
    "PaystackAdapter",
    "FlutterwaveAdapter",
    "Customer",
    "PaymentInitialization",
    "PaymentVerification",
    "WebhookEvent",
    "PaymentProviderError",
    "PaymentAPIError",
    "PaymentAuthError",
    "PaymentWebhookError",
    "generate_reference",
    "create_paystack_adapter",
    "create_flutterwave_adapter",
]

"""
Payment API routes: checkout initialization, verification and provider webhooks.
"""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import PaymentProviderError, PaymentWebhookError
from api.dependencies import get_current_user
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.commerce import (
    PaymentInitializeRequest,
    PaymentInitializeResponse,
    PaymentTransactionResponse,
    PaymentVerifyResponse,
)
from api.schemas.common import ApiResponse
from api.utils import is_uuid
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Order,
    OrderStatus,
    PaymentPurpose,
    PaymentStatus,
    User,
)
from services.payments import (
    PaymentService,
    TransactionNotFoundError,
    UnsupportedProviderError,
    available_providers,
    get_payment_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])
webhooks_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

PAYSTACK_EVENTS = frozenset({"charge.success", "charge.failed"})
FLUTTERWAVE_EVENTS = frozenset({"charge.completed"})


def default_callback_url(provider: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/payment/callback?provider={provider}"


@router.post("/initialize", response_model=ApiResponse[PaymentInitializeResponse])
@limiter.limit(get_rate_limit("payment"))
async def initialize_payment(
    request: Request,
    body: PaymentInitializeRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Open a hosted checkout for a pending order.

    Returns the provider's payment URL; the customer is sent back to
    ``callback_url`` and the client then calls the verify endpoint.
    """
    order = await db.get(Order, body.order_id) if is_uuid(body.order_id) else None
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found",
        )
    if order.user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only pay for your own orders",
        )

    if order.status != OrderStatus.PENDING.value or order.is_paid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Order is not awaiting payment",
        )

    provider = body.provider.value
    currency = body.currency if "currency" in body.model_fields_set else order.currency
    if provider not in available_providers(currency):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{provider} does not support {currency} payments",
        )

    try:
        transaction, initialization = await payments.start_payment(
            db,
            provider=provider,
            purpose=PaymentPurpose.BOOK_ORDER,
            target_id=order.id,
            amount=order.total_amount,
            currency=currency,
            user=current_user,
            callback_url=body.callback_url or default_callback_url(provider),
            description=f"Order {order.order_number}",
            metadata={"order_number": order.order_number},
        )
    except UnsupportedProviderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PaymentProviderError as e:
        logger.error("Payment initialization failed for order %s: %s", order.id, e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payment initialization failed",
        )

    order.payment_provider = provider
    order.payment_reference = transaction.reference
    await db.commit()

    return ApiResponse(
        data=PaymentInitializeResponse(
            payment_url=initialization.payment_url,
            reference=transaction.reference,
            provider=provider,
            amount=transaction.amount,
            currency=transaction.currency,
            order_id=order.id,
            access_code=initialization.access_code,
        ),
        message="Payment initialized",
    )


@router.get(
    "/verify/{provider}/{reference}",
    response_model=ApiResponse[PaymentVerifyResponse],
)
@limiter.limit(get_rate_limit("payment"))
async def verify_payment(
    request: Request,
    provider: str,
    reference: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """Confirm a payment with the provider and settle what it paid for."""
    try:
        transaction = await payments.get_transaction(db, reference)
    except TransactionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    if transaction.user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    if transaction.provider != provider:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provider does not match this payment",
        )

    try:
        transaction, verification = await payments.verify_payment(db, provider, reference)
    except UnsupportedProviderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PaymentProviderError as e:
        logger.error("Verification of %s with %s failed: %s", reference, provider, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not verify payment with provider",
        )

    await db.commit()
    await db.refresh(transaction)

    settled = transaction.status == PaymentStatus.COMPLETED.value
    return ApiResponse(
        data=PaymentVerifyResponse(
            transaction=PaymentTransactionResponse.model_validate(transaction),
            successful=settled,
            provider_status=verification.status,
        ),
        message="Payment verified" if settled else "Payment not completed",
    )


def _load_json(body: bytes) -> dict:
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, ValueError) as e:
        logger.error("Invalid JSON in webhook payload: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")
    return payload


async def _process_webhook(
    db: AsyncSession,
    payments: PaymentService,
    provider: str,
    payload: dict,
    handled_events: frozenset[str],
) -> dict:
    adapter = payments.get_adapter(provider)
    try:
        event = adapter.parse_webhook_event(payload)
    except PaymentWebhookError as e:
        logger.error("%s webhook rejected: %s", provider, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")

    if event.event_name not in handled_events:
        logger.info("Acknowledged unhandled %s webhook %s", provider, event.event_name)
        return {"success": True, "message": "Event acknowledged"}

    transaction = await payments.handle_webhook(db, event)
    await db.commit()
    return {
        "success": True,
        "message": "Webhook processed",
        "reference": transaction.reference if transaction else event.reference,
    }


@webhooks_router.post("/paystack")
@limiter.limit(get_rate_limit("webhook"))
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """Paystack ``charge.*`` notifications, signed with HMAC-SHA512."""
    body = await request.body()
    if not payments.get_adapter("paystack").verify_webhook_signature(body, x_paystack_signature):
        logger.warning("Paystack webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    return await _process_webhook(db, payments, "paystack", _load_json(body), PAYSTACK_EVENTS)


@webhooks_router.post("/flutterwave")
@limiter.limit(get_rate_limit("webhook"))
async def flutterwave_webhook(
    request: Request,
    verif_hash: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """Flutterwave notifications, authenticated by the shared ``verif-hash``."""
    body = await request.body()
    if not payments.get_adapter("flutterwave").verify_webhook_signature(body, verif_hash):
        logger.warning("Flutterwave webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    return await _process_webhook(db, payments, "flutterwave", _load_json(body), FLUTTERWAVE_EVENTS)

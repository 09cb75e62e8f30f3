"""
Payment orchestration across providers.

``PaymentService`` picks the provider adapter, records a
``PaymentTransaction`` for every checkout it starts and applies the
outcome of a payment to whatever it paid for: a book order, a course
enrollment, an event registration or a manuscript submission fee.
Applying a successful payment twice is a no-op, so the verify endpoint
and the provider webhook can both report the same transaction.

The service flushes but never commits; the calling route owns the
transaction boundary.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.email.resend_adapter import email_service
from adapters.payments import (
    Customer,
    PaymentInitialization,
    PaymentProviderAdapter,
    PaymentProviderError,
    PaymentVerification,
    WebhookEvent,
    create_flutterwave_adapter,
    create_paystack_adapter,
    generate_reference,
)
from infrastructure.database.models import (
    Book,
    BookSubmission,
    Course,
    Enrollment,
    Event,
    EventRegistration,
    Order,
    OrderStatus,
    PaymentPurpose,
    PaymentStatus,
    PaymentTransaction,
    SubmissionStatus,
    User,
)

logger = logging.getLogger(__name__)

# Currencies each provider can settle
PROVIDER_CURRENCIES: dict[str, frozenset[str]] = {
    "paystack": frozenset({"NGN", "USD", "GHS", "ZAR", "KES"}),
    "flutterwave": frozenset({"NGN", "USD", "GBP", "EUR", "GHS", "KES", "ZAR"}),
}

REFERENCE_PREFIXES = {
    PaymentPurpose.BOOK_ORDER.value: "ORD",
    PaymentPurpose.COURSE_ENROLLMENT.value: "CRS",
    PaymentPurpose.EVENT_REGISTRATION.value: "EVT",
    PaymentPurpose.SUBMISSION_FEE.value: "SUB",
}

FAILED_STATUSES = frozenset({"failed", "abandoned", "cancelled", "reversed"})

# Largest rounding difference accepted between the charged and expected amount
AMOUNT_TOLERANCE = 0.01


class PaymentServiceError(Exception):
    """Base exception for payment orchestration errors."""

    pass


class UnsupportedProviderError(PaymentServiceError):
    pass


class TransactionNotFoundError(PaymentServiceError):
    pass


def recommended_provider(currency: str) -> str:
    """Paystack for naira, Flutterwave for international currencies."""
    if currency.upper() in ("USD", "GBP", "EUR"):
        return "flutterwave"
    return "paystack"


def available_providers(currency: str) -> list[str]:
    currency = currency.upper()
    return [name for name, supported in PROVIDER_CURRENCIES.items() if currency in supported]


def charge_mismatch(
    transaction: PaymentTransaction,
    amount: Optional[float],
    currency: Optional[str],
) -> Optional[str]:
    """Describe how a reported charge differs from what we asked for, or None."""
    if amount is None:
        return "provider did not report an amount"
    if abs(amount - transaction.amount) > AMOUNT_TOLERANCE:
        return f"charged {amount} but expected {transaction.amount}"
    if currency and currency.upper() != transaction.currency.upper():
        return f"charged in {currency.upper()} but expected {transaction.currency}"
    return None


class PaymentService:
    """Starts, verifies and settles payments."""

    def __init__(self, adapters: Optional[dict[str, PaymentProviderAdapter]] = None):
        self._adapters = adapters if adapters is not None else {
            "paystack": create_paystack_adapter(),
            "flutterwave": create_flutterwave_adapter(),
        }

    @property
    def providers(self) -> dict[str, bool]:
        """Provider name -> whether credentials are configured."""
        return {name: adapter.is_configured for name, adapter in self._adapters.items()}

    def get_adapter(self, provider: str) -> PaymentProviderAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise UnsupportedProviderError(f"Unsupported payment provider: {provider}")
        return adapter

    async def get_transaction(self, db: AsyncSession, reference: str) -> PaymentTransaction:
        result = await db.execute(
            select(PaymentTransaction).where(PaymentTransaction.reference == reference)
        )
        transaction = result.scalar_one_or_none()
        if transaction is None:
            raise TransactionNotFoundError(f"Unknown payment reference: {reference}")
        return transaction

    # ── Starting payments ────────────────────────────────────────────────────

    async def start_payment(
        self,
        db: AsyncSession,
        *,
        provider: str,
        purpose: PaymentPurpose,
        target_id: str,
        amount: float,
        currency: str,
        user: User,
        callback_url: str,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> tuple[PaymentTransaction, PaymentInitialization]:
        """
        Open a hosted checkout with ``provider`` and record the transaction.

        Raises:
            UnsupportedProviderError: If the provider is unknown
            PaymentProviderError: If the provider rejects the request
        """
        adapter = self.get_adapter(provider)
        reference = generate_reference(REFERENCE_PREFIXES[purpose.value])
        meta = {
            "purpose": purpose.value,
            "target_id": target_id,
            "user_id": user.id,
            **(metadata or {}),
        }

        initialization = await adapter.initialize_payment(
            reference=reference,
            amount=amount,
            currency=currency,
            customer=Customer(email=user.email, name=user.name, phone=user.phone),
            callback_url=callback_url,
            metadata=meta,
            description=description,
        )

        transaction = self.record_transaction(
            db,
            reference=initialization.reference,
            provider=provider,
            purpose=purpose,
            target_id=target_id,
            amount=amount,
            currency=currency,
            user=user,
            metadata=meta,
        )
        transaction.payment_url = initialization.payment_url
        await db.flush()

        logger.info(
            "Started %s payment %s for %s %s",
            provider, transaction.reference, purpose.value, target_id,
        )
        return transaction, initialization

    def record_transaction(
        self,
        db: AsyncSession,
        *,
        reference: str,
        provider: str,
        purpose: PaymentPurpose,
        target_id: str,
        amount: float,
        currency: str,
        user: User,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PaymentTransaction:
        """Add a pending transaction row without contacting a provider."""
        transaction = PaymentTransaction(
            reference=reference,
            provider=provider,
            status=PaymentStatus.PENDING.value,
            amount=amount,
            currency=currency.upper(),
            customer_email=user.email,
            user_id=user.id,
            purpose=purpose.value,
            target_id=target_id,
            extra_metadata=metadata,
        )
        db.add(transaction)
        return transaction

    # ── Verification ─────────────────────────────────────────────────────────

    async def verify_payment(
        self,
        db: AsyncSession,
        provider: str,
        reference: str,
    ) -> tuple[PaymentTransaction, PaymentVerification]:
        """
        Ask the provider for the transaction status and apply it.

        Raises:
            TransactionNotFoundError: If we never issued ``reference``
            PaymentProviderError: If the provider call fails
        """
        transaction = await self.get_transaction(db, reference)
        adapter = self.get_adapter(provider)
        verification = await adapter.verify_payment(reference)

        transaction.provider_response = verification.raw
        transaction.verified_at = datetime.now(UTC)

        await self._apply_outcome(
            db,
            transaction,
            successful=verification.successful,
            status=verification.status,
            amount=verification.amount,
            currency=verification.currency,
        )

        await db.flush()
        return transaction, verification

    async def handle_webhook(
        self,
        db: AsyncSession,
        event: WebhookEvent,
    ) -> Optional[PaymentTransaction]:
        """Apply a verified webhook. Unknown references are logged and ignored."""
        if not event.reference:
            logger.info("Ignoring %s webhook %s without reference", event.provider, event.event_name)
            return None

        try:
            transaction = await self.get_transaction(db, event.reference)
        except TransactionNotFoundError:
            logger.warning(
                "%s webhook for unknown reference %s", event.provider, event.reference
            )
            return None

        transaction.provider_response = event.data
        await self._apply_outcome(
            db,
            transaction,
            successful=event.successful,
            status=event.status,
            amount=event.amount,
            currency=event.currency,
        )

        await db.flush()
        return transaction

    # ── Settlement ───────────────────────────────────────────────────────────

    async def _apply_outcome(
        self,
        db: AsyncSession,
        transaction: PaymentTransaction,
        *,
        successful: bool,
        status: Optional[str],
        amount: Optional[float],
        currency: Optional[str],
    ) -> None:
        """Settle a reported charge only if it covers the expected amount and currency."""
        if successful:
            mismatch = charge_mismatch(transaction, amount, currency)
            if mismatch is None:
                await self.apply_success(db, transaction)
                return
            logger.error(
                "Rejecting payment %s from %s: %s",
                transaction.reference, transaction.provider, mismatch,
            )
            await self.apply_failure(db, transaction)
        elif status in FAILED_STATUSES:
            await self.apply_failure(db, transaction)

    async def apply_success(self, db: AsyncSession, transaction: PaymentTransaction) -> bool:
        """
        Settle a successful payment.

        Returns:
            False if the transaction had already been settled
        """
        if transaction.status == PaymentStatus.COMPLETED.value:
            return False

        transaction.status = PaymentStatus.COMPLETED.value
        transaction.verified_at = transaction.verified_at or datetime.now(UTC)

        if transaction.purpose == PaymentPurpose.BOOK_ORDER.value:
            await self._settle_order(db, transaction)
        elif transaction.purpose == PaymentPurpose.COURSE_ENROLLMENT.value:
            await self._settle_enrollment(db, transaction)
        elif transaction.purpose == PaymentPurpose.EVENT_REGISTRATION.value:
            await self._settle_registration(db, transaction)
        elif transaction.purpose == PaymentPurpose.SUBMISSION_FEE.value:
            await self._settle_submission(db, transaction)

        logger.info("Payment %s completed (%s)", transaction.reference, transaction.purpose)
        return True

    async def apply_failure(self, db: AsyncSession, transaction: PaymentTransaction) -> None:
        if transaction.status == PaymentStatus.COMPLETED.value:
            return
        transaction.status = PaymentStatus.FAILED.value

        if transaction.purpose == PaymentPurpose.BOOK_ORDER.value:
            order = await db.get(Order, transaction.target_id)
            if order and not order.is_paid:
                order.payment_status = PaymentStatus.FAILED.value
        elif transaction.purpose == PaymentPurpose.EVENT_REGISTRATION.value:
            registration = await db.get(EventRegistration, transaction.target_id)
            if registration:
                registration.payment_status = PaymentStatus.FAILED.value
        elif transaction.purpose == PaymentPurpose.SUBMISSION_FEE.value:
            submission = await db.get(BookSubmission, transaction.target_id)
            if submission and not submission.fee_paid:
                submission.fee_payment_status = PaymentStatus.FAILED.value

        logger.info("Payment %s failed (%s)", transaction.reference, transaction.purpose)

    async def _settle_order(self, db: AsyncSession, transaction: PaymentTransaction) -> None:
        order = await db.get(Order, transaction.target_id)
        if order is None:
            logger.error("Paid transaction %s points at missing order", transaction.reference)
            return

        order.payment_status = PaymentStatus.COMPLETED.value
        order.payment_provider = transaction.provider
        order.payment_reference = transaction.reference
        order.paid_at = datetime.now(UTC)
        if order.status == OrderStatus.PENDING.value:
            order.status = OrderStatus.CONFIRMED.value

        book = await db.get(Book, order.book_id)
        if book:
            book.sales_count += order.quantity
            book.total_revenue += order.total_amount
            if book.stock is not None:
                book.stock = max(0, book.stock - order.quantity)

        user = await db.get(User, order.user_id)
        if user:
            await email_service.send_order_confirmation_email(
                to_email=user.email,
                user_name=user.name,
                order_number=order.order_number,
                book_title=book.title if book else "",
                amount=order.total_amount,
                currency=order.currency,
            )

    async def _settle_enrollment(self, db: AsyncSession, transaction: PaymentTransaction) -> None:
        course = await db.get(Course, transaction.target_id)
        if course is None or transaction.user_id is None:
            logger.error("Paid transaction %s points at missing course", transaction.reference)
            return

        existing = await db.execute(
            select(Enrollment).where(
                Enrollment.user_id == transaction.user_id,
                Enrollment.course_id == course.id,
            )
        )
        if existing.scalar_one_or_none() is None:
            db.add(Enrollment(
                user_id=transaction.user_id,
                course_id=course.id,
                amount_paid=transaction.amount,
                payment_reference=transaction.reference,
            ))

        user = await db.get(User, transaction.user_id)
        if user:
            await email_service.send_enrollment_email(user.email, user.name, course.title)

    async def _settle_registration(self, db: AsyncSession, transaction: PaymentTransaction) -> None:
        registration = await db.get(EventRegistration, transaction.target_id)
        if registration is None:
            logger.error(
                "Paid transaction %s points at missing registration", transaction.reference
            )
            return

        registration.payment_status = PaymentStatus.COMPLETED.value
        registration.amount_paid = transaction.amount
        registration.payment_reference = transaction.reference

        event = await db.get(Event, registration.event_id)
        user = await db.get(User, registration.user_id)
        if event and user:
            await email_service.send_event_registration_email(
                to_email=user.email,
                user_name=user.name,
                event_title=event.title,
                start_date=event.start_date.isoformat(),
                location=event.location,
            )

    async def _settle_submission(self, db: AsyncSession, transaction: PaymentTransaction) -> None:
        submission = await db.get(BookSubmission, transaction.target_id)
        if submission is None:
            logger.error(
                "Paid transaction %s points at missing submission", transaction.reference
            )
            return

        submission.fee_payment_status = PaymentStatus.COMPLETED.value
        submission.fee_payment_reference = transaction.reference
        if submission.status == SubmissionStatus.DRAFT.value:
            submission.status = SubmissionStatus.SUBMITTED.value
            submission.submitted_at = datetime.now(UTC)


payment_service = PaymentService()


def get_payment_service() -> PaymentService:
    """Dependency returning the payment service."""
    return payment_service


__all__ = [
    "PaymentService",
    "PaymentServiceError",
    "PaymentProviderError",
    "UnsupportedProviderError",
    "TransactionNotFoundError",
    "payment_service",
    "get_payment_service",
    "recommended_provider",
    "available_providers",
]

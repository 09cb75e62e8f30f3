"""
Unit tests for payment orchestration and settlement.
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from adapters.payments import PaymentAPIError, WebhookEvent
from conftest import make_book, make_course, make_user
from infrastructure.database.models import (
    BookSubmission,
    Enrollment,
    Order,
    OrderStatus,
    PaymentPurpose,
    PaymentStatus,
    PaymentTransaction,
    SubmissionStatus,
)
from services.payments import (
    TransactionNotFoundError,
    UnsupportedProviderError,
    available_providers,
    charge_mismatch,
    recommended_provider,
)


class TestProviderSelection:
    @pytest.mark.parametrize(
        "currency,expected",
        [("NGN", "paystack"), ("ngn", "paystack"), ("USD", "flutterwave"),
         ("GBP", "flutterwave"), ("EUR", "flutterwave"), ("KES", "paystack")],
    )
    def test_recommended_provider(self, currency, expected):
        assert recommended_provider(currency) == expected

    def test_available_providers(self):
        assert available_providers("NGN") == ["paystack", "flutterwave"]
        assert available_providers("gbp") == ["flutterwave"]
        assert available_providers("JPY") == []

    def test_providers_reports_configuration(self, payment_service):
        assert payment_service.providers == {"paystack": True, "flutterwave": True}

    def test_unknown_provider(self, payment_service):
        with pytest.raises(UnsupportedProviderError):
            payment_service.get_adapter("stripe")


async def pending_order(db, user, book) -> Order:
    order = Order(
        order_number="ORD-000001TEST01",
        user_id=user.id,
        book_id=book.id,
        quantity=2,
        total_amount=book.price * 2,
        currency=book.currency,
    )
    db.add(order)
    await db.commit()
    await db.refresh(order)
    return order


class TestStartPayment:
    async def test_records_pending_transaction(self, db_session, payment_service, fake_paystack):
        user = await make_user(db_session, "buyer@example.com")
        book = await make_book(db_session)
        order = await pending_order(db_session, user, book)

        transaction, initialization = await payment_service.start_payment(
            db_session,
            provider="paystack",
            purpose=PaymentPurpose.BOOK_ORDER,
            target_id=order.id,
            amount=order.total_amount,
            currency="ngn",
            user=user,
            callback_url="http://localhost:3000/payment/callback",
        )

        assert transaction.reference.startswith("ORD-")
        assert transaction.status == PaymentStatus.PENDING.value
        assert transaction.currency == "NGN"
        assert transaction.customer_email == "buyer@example.com"
        assert transaction.payment_url == initialization.payment_url
        sent = fake_paystack.initialized[0]
        assert sent["metadata"]["purpose"] == "book_order"
        assert sent["metadata"]["target_id"] == order.id

    async def test_provider_failure_records_nothing(self, db_session, payment_service, fake_paystack):
        user = await make_user(db_session, "buyer@example.com")
        fake_paystack.fail_initialize = True

        with pytest.raises(PaymentAPIError):
            await payment_service.start_payment(
                db_session,
                provider="paystack",
                purpose=PaymentPurpose.BOOK_ORDER,
                target_id="missing",
                amount=100.0,
                currency="NGN",
                user=user,
                callback_url="http://localhost:3000/payment/callback",
            )

        with pytest.raises(TransactionNotFoundError):
            await payment_service.get_transaction(db_session, "ORD-anything")


class TestSettlement:
    async def test_order_settled_once(self, db_session, payment_service):
        user = await make_user(db_session, "buyer@example.com")
        book = await make_book(db_session, stock=5)
        order = await pending_order(db_session, user, book)
        transaction = payment_service.record_transaction(
            db_session,
            reference="ORD-REF-1",
            provider="paystack",
            purpose=PaymentPurpose.BOOK_ORDER,
            target_id=order.id,
            amount=order.total_amount,
            currency="NGN",
            user=user,
        )
        await db_session.flush()

        with patch(
            "services.payments.email_service.send_order_confirmation_email",
            new_callable=AsyncMock,
        ) as send:
            assert await payment_service.apply_success(db_session, transaction) is True
            assert await payment_service.apply_success(db_session, transaction) is False

        assert send.await_count == 1
        assert order.is_paid
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_reference == "ORD-REF-1"
        assert book.sales_count == 2
        assert book.total_revenue == 5000.0
        assert book.stock == 3

    async def test_failure_after_success_is_ignored(self, db_session, payment_service):
        user = await make_user(db_session, "buyer@example.com")
        book = await make_book(db_session)
        order = await pending_order(db_session, user, book)
        transaction = payment_service.record_transaction(
            db_session,
            reference="ORD-REF-2",
            provider="paystack",
            purpose=PaymentPurpose.BOOK_ORDER,
            target_id=order.id,
            amount=order.total_amount,
            currency="NGN",
            user=user,
        )
        await payment_service.apply_success(db_session, transaction)
        await payment_service.apply_failure(db_session, transaction)

        assert transaction.status == PaymentStatus.COMPLETED.value
        assert order.payment_status == PaymentStatus.COMPLETED.value

    async def test_failed_verification_marks_order(self, db_session, payment_service, fake_paystack):
        user = await make_user(db_session, "buyer@example.com")
        book = await make_book(db_session)
        order = await pending_order(db_session, user, book)
        payment_service.record_transaction(
            db_session,
            reference="ORD-REF-3",
            provider="paystack",
            purpose=PaymentPurpose.BOOK_ORDER,
            target_id=order.id,
            amount=order.total_amount,
            currency="NGN",
            user=user,
        )
        await db_session.flush()
        fake_paystack.verification_status = "abandoned"

        transaction, verification = await payment_service.verify_payment(
            db_session, "paystack", "ORD-REF-3"
        )

        assert verification.successful is False
        assert transaction.status == PaymentStatus.FAILED.value
        assert order.payment_status == PaymentStatus.FAILED.value
        assert transaction.verified_at is not None

    async def test_enrollment_created_once(self, db_session, payment_service):
        user = await make_user(db_session, "student@example.com")
        course = await make_course(db_session)
        transaction = payment_service.record_transaction(
            db_session,
            reference="CRS-REF-1",
            provider="flutterwave",
            purpose=PaymentPurpose.COURSE_ENROLLMENT,
            target_id=course.id,
            amount=course.price,
            currency="NGN",
            user=user,
        )
        await db_session.flush()

        await payment_service.apply_success(db_session, transaction)
        await db_session.flush()
        # A second settlement of a different transaction for the same course
        duplicate = payment_service.record_transaction(
            db_session,
            reference="CRS-REF-2",
            provider="flutterwave",
            purpose=PaymentPurpose.COURSE_ENROLLMENT,
            target_id=course.id,
            amount=course.price,
            currency="NGN",
            user=user,
        )
        await payment_service.apply_success(db_session, duplicate)
        await db_session.flush()

        count = await db_session.scalar(
            select(func.count(Enrollment.id)).where(Enrollment.course_id == course.id)
        )
        assert count == 1

    async def test_submission_fee_submits_draft(self, db_session, payment_service):
        author = await make_user(db_session, "author@example.com")
        submission = BookSubmission(
            author_id=author.id,
            title="Songs of the Delta",
            description="A family saga.",
            category="Fiction",
            price=3500.0,
            manuscript_file="https://files.example.com/songs.pdf",
            synopsis="Three generations on the river.",
            author_bio="Writer from Port Harcourt.",
            target_audience="Adult readers",
        )
        db_session.add(submission)
        await db_session.flush()
        transaction = payment_service.record_transaction(
            db_session,
            reference="SUB-REF-1",
            provider="paystack",
            purpose=PaymentPurpose.SUBMISSION_FEE,
            target_id=submission.id,
            amount=submission.submission_fee,
            currency="NGN",
            user=author,
        )
        await db_session.flush()

        await payment_service.apply_success(db_session, transaction)

        assert submission.fee_paid
        assert submission.fee_payment_reference == "SUB-REF-1"
        assert submission.status == SubmissionStatus.SUBMITTED.value
        assert submission.submitted_at is not None

        # A late failure report cannot undo a paid fee
        await payment_service.apply_failure(db_session, transaction)
        assert submission.fee_payment_status == PaymentStatus.COMPLETED.value


class TestWebhooks:
    async def test_unknown_reference_ignored(self, db_session, payment_service):
        event = WebhookEvent(
            provider="paystack",
            event_name="charge.success",
            reference="ORD-NOT-OURS",
            successful=True,
            status="success",
            data={},
        )
        assert await payment_service.handle_webhook(db_session, event) is None

    async def test_event_without_reference_ignored(self, db_session, payment_service):
        event = WebhookEvent(
            provider="paystack",
            event_name="transfer.success",
            reference=None,
            successful=False,
            status="success",
            data={},
        )
        assert await payment_service.handle_webhook(db_session, event) is None


class TestChargeValidation:
    async def _checkout(self, db_session, payment_service, provider="paystack"):
        user = await make_user(db_session, "buyer@example.com")
        book = await make_book(db_session)
        order = await pending_order(db_session, user, book)
        transaction, _ = await payment_service.start_payment(
            db_session,
            provider=provider,
            purpose=PaymentPurpose.BOOK_ORDER,
            target_id=order.id,
            amount=order.total_amount,
            currency="NGN",
            user=user,
            callback_url="http://localhost:3000/payment/callback",
        )
        return order, book, transaction

    async def test_underpaid_verification_rejected(self, db_session, payment_service, fake_paystack):
        order, book, transaction = await self._checkout(db_session, payment_service)
        fake_paystack.reported_amount = 0.0

        with patch(
            "services.payments.email_service.send_order_confirmation_email",
            new_callable=AsyncMock,
        ) as send:
            await payment_service.verify_payment(db_session, "paystack", transaction.reference)

        assert transaction.status == PaymentStatus.FAILED.value
        assert order.is_paid is False
        assert order.status == OrderStatus.PENDING.value
        assert book.sales_count == 0
        send.assert_not_awaited()

    async def test_wrong_currency_rejected(self, db_session, payment_service, fake_flutterwave):
        order, _, transaction = await self._checkout(db_session, payment_service, "flutterwave")
        fake_flutterwave.reported_currency = "USD"

        await payment_service.verify_payment(db_session, "flutterwave", transaction.reference)

        assert transaction.status == PaymentStatus.FAILED.value
        assert order.is_paid is False

    async def test_exact_charge_settles(self, db_session, payment_service):
        order, _, transaction = await self._checkout(db_session, payment_service)

        await payment_service.verify_payment(db_session, "paystack", transaction.reference)

        assert transaction.status == PaymentStatus.COMPLETED.value
        assert order.is_paid is True

    async def test_webhook_without_amount_not_settled(self, db_session, payment_service):
        order, _, transaction = await self._checkout(db_session, payment_service)
        event = WebhookEvent(
            provider="paystack",
            event_name="charge.success",
            reference=transaction.reference,
            successful=True,
            status="success",
            data={"reference": transaction.reference},
        )

        await payment_service.handle_webhook(db_session, event)

        assert transaction.status == PaymentStatus.FAILED.value
        assert order.is_paid is False

    def test_charge_mismatch_tolerates_rounding(self):
        transaction = PaymentTransaction(amount=2500.0, currency="NGN")
        assert charge_mismatch(transaction, 2500.004, "ngn") is None
        assert charge_mismatch(transaction, 2499.0, "NGN") == "charged 2499.0 but expected 2500.0"
        assert charge_mismatch(transaction, 2500.0, "GHS") == "charged in GHS but expected NGN"

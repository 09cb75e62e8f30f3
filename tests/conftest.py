"""
Pytest configuration and shared fixtures for backend tests.
"""

import os
import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Keep the cache and rate limiter on in-memory storage
os.environ["REDIS_URL"] = ""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from adapters.payments import (
    Customer,
    FlutterwaveAdapter,
    PaymentAPIError,
    PaymentInitialization,
    PaymentVerification,
    PaystackAdapter,
)
from core.security import PasswordHasher, TokenService
from infrastructure.config import get_settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Base,
    Book,
    BookStatus,
    Course,
    Event,
    EventStatus,
    User,
    UserRole,
)
from services.cache import cache_service
from services.monitoring import ErrorTracker, PerformanceMonitor
from services.payments import PaymentService, get_payment_service

# Initialize security services
password_hasher = PasswordHasher(rounds=4)
settings = get_settings()
token_service = TokenService(secret_key=settings.jwt_secret_key)

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_PASSWORD = "TestPassword123"

PAYSTACK_TEST_SECRET = "sk_test_inkwell_webhooks"
FLUTTERWAVE_TEST_HASH = "flw-test-secret-hash"


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()


# ============================================================================
# Users and auth headers
# ============================================================================


async def make_user(
    db: AsyncSession,
    email: str,
    role: str = UserRole.READER.value,
    status: str = "active",
    name: str = "Test User",
) -> User:
    user = User(
        id=str(uuid4()),
        email=email,
        password_hash=password_hasher.hash(TEST_PASSWORD),
        name=name,
        role=role,
        status=status,
        email_verified=status == "active",
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def headers_for(user: User) -> dict:
    access_token = token_service.create_access_token(
        user_id=user.id, email=user.email, role=user.role
    )
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """An active, verified reader."""
    return await make_user(db_session, "reader@example.com", name="Rita Reader")


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await make_user(db_session, "other@example.com", name="Oscar Other")


@pytest.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await make_user(
        db_session, "admin@example.com", role=UserRole.ADMIN.value, name="Ada Admin"
    )


@pytest.fixture
async def author_user(db_session: AsyncSession) -> User:
    return await make_user(
        db_session, "author@example.com", role=UserRole.AUTHOR.value, name="Amos Author"
    )


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user."""
    return headers_for(test_user)


@pytest.fixture
def other_headers(other_user: User) -> dict:
    return headers_for(other_user)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return headers_for(admin_user)


@pytest.fixture
def author_headers(author_user: User) -> dict:
    return headers_for(author_user)


# ============================================================================
# Payment providers
# ============================================================================


def charged(fake, reference: str) -> dict[str, Any]:
    """Amount and currency a fake provider reports for ``reference``.

    Defaults to what checkout asked for; the ``reported_*`` attributes
    simulate an underpaid or mismatched charge.
    """
    started = next((p for p in fake.initialized if p["reference"] == reference), {})
    amount = fake.reported_amount if fake.reported_amount is not None else started.get("amount", 0.0)
    currency = fake.reported_currency or started.get("currency", "NGN")
    return {"amount": amount, "currency": currency}


class FakePaystack(PaystackAdapter):
    """Paystack adapter that never leaves the process.

    Signature checks and webhook parsing are the real ones.
    """

    def __init__(self):
        super().__init__(secret_key=PAYSTACK_TEST_SECRET, public_key="pk_test")
        self.verification_status = "success"
        self.fail_initialize = False
        self.fail_verify = False
        self.initialized: list[dict[str, Any]] = []
        # Overrides what the provider claims was charged
        self.reported_amount: float | None = None
        self.reported_currency: str | None = None

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
        if self.fail_initialize:
            raise PaymentAPIError("paystack request failed: Invalid key")
        self.initialized.append({
            "reference": reference,
            "amount": amount,
            "currency": currency,
            "email": customer.email,
            "callback_url": callback_url,
            "metadata": metadata,
        })
        return PaymentInitialization(
            provider=self.name,
            reference=reference,
            payment_url=f"https://checkout.paystack.test/{reference}",
            access_code="ac_test",
        )

    async def verify_payment(self, reference: str) -> PaymentVerification:
        if self.fail_verify:
            raise PaymentAPIError("paystack request failed: timeout")
        return PaymentVerification(
            provider=self.name,
            reference=reference,
            successful=self.verification_status == "success",
            status=self.verification_status,
            **charged(self, reference),
            raw={"reference": reference, "status": self.verification_status},
        )


class FakeFlutterwave(FlutterwaveAdapter):
    def __init__(self):
        super().__init__(
            secret_key="FLWSECK_TEST-fake",
            public_key="FLWPUBK_TEST-fake",
            secret_hash=FLUTTERWAVE_TEST_HASH,
        )
        self.verification_status = "successful"
        self.initialized: list[dict[str, Any]] = []
        self.reported_amount: float | None = None
        self.reported_currency: str | None = None

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
        self.initialized.append({"reference": reference, "amount": amount, "currency": currency})
        return PaymentInitialization(
            provider=self.name,
            reference=reference,
            payment_url=f"https://checkout.flutterwave.test/{reference}",
        )

    async def verify_payment(self, reference: str) -> PaymentVerification:
        return PaymentVerification(
            provider=self.name,
            reference=reference,
            successful=self.verification_status == "successful",
            status=self.verification_status,
            **charged(self, reference),
            raw={"tx_ref": reference, "status": self.verification_status},
        )


@pytest.fixture
def fake_paystack() -> FakePaystack:
    return FakePaystack()


@pytest.fixture
def fake_flutterwave() -> FakeFlutterwave:
    return FakeFlutterwave()


@pytest.fixture
def payment_service(fake_paystack, fake_flutterwave) -> PaymentService:
    return PaymentService({"paystack": fake_paystack, "flutterwave": fake_flutterwave})


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    payment_service: PaymentService,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_service] = lambda: payment_service

    # Fresh rate limits, cache and monitoring buffers for every test
    app.state.limiter.reset()
    await cache_service.clear()
    app.state.error_tracker = ErrorTracker()
    app.state.performance_monitor = PerformanceMonitor()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Catalog, academy and event fixtures
# ============================================================================


async def make_book(db: AsyncSession, **overrides) -> Book:
    fields = dict(
        title="The River Between",
        slug=f"book-{uuid4().hex[:8]}",
        author="Ngozi Writer",
        description="A novel about two villages on either side of a river.",
        category="Fiction",
        price=2500.0,
        currency="NGN",
        status=BookStatus.PUBLISHED.value,
        published_at=datetime.now(timezone.utc),
        page_count=320,
        stock=10,
    )
    fields.update(overrides)
    book = Book(**fields)
    db.add(book)
    await db.commit()
    await db.refresh(book)
    return book


@pytest.fixture
async def published_book(db_session: AsyncSession) -> Book:
    return await make_book(db_session)


@pytest.fixture
async def free_book(db_session: AsyncSession) -> Book:
    return await make_book(
        db_session, title="Open Pages", price=0.0, is_free=True, stock=None, page_count=100
    )


@pytest.fixture
async def draft_book(db_session: AsyncSession) -> Book:
    return await make_book(db_session, title="Work In Progress", status=BookStatus.DRAFT.value)


async def make_course(db: AsyncSession, **overrides) -> Course:
    fields = dict(
        title="Writing Your First Novel",
        description="From outline to final draft in eight weeks.",
        price=15000.0,
        currency="NGN",
        is_published=True,
        duration=480,
        level="beginner",
    )
    fields.update(overrides)
    course = Course(**fields)
    db.add(course)
    await db.commit()
    await db.refresh(course)
    return course


@pytest.fixture
async def paid_course(db_session: AsyncSession) -> Course:
    return await make_course(db_session)


@pytest.fixture
async def free_course(db_session: AsyncSession) -> Course:
    return await make_course(db_session, title="Poetry Basics", price=0.0)


async def make_event(db: AsyncSession, **overrides) -> Event:
    start = datetime.now(timezone.utc) + timedelta(days=7)
    fields = dict(
        title="Lagos Book Launch",
        description="Launch evening with readings and signings.",
        type="book_launch",
        status=EventStatus.PUBLISHED.value,
        start_date=start,
        end_date=start + timedelta(hours=3),
        location="Victoria Island, Lagos",
        price=0.0,
        is_free=True,
        currency="NGN",
    )
    fields.update(overrides)
    event = Event(**fields)
    db.add(event)
    await db.commit()
    await db.refresh(event)
    return event


@pytest.fixture
async def free_event(db_session: AsyncSession) -> Event:
    return await make_event(db_session)


@pytest.fixture
async def paid_event(db_session: AsyncSession) -> Event:
    return await make_event(
        db_session, title="Editing Masterclass", type="masterclass", price=5000.0, is_free=False
    )

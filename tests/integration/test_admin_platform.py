"""Integration tests for the dashboard, admin stats, monitoring and health endpoints."""

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import (
    Book,
    BookSubmission,
    Course,
    Enrollment,
    Event,
    EventRegistration,
    Order,
    OrderStatus,
    PaymentStatus,
    PaymentTransaction,
    ReadingProgress,
    User,
    Wishlist,
)
from services.cache import get_cache
from services.monitoring import DAY_MS, HOUR_MS, ErrorTracker
from conftest import make_book

pytestmark = pytest.mark.asyncio


async def seed_activity(
    db: AsyncSession,
    user: User,
    book: Book,
    course: Course,
    event: Event,
) -> Order:
    order = Order(
        order_number="ORD-000001SEED01",
        user_id=user.id,
        book_id=book.id,
        quantity=2,
        total_amount=book.price * 2,
        status=OrderStatus.CONFIRMED.value,
        payment_status=PaymentStatus.COMPLETED.value,
        paid_at=datetime.now(timezone.utc),
    )
    db.add(order)
    await db.flush()
    db.add(PaymentTransaction(
        reference="ORD-SEED-REF",
        provider="paystack",
        purpose="book_order",
        target_id=order.id,
        user_id=user.id,
        customer_email=user.email,
        amount=order.total_amount,
        currency="NGN",
        status=PaymentStatus.COMPLETED.value,
    ))
    book.sales_count = 2
    book.total_revenue = order.total_amount
    db.add(Enrollment(user_id=user.id, course_id=course.id, amount_paid=course.price))
    db.add(EventRegistration(
        event_id=event.id,
        user_id=user.id,
        payment_status=PaymentStatus.COMPLETED.value,
    ))
    db.add(ReadingProgress(user_id=user.id, book_id=book.id, current_page=10, total_pages=320))
    db.add(Wishlist(user_id=user.id, book_id=book.id))
    await db.commit()
    return order


class TestDashboard:
    async def test_empty_dashboard(self, async_client: AsyncClient, auth_headers: dict):
        response = await async_client.get("/api/v1/dashboard", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total_orders"] == 0
        assert data["total_spent"] == 0.0
        assert data["recent_orders"] == []

    async def test_dashboard_counts(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        test_user: User,
        published_book: Book,
        paid_course: Course,
        free_event: Event,
    ):
        order = await seed_activity(db_session, test_user, published_book, paid_course, free_event)

        data = (await async_client.get("/api/v1/dashboard", headers=auth_headers)).json()["data"]
        assert data["total_orders"] == 1
        assert data["total_spent"] == order.total_amount
        assert data["books_in_progress"] == 1
        assert data["books_completed"] == 0
        assert data["wishlist_count"] == 1
        assert data["active_enrollments"] == 1
        assert data["upcoming_events"] == 1
        assert data["recent_orders"][0]["order_number"] == order.order_number

    async def test_dashboard_requires_auth(self, async_client: AsyncClient):
        assert (await async_client.get("/api/v1/dashboard")).status_code == 401


class TestAdminStats:
    async def test_requires_admin(self, async_client: AsyncClient, auth_headers: dict):
        response = await async_client.get("/api/v1/admin/stats", headers=auth_headers)
        assert response.status_code == 403

    async def test_invalid_time_range(self, async_client: AsyncClient, admin_headers: dict):
        response = await async_client.get(
            "/api/v1/admin/stats", headers=admin_headers, params={"time_range": "2w"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid time_range. Must be one of: 7d, 30d, 90d, 1y"

    async def test_stats(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        test_user: User,
        published_book: Book,
        paid_course: Course,
        free_event: Event,
    ):
        order = await seed_activity(db_session, test_user, published_book, paid_course, free_event)
        await make_book(db_session, title="Quiet Shelf", status="draft")

        response = await async_client.get(
            "/api/v1/admin/stats", headers=admin_headers, params={"time_range": "7d"}
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["time_range"] == "7d"

        # test_user plus the admin
        assert data["users"]["total"] == 2
        assert data["users"]["by_role"] == {"reader": 1, "admin": 1}

        assert data["books"]["total"] == 2
        assert data["books"]["published"] == 1
        assert data["books"]["by_status"] == {"published": 1, "draft": 1}
        assert data["books"]["top_selling"][0]["id"] == published_book.id

        assert data["orders"]["total"] == 1
        assert data["orders"]["total_revenue"] == order.total_amount
        assert data["orders"]["recent"][0]["customer_name"] == test_user.name

        assert data["events"]["upcoming"] == 1
        assert data["events"]["recent"][0]["registration_count"] == 1
        assert data["courses"]["top_courses"][0]["enrollment_count"] == 1

        assert data["revenue"]["total"] == order.total_amount
        assert data["revenue"]["author_earnings"] == round(order.total_amount * 0.7, 2)
        assert data["revenue"]["platform_fees"] == round(order.total_amount * 0.3, 2)

        types = {item["type"] for item in data["recent_activity"]}
        assert types == {"order", "event_registration", "enrollment"}

    async def test_submission_queue(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        test_user: User,
    ):
        manuscript = dict(
            author_id=test_user.id,
            description="A family saga.",
            category="Fiction",
            price=3500.0,
            manuscript_file="https://files.example.com/manuscript.pdf",
            synopsis="Three generations on the river.",
            author_bio="Writer from Port Harcourt.",
            target_audience="Adult readers",
        )
        db_session.add_all([
            BookSubmission(title="Unpaid Draft", **manuscript),
            BookSubmission(
                title="Waiting",
                status="submitted",
                fee_payment_status=PaymentStatus.COMPLETED.value,
                **manuscript,
            ),
            BookSubmission(
                title="In Review",
                status="under_review",
                fee_payment_status=PaymentStatus.COMPLETED.value,
                **manuscript,
            ),
        ])
        await db_session.commit()

        response = await async_client.get("/api/v1/admin/stats", headers=admin_headers)
        submissions = response.json()["data"]["submissions"]
        assert submissions["total"] == 3
        assert submissions["new"] == 3
        assert submissions["by_status"] == {"draft": 1, "submitted": 1, "under_review": 1}
        assert submissions["pending_review"] == 2
        assert len(submissions["recent"]) == 3
        assert {s["author_name"] for s in submissions["recent"]} == {test_user.name}

    async def test_revenue_split_by_currency(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        test_user: User,
        published_book: Book,
        paid_course: Course,
        free_event: Event,
    ):
        order = await seed_activity(db_session, test_user, published_book, paid_course, free_event)
        import_book = await make_book(db_session, title="Northern Lights", price=20.0, currency="USD")
        usd_order = Order(
            order_number="ORD-000002SEED02",
            user_id=test_user.id,
            book_id=import_book.id,
            quantity=1,
            total_amount=20.0,
            currency="USD",
            status=OrderStatus.CONFIRMED.value,
            payment_status=PaymentStatus.COMPLETED.value,
            paid_at=datetime.now(timezone.utc),
        )
        db_session.add(usd_order)
        await db_session.flush()
        db_session.add(PaymentTransaction(
            reference="ORD-SEED-USD",
            provider="flutterwave",
            purpose="book_order",
            target_id=usd_order.id,
            user_id=test_user.id,
            customer_email=test_user.email,
            amount=20.0,
            currency="USD",
            status=PaymentStatus.COMPLETED.value,
        ))
        await db_session.commit()

        response = await async_client.get("/api/v1/admin/stats", headers=admin_headers)
        data = response.json()["data"]
        revenue = data["revenue"]
        assert revenue["currency"] == "NGN"
        assert revenue["total"] == order.total_amount
        assert revenue["by_currency"]["USD"]["total"] == 20.0
        assert revenue["by_currency"]["USD"]["author_earnings"] == 14.0
        assert set(revenue["by_currency"]) == {"NGN", "USD"}
        assert data["orders"]["total_revenue"] == order.total_amount

        usd = await async_client.get(
            "/api/v1/admin/stats", headers=admin_headers, params={"currency": "usd"}
        )
        usd_data = usd.json()["data"]
        assert usd_data["revenue"]["currency"] == "USD"
        assert usd_data["revenue"]["total"] == 20.0
        assert usd_data["revenue"]["platform_fees"] == 6.0
        assert usd_data["orders"]["total_revenue"] == 20.0


class TestMonitoring:
    async def test_requires_admin(self, async_client: AsyncClient, author_headers: dict):
        response = await async_client.get("/api/v1/admin/monitoring", headers=author_headers)
        assert response.status_code == 403

    async def test_overview(self, async_client: AsyncClient, admin_headers: dict):
        await async_client.get("/api/v1/books")
        await async_client.get("/api/v1/books/missing-book")

        response = await async_client.get(
            "/api/v1/admin/monitoring",
            headers=admin_headers,
            params={"details": True, "time_window": 600_000},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["time_window"] == 600_000
        assert data["overview"]["total_requests"] >= 2
        assert data["system"]["checks"]["database"]["status"] == "healthy"
        assert data["system"]["checks"]["cache"]["details"]["backend"] == "memory"
        assert data["system"]["payment_providers"] == {"paystack": True, "flutterwave": True}
        assert data["database"]["books"] == 0
        assert data["cache"]["backend"] == "memory"

    async def test_database_counts_only_with_details(
        self, async_client: AsyncClient, admin_headers: dict
    ):
        response = await async_client.get("/api/v1/admin/monitoring", headers=admin_headers)
        assert response.json()["data"]["database"] is None

    async def test_time_window_bounds(self, async_client: AsyncClient, admin_headers: dict):
        response = await async_client.get(
            "/api/v1/admin/monitoring", headers=admin_headers, params={"time_window": 10}
        )
        assert response.status_code == 400

    async def test_invalid_action(self, async_client: AsyncClient, admin_headers: dict):
        response = await async_client.post(
            "/api/v1/admin/monitoring", headers=admin_headers, json={"action": "reboot"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid action"

    async def test_resolve_unknown_alert(self, async_client: AsyncClient, admin_headers: dict):
        response = await async_client.post(
            "/api/v1/admin/monitoring",
            headers=admin_headers,
            json={"action": "resolve", "alert_id": "nope"},
        )
        assert response.status_code == 404
        assert response.json()["error"] == "Alert not found"

    async def test_resolve_alert(self, async_client: AsyncClient, admin_headers: dict):
        from main import app

        tracker = app.state.error_tracker
        tracker.log_error("Gateway down", metadata={"path": "/api/v1/payments/initialize"})
        alert_id = tracker.get_alerts()[0]["id"]

        response = await async_client.post(
            "/api/v1/admin/monitoring",
            headers=admin_headers,
            json={"action": "resolve", "alert_id": alert_id},
        )
        assert response.json() == {"success": True, "message": "Alert resolved"}
        assert tracker.get_alerts() == []

    async def test_clear_cache(
        self, async_client: AsyncClient, admin_headers: dict, published_book: Book
    ):
        await async_client.get("/api/v1/books")
        response = await async_client.post(
            "/api/v1/admin/monitoring", headers=admin_headers, json={"action": "clear_cache"}
        )
        body = response.json()
        assert body["success"] is True
        assert body["removed"] == 1

        again = await async_client.get("/api/v1/books")
        assert again.json()["cached"] is False

    async def test_cleanup_logs(self, async_client: AsyncClient, admin_headers: dict):
        response = await async_client.post(
            "/api/v1/admin/monitoring", headers=admin_headers, json={"action": "cleanup_logs"}
        )
        removed = response.json()["removed"]
        assert removed["errors_removed"] == 0
        assert "samples_removed" in removed

    async def test_book_list_timings_reported(
        self, async_client: AsyncClient, admin_headers: dict, published_book: Book
    ):
        await async_client.get("/api/v1/books")
        await async_client.get("/api/v1/books")

        response = await async_client.get("/api/v1/admin/monitoring", headers=admin_headers)
        performance = response.json()["data"]["performance"]
        assert performance["performance"]["books.list.query"]["count"] == 1
        assert performance["performance"]["books.list.ratings"]["count"] == 1
        assert performance["database"]["cache_lookups"] == 2
        assert performance["database"]["cache_hit_rate"] == 50.0

    async def test_insights_follow_time_window(self, async_client: AsyncClient, admin_headers: dict):
        from main import app

        now = [10 * DAY_MS]
        tracker = ErrorTracker(clock=lambda: now[0])
        app.state.error_tracker = tracker
        tracker.log_error("Validation failed for field price")
        now[0] += 2 * HOUR_MS

        recent = await async_client.get(
            "/api/v1/admin/monitoring", headers=admin_headers, params={"time_window": HOUR_MS}
        )
        assert recent.json()["data"]["errors"]["insights"]["total_errors"] == 0

        wider = await async_client.get(
            "/api/v1/admin/monitoring", headers=admin_headers, params={"time_window": 3 * HOUR_MS}
        )
        insights = wider.json()["data"]["errors"]["insights"]
        assert insights["total_errors"] == 1
        assert insights["patterns"]["validation_errors"] == 1


class TestHealth:
    async def test_health(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["app"] == "Inkwell Publishing API"

    async def test_health_db(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/db")
        assert response.json()["database"] == "connected"

    async def test_health_redis_without_redis(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/redis")
        assert response.json() == {"status": "degraded", "service": "redis", "backend": "memory"}

    async def test_readiness_and_liveness(self, async_client: AsyncClient):
        ready = await async_client.get("/api/v1/health/ready")
        assert ready.json() == {"ready": True, "database": "ok", "redis": "degraded"}
        live = await async_client.get("/api/v1/health/live")
        assert live.json() == {"alive": True}

    async def test_services_requires_admin(
        self, async_client: AsyncClient, auth_headers: dict, admin_headers: dict
    ):
        assert (
            await async_client.get("/api/v1/health/services", headers=auth_headers)
        ).status_code == 403
        response = await async_client.get("/api/v1/health/services", headers=admin_headers)
        assert set(response.json()["services"]) >= {"paystack", "flutterwave", "resend"}


class TestErrorHandling:
    async def test_request_id_and_security_headers(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Request-ID"]
        assert response.headers["X-Response-Time"].endswith("ms")

    async def test_valid_request_id_is_echoed(self, async_client: AsyncClient):
        request_id = "0b6f2c4e-8d1a-4c1b-9f3e-2a7d5e6f8a90"
        response = await async_client.get("/api/v1/health", headers={"X-Request-ID": request_id})
        assert response.headers["X-Request-ID"] == request_id

        response = await async_client.get("/api/v1/health", headers={"X-Request-ID": "<script>"})
        assert response.headers["X-Request-ID"] != "<script>"

    async def test_oversized_body_rejected(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/auth/login",
            content=b"{}",
            headers={"Content-Type": "application/json", "Content-Length": str(6 * 1024 * 1024)},
        )
        assert response.status_code == 413
        assert response.json() == {"success": False, "error": "Request body too large (max 5MB)"}

    async def test_unhandled_error_envelope(self, async_client: AsyncClient, admin_headers: dict):
        from main import app

        def broken_cache():
            raise RuntimeError("cache backend exploded")

        app.dependency_overrides[get_cache] = broken_cache
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/v1/admin/monitoring", headers=admin_headers)

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Internal server error"
        assert response.headers["X-Error-ID"] == body["error_id"]

        stats = app.state.error_tracker.get_error_stats()
        assert stats["total"] == 1
        assert stats["recent_errors"][0]["message"] == "cache backend exploded"
        assert stats["by_path"] == {"/api/v1/admin/monitoring": 1}

    async def test_unknown_route(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/nowhere")
        assert response.status_code == 404
        assert response.json()["success"] is False

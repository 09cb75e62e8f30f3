"""Integration tests for coupon management, validation and redemption on orders."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import Book, Coupon, CouponUsage, User
from conftest import make_book

pytestmark = pytest.mark.asyncio


async def make_coupon(db: AsyncSession, **overrides) -> Coupon:
    fields = dict(
        code="READMORE",
        name="Read more",
        type="percentage",
        value=20.0,
        starts_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    fields.update(overrides)
    coupon = Coupon(**fields)
    db.add(coupon)
    await db.commit()
    await db.refresh(coupon)
    return coupon


async def order_with(client: AsyncClient, headers: dict, book: Book, code: str):
    return await client.post(
        "/api/v1/orders", headers=headers, json={"book_id": book.id, "coupon_code": code}
    )


class TestCouponAdmin:
    async def test_create_uppercases_code(self, async_client: AsyncClient, admin_headers: dict):
        response = await async_client.post(
            "/api/v1/admin/coupons",
            headers=admin_headers,
            json={
                "code": "launch-week",
                "name": "Launch week",
                "type": "fixed",
                "value": 500,
                "starts_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["code"] == "LAUNCH-WEEK"
        assert data["usage_count"] == 0
        assert data["applies_to"] == "all"

    async def test_duplicate_code_conflicts(
        self, async_client: AsyncClient, db_session: AsyncSession, admin_headers: dict
    ):
        await make_coupon(db_session)
        response = await async_client.post(
            "/api/v1/admin/coupons",
            headers=admin_headers,
            json={
                "code": "readmore",
                "name": "Again",
                "type": "fixed",
                "value": 100,
                "starts_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        assert response.status_code == 409
        assert response.json()["error"] == "Coupon code already exists"

    async def test_percentage_over_100_rejected(
        self, async_client: AsyncClient, admin_headers: dict
    ):
        response = await async_client.post(
            "/api/v1/admin/coupons",
            headers=admin_headers,
            json={
                "code": "TOOMUCH",
                "name": "Too much",
                "type": "percentage",
                "value": 150,
                "starts_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        assert response.status_code == 400
        assert response.json()["error"] == "A percentage coupon cannot exceed 100"

    async def test_specific_scope_needs_items(
        self, async_client: AsyncClient, admin_headers: dict
    ):
        response = await async_client.post(
            "/api/v1/admin/coupons",
            headers=admin_headers,
            json={
                "code": "NOBOOKS",
                "name": "No books",
                "type": "fixed",
                "value": 100,
                "applies_to": "specific",
                "starts_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Specific coupons need at least one applicable book"

    async def test_requires_admin(self, async_client: AsyncClient, auth_headers: dict):
        response = await async_client.get("/api/v1/admin/coupons", headers=auth_headers)
        assert response.status_code == 403

    async def test_list_by_status(
        self, async_client: AsyncClient, db_session: AsyncSession, admin_headers: dict
    ):
        now = datetime.now(timezone.utc)
        await make_coupon(db_session)
        await make_coupon(db_session, code="OLD", expires_at=now - timedelta(hours=1))
        await make_coupon(db_session, code="OFF", is_active=False)

        async def codes(status: str) -> list[str]:
            response = await async_client.get(
                "/api/v1/admin/coupons", headers=admin_headers, params={"status": status}
            )
            return [c["code"] for c in response.json()["data"]["coupons"]]

        assert await codes("active") == ["READMORE"]
        assert await codes("expired") == ["OLD"]
        assert await codes("inactive") == ["OFF"]

    async def test_update_and_delete(
        self, async_client: AsyncClient, db_session: AsyncSession, admin_headers: dict
    ):
        coupon = await make_coupon(db_session)
        path = f"/api/v1/admin/coupons/{coupon.id}"

        updated = await async_client.put(
            path, headers=admin_headers, json={"value": 30, "is_active": False}
        )
        assert updated.json()["data"]["value"] == 30.0
        assert updated.json()["data"]["is_active"] is False

        deleted = await async_client.delete(path, headers=admin_headers)
        assert deleted.json() == {"success": True, "message": "Coupon deleted successfully"}

        missing = await async_client.get(path, headers=admin_headers)
        assert missing.status_code == 404
        assert missing.json()["error"] == "Coupon not found"


class TestCouponValidation:
    async def test_preview_discount(
        self, async_client: AsyncClient, db_session: AsyncSession, auth_headers: dict
    ):
        await make_coupon(db_session, max_discount_amount=300.0)
        response = await async_client.post(
            "/api/v1/coupons/validate",
            headers=auth_headers,
            json={"code": "readmore", "order_amount": 2500},
        )
        data = response.json()["data"]
        assert data["coupon"]["code"] == "READMORE"
        assert data["discount"] == 300.0
        assert data["final_amount"] == 2200.0

    async def test_unknown_code(self, async_client: AsyncClient, auth_headers: dict):
        response = await async_client.post(
            "/api/v1/coupons/validate",
            headers=auth_headers,
            json={"code": "NOPE", "order_amount": 2500},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid coupon code"

    async def test_expired(
        self, async_client: AsyncClient, db_session: AsyncSession, auth_headers: dict
    ):
        await make_coupon(
            db_session, expires_at=datetime.now(timezone.utc) - timedelta(minutes=5)
        )
        response = await async_client.post(
            "/api/v1/coupons/validate",
            headers=auth_headers,
            json={"code": "READMORE", "order_amount": 2500},
        )
        assert response.json()["error"] == "This coupon has expired"

    async def test_minimum_order_amount(
        self, async_client: AsyncClient, db_session: AsyncSession, auth_headers: dict
    ):
        await make_coupon(db_session, min_order_amount=5000.0)
        response = await async_client.post(
            "/api/v1/coupons/validate",
            headers=auth_headers,
            json={"code": "READMORE", "order_amount": 2500},
        )
        assert response.json()["error"] == "Minimum order amount of 5000 required"

    async def test_specific_book_only(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
    ):
        other = await make_book(db_session, title="Purple Hibiscus")
        await make_coupon(db_session, applies_to="specific", applicable_items=[published_book.id])

        response = await async_client.post(
            "/api/v1/coupons/validate",
            headers=auth_headers,
            json={"code": "READMORE", "order_amount": 2500, "book_id": other.id},
        )
        assert response.json()["error"] == (
            "This coupon is not applicable to the items in your order"
        )

    async def test_requires_auth(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/coupons/validate", json={"code": "READMORE", "order_amount": 2500}
        )
        assert response.status_code == 401


class TestCouponRedemption:
    async def test_order_total_discounted(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
        test_user: User,
    ):
        coupon = await make_coupon(db_session)

        response = await order_with(async_client, auth_headers, published_book, "readmore")
        assert response.status_code == 201
        order = response.json()["data"]
        assert order["total_amount"] == 2000.0
        assert order["discount_amount"] == 500.0
        assert order["coupon_code"] == "READMORE"

        await db_session.refresh(coupon)
        assert coupon.usage_count == 1
        usage = (await db_session.execute(
            select(CouponUsage).where(CouponUsage.coupon_id == coupon.id)
        )).scalar_one()
        assert usage.user_id == test_user.id
        assert usage.order_id == order["id"]
        assert usage.discount_amount == 500.0

    async def test_per_user_limit(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        other_headers: dict,
        published_book: Book,
    ):
        await make_coupon(db_session)
        first = await order_with(async_client, auth_headers, published_book, "READMORE")
        assert first.status_code == 201

        again = await order_with(async_client, auth_headers, published_book, "READMORE")
        assert again.status_code == 400
        assert again.json()["error"] == "You have already used this coupon 1 time"

        someone_else = await order_with(async_client, other_headers, published_book, "READMORE")
        assert someone_else.status_code == 201

    async def test_usage_limit(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        other_headers: dict,
        published_book: Book,
    ):
        await make_coupon(db_session, usage_limit=1)
        assert (
            await order_with(async_client, auth_headers, published_book, "READMORE")
        ).status_code == 201

        response = await order_with(async_client, other_headers, published_book, "READMORE")
        assert response.json()["error"] == "This coupon has reached its usage limit"

    async def test_full_price_coupon_rejected(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
    ):
        await make_coupon(db_session, type="fixed", value=published_book.price + 100)
        response = await order_with(async_client, auth_headers, published_book, "READMORE")
        assert response.status_code == 400
        assert response.json()["error"] == "Coupon cannot cover the full price of a book"

    async def test_inactive_coupon_blocks_order(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
    ):
        await make_coupon(db_session, is_active=False)
        response = await order_with(async_client, auth_headers, published_book, "READMORE")
        assert response.status_code == 400
        assert response.json()["error"] == "This coupon is no longer active"

        orders = await async_client.get("/api/v1/orders", headers=auth_headers)
        assert orders.json()["data"]["pagination"]["total"] == 0

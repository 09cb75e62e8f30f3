"""Integration tests for orders, payment checkout, verification and webhooks."""

import hashlib
import hmac
import json

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import Book, Order, PaymentTransaction, User
from conftest import FLUTTERWAVE_TEST_HASH, PAYSTACK_TEST_SECRET, make_book

pytestmark = pytest.mark.asyncio


SHIPPING = {
    "line1": "12 Admiralty Way",
    "city": "Lagos",
    "state": "Lagos",
    "country": "NG",
}


async def create_order(client: AsyncClient, headers: dict, book: Book) -> dict:
    response = await client.post(
        "/api/v1/orders",
        headers=headers,
        json={"book_id": book.id, "shipping_address": SHIPPING},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def start_checkout(client: AsyncClient, headers: dict, order_id: str, **extra) -> dict:
    response = await client.post(
        "/api/v1/payments/initialize",
        headers=headers,
        json={"order_id": order_id, **extra},
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


def paystack_signature(body: bytes) -> str:
    return hmac.new(PAYSTACK_TEST_SECRET.encode(), body, hashlib.sha512).hexdigest()


class TestOrders:
    async def test_create_order(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book, test_user: User
    ):
        order = await create_order(async_client, auth_headers, published_book)
        assert order["order_number"].startswith("ORD-")
        assert len(order["order_number"]) == 16
        assert order["user_id"] == test_user.id
        assert order["total_amount"] == published_book.price
        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["shipping_address"]["city"] == "Lagos"
        # Billing defaults to the shipping address
        assert order["billing_address"] == order["shipping_address"]
        assert order["book"]["id"] == published_book.id

    async def test_free_book_cannot_be_ordered(
        self, async_client: AsyncClient, auth_headers: dict, free_book: Book
    ):
        response = await async_client.post(
            "/api/v1/orders", headers=auth_headers, json={"book_id": free_book.id}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Free books do not need to be ordered"

    async def test_draft_book_cannot_be_ordered(
        self, async_client: AsyncClient, auth_headers: dict, draft_book: Book
    ):
        response = await async_client.post(
            "/api/v1/orders", headers=auth_headers, json={"book_id": draft_book.id}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Book is not available for purchase"

    async def test_out_of_stock(
        self, async_client: AsyncClient, db_session: AsyncSession, auth_headers: dict
    ):
        book = await make_book(db_session, title="Sold Out", stock=0)
        response = await async_client.post(
            "/api/v1/orders", headers=auth_headers, json={"book_id": book.id}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Book is out of stock"

    async def test_list_own_orders_only(
        self,
        async_client: AsyncClient,
        auth_headers: dict,
        other_headers: dict,
        admin_headers: dict,
        published_book: Book,
    ):
        await create_order(async_client, auth_headers, published_book)
        await create_order(async_client, other_headers, published_book)

        mine = await async_client.get("/api/v1/orders", headers=auth_headers)
        assert mine.json()["data"]["pagination"]["total"] == 1

        everything = await async_client.get("/api/v1/orders", headers=admin_headers)
        assert everything.json()["data"]["pagination"]["total"] == 2

    async def test_search_by_book_title(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book
    ):
        await create_order(async_client, auth_headers, published_book)
        hit = await async_client.get(
            "/api/v1/orders", headers=auth_headers, params={"search": "river"}
        )
        miss = await async_client.get(
            "/api/v1/orders", headers=auth_headers, params={"search": "ocean"}
        )
        assert len(hit.json()["data"]["orders"]) == 1
        assert miss.json()["data"]["orders"] == []

    async def test_other_users_order_is_hidden(
        self,
        async_client: AsyncClient,
        auth_headers: dict,
        other_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        response = await async_client.get(f"/api/v1/orders/{order['id']}", headers=other_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "Order not found"

    async def test_owner_can_cancel_pending_order(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book
    ):
        order = await create_order(async_client, auth_headers, published_book)
        response = await async_client.put(
            f"/api/v1/orders/{order['id']}", headers=auth_headers, json={"status": "cancelled"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"

    async def test_owner_cannot_ship_order(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book
    ):
        order = await create_order(async_client, auth_headers, published_book)
        response = await async_client.put(
            f"/api/v1/orders/{order['id']}", headers=auth_headers, json={"status": "shipped"}
        )
        assert response.status_code == 403

    async def test_admin_updates_tracking(
        self,
        async_client: AsyncClient,
        auth_headers: dict,
        admin_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        response = await async_client.put(
            f"/api/v1/orders/{order['id']}",
            headers=admin_headers,
            json={"status": "shipped", "tracking_number": "GIG-88812"},
        )
        data = response.json()["data"]
        assert data["status"] == "shipped"
        assert data["tracking_number"] == "GIG-88812"


class TestPaymentInitialization:
    async def test_initialize_paystack(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
        fake_paystack,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        data = await start_checkout(async_client, auth_headers, order["id"])

        assert data["provider"] == "paystack"
        assert data["reference"].startswith("ORD-")
        assert data["payment_url"].endswith(data["reference"])
        assert data["amount"] == published_book.price
        assert data["currency"] == "NGN"
        assert fake_paystack.initialized[0]["callback_url"].startswith("http://localhost:3000")
        assert fake_paystack.initialized[0]["metadata"]["purpose"] == "book_order"

        transaction = (await db_session.execute(
            select(PaymentTransaction).where(PaymentTransaction.reference == data["reference"])
        )).scalar_one()
        assert transaction.status == "pending"
        assert transaction.target_id == order["id"]

        stored = await db_session.get(Order, order["id"])
        await db_session.refresh(stored)
        assert stored.payment_reference == data["reference"]
        assert stored.payment_provider == "paystack"

    async def test_initialize_flutterwave_usd(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book, fake_flutterwave
    ):
        order = await create_order(async_client, auth_headers, published_book)
        data = await start_checkout(
            async_client, auth_headers, order["id"], provider="flutterwave", currency="usd"
        )
        assert data["provider"] == "flutterwave"
        assert data["currency"] == "USD"
        assert fake_flutterwave.initialized[0]["currency"] == "USD"

    async def test_unsupported_currency_for_provider(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book
    ):
        order = await create_order(async_client, auth_headers, published_book)
        response = await async_client.post(
            "/api/v1/payments/initialize",
            headers=auth_headers,
            json={"order_id": order["id"], "provider": "paystack", "currency": "EUR"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "paystack does not support EUR payments"

    async def test_cannot_pay_for_someone_elses_order(
        self,
        async_client: AsyncClient,
        auth_headers: dict,
        other_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        response = await async_client.post(
            "/api/v1/payments/initialize", headers=other_headers, json={"order_id": order["id"]}
        )
        assert response.status_code == 403

    async def test_unknown_order(self, async_client: AsyncClient, auth_headers: dict):
        response = await async_client.post(
            "/api/v1/payments/initialize", headers=auth_headers, json={"order_id": "missing"}
        )
        assert response.status_code == 404

    async def test_provider_failure(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book, fake_paystack
    ):
        fake_paystack.fail_initialize = True
        order = await create_order(async_client, auth_headers, published_book)
        response = await async_client.post(
            "/api/v1/payments/initialize", headers=auth_headers, json={"order_id": order["id"]}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Payment initialization failed"


class TestPaymentVerification:
    async def test_successful_verification_settles_order(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])

        response = await async_client.get(
            f"/api/v1/payments/verify/paystack/{checkout['reference']}", headers=auth_headers
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["successful"] is True
        assert data["provider_status"] == "success"
        assert data["transaction"]["status"] == "completed"
        assert data["transaction"]["verified_at"] is not None

        settled = await async_client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers)
        assert settled.json()["data"]["status"] == "confirmed"
        assert settled.json()["data"]["payment_status"] == "completed"
        assert settled.json()["data"]["paid_at"] is not None

        await db_session.refresh(published_book)
        assert published_book.sales_count == 1
        assert published_book.total_revenue == published_book.price
        assert published_book.stock == 9

    async def test_verification_is_idempotent(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])

        for _ in range(2):
            await async_client.get(
                f"/api/v1/payments/verify/paystack/{checkout['reference']}", headers=auth_headers
            )

        await db_session.refresh(published_book)
        assert published_book.sales_count == 1
        assert published_book.stock == 9

    async def test_failed_verification(
        self,
        async_client: AsyncClient,
        auth_headers: dict,
        published_book: Book,
        fake_paystack,
    ):
        fake_paystack.verification_status = "abandoned"
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])

        response = await async_client.get(
            f"/api/v1/payments/verify/paystack/{checkout['reference']}", headers=auth_headers
        )
        body = response.json()
        assert body["data"]["successful"] is False
        assert body["data"]["transaction"]["status"] == "failed"
        assert body["message"] == "Payment not completed"

        stored = await async_client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers)
        assert stored.json()["data"]["payment_status"] == "failed"
        assert stored.json()["data"]["status"] == "pending"

    async def test_underpaid_verification_not_settled(
        self,
        async_client: AsyncClient,
        auth_headers: dict,
        published_book: Book,
        fake_paystack,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])
        fake_paystack.reported_amount = published_book.price / 2

        response = await async_client.get(
            f"/api/v1/payments/verify/paystack/{checkout['reference']}", headers=auth_headers
        )
        body = response.json()
        assert body["data"]["successful"] is False
        assert body["data"]["provider_status"] == "success"
        assert body["data"]["transaction"]["status"] == "failed"

        stored = await async_client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers)
        assert stored.json()["data"]["payment_status"] == "failed"
        assert stored.json()["data"]["status"] == "pending"

    async def test_pending_verification_leaves_state(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book, fake_paystack
    ):
        fake_paystack.verification_status = "ongoing"
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])

        response = await async_client.get(
            f"/api/v1/payments/verify/paystack/{checkout['reference']}", headers=auth_headers
        )
        assert response.json()["data"]["transaction"]["status"] == "pending"

    async def test_unknown_reference(self, async_client: AsyncClient, auth_headers: dict):
        response = await async_client.get(
            "/api/v1/payments/verify/paystack/ORD-0-NOPE", headers=auth_headers
        )
        assert response.status_code == 404
        assert response.json()["error"] == "Payment not found"

    async def test_other_user_cannot_verify(
        self,
        async_client: AsyncClient,
        auth_headers: dict,
        other_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])
        response = await async_client.get(
            f"/api/v1/payments/verify/paystack/{checkout['reference']}", headers=other_headers
        )
        assert response.status_code == 404

    async def test_provider_mismatch(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])
        response = await async_client.get(
            f"/api/v1/payments/verify/flutterwave/{checkout['reference']}", headers=auth_headers
        )
        assert response.status_code == 400

    async def test_provider_unreachable(
        self, async_client: AsyncClient, auth_headers: dict, published_book: Book, fake_paystack
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])
        fake_paystack.fail_verify = True
        response = await async_client.get(
            f"/api/v1/payments/verify/paystack/{checkout['reference']}", headers=auth_headers
        )
        assert response.status_code == 502
        assert response.json()["error"] == "Could not verify payment with provider"


class TestPaystackWebhook:
    async def test_charge_success_settles_order(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])

        body = json.dumps({
            "event": "charge.success",
            "data": {"reference": checkout["reference"], "status": "success", "amount": 250000},
        }).encode()
        response = await async_client.post(
            "/api/v1/webhooks/paystack",
            content=body,
            headers={"x-paystack-signature": paystack_signature(body), "content-type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json()["reference"] == checkout["reference"]

        stored = await db_session.get(Order, order["id"])
        await db_session.refresh(stored)
        assert stored.payment_status == "completed"
        assert stored.status == "confirmed"

    async def test_underpaid_charge_rejected(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(async_client, auth_headers, order["id"])

        body = json.dumps({
            "event": "charge.success",
            "data": {"reference": checkout["reference"], "status": "success", "amount": 100},
        }).encode()
        response = await async_client.post(
            "/api/v1/webhooks/paystack",
            content=body,
            headers={"x-paystack-signature": paystack_signature(body), "content-type": "application/json"},
        )
        assert response.status_code == 200

        stored = await db_session.get(Order, order["id"])
        await db_session.refresh(stored)
        assert stored.payment_status == "failed"
        assert stored.status == "pending"
        book = await db_session.get(Book, published_book.id)
        await db_session.refresh(book)
        assert book.sales_count == 0

    async def test_invalid_signature(self, async_client: AsyncClient):
        body = json.dumps({"event": "charge.success", "data": {}}).encode()
        response = await async_client.post(
            "/api/v1/webhooks/paystack",
            content=body,
            headers={"x-paystack-signature": "0" * 128},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid signature"

    async def test_missing_signature(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/webhooks/paystack", content=b"{}")
        assert response.status_code == 400

    async def test_unhandled_event_acknowledged(self, async_client: AsyncClient):
        body = json.dumps({"event": "transfer.success", "data": {"reference": "TRF-1"}}).encode()
        response = await async_client.post(
            "/api/v1/webhooks/paystack",
            content=body,
            headers={"x-paystack-signature": paystack_signature(body)},
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Event acknowledged"

    async def test_unknown_reference_is_ignored(self, async_client: AsyncClient):
        body = json.dumps({
            "event": "charge.success",
            "data": {"reference": "ORD-1-UNKNOWN", "status": "success"},
        }).encode()
        response = await async_client.post(
            "/api/v1/webhooks/paystack",
            content=body,
            headers={"x-paystack-signature": paystack_signature(body)},
        )
        assert response.status_code == 200
        assert response.json()["reference"] == "ORD-1-UNKNOWN"

    async def test_malformed_json(self, async_client: AsyncClient):
        body = b"not json"
        response = await async_client.post(
            "/api/v1/webhooks/paystack",
            content=body,
            headers={"x-paystack-signature": paystack_signature(body)},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid webhook payload"


class TestFlutterwaveWebhook:
    async def test_charge_completed(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(
            async_client, auth_headers, order["id"], provider="flutterwave"
        )

        response = await async_client.post(
            "/api/v1/webhooks/flutterwave",
            json={
                "event": "charge.completed",
                "data": {
                    "tx_ref": checkout["reference"],
                    "status": "successful",
                    "amount": published_book.price,
                    "currency": "NGN",
                },
            },
            headers={"verif-hash": FLUTTERWAVE_TEST_HASH},
        )
        assert response.status_code == 200

        stored = await db_session.get(Order, order["id"])
        await db_session.refresh(stored)
        assert stored.payment_status == "completed"
        assert stored.payment_provider == "flutterwave"

    async def test_failed_charge(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        auth_headers: dict,
        published_book: Book,
    ):
        order = await create_order(async_client, auth_headers, published_book)
        checkout = await start_checkout(
            async_client, auth_headers, order["id"], provider="flutterwave"
        )

        await async_client.post(
            "/api/v1/webhooks/flutterwave",
            json={"event": "charge.completed", "data": {"tx_ref": checkout["reference"], "status": "failed"}},
            headers={"verif-hash": FLUTTERWAVE_TEST_HASH},
        )

        transaction = (await db_session.execute(
            select(PaymentTransaction).where(PaymentTransaction.reference == checkout["reference"])
        )).scalar_one()
        await db_session.refresh(transaction)
        assert transaction.status == "failed"

    async def test_wrong_hash(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/webhooks/flutterwave",
            json={"event": "charge.completed", "data": {}},
            headers={"verif-hash": "nope"},
        )
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Invalid signature"}

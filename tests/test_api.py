"""HTTP surface through httpx.ASGITransport (lifespan not run)."""
from __future__ import annotations

import uuid

import httpx
import pytest

from gateway.main import app
from gateway.shared.models import TransactionStatus
from tests.conftest import make_user


@pytest.fixture
async def client(gateway):
    app.state.gateway = gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


def as_user(user) -> dict[str, str]:
    return {"X-User-Id": str(user.id)}


def webhook_body(order_code: int, code: str = "00", signature: str = "valid-signature") -> dict:
    return {
        "code": "00",
        "desc": "success",
        "success": True,
        "data": {"orderCode": order_code, "amount": 100_000, "code": code, "desc": "success"},
        "signature": signature,
    }


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_create_transaction_then_payment_link(client, gateway, user):
    response = await client.post(
        "/transactions", json={"amount": 100_000, "description": "Order #9"}, headers=as_user(user)
    )
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "pending"
    assert created["user"]["email"] == user.email

    await gateway.bus.drain()
    detail = (await client.get(f"/transactions/{created['id']}")).json()
    assert detail["status"] == "awaiting_payment"
    assert detail["external_transaction_id"] is not None
    assert len(detail["events"]) == 3


async def test_create_requires_caller_identity(client):
    missing = await client.post("/transactions", json={"amount": 1000})
    assert missing.status_code == 422

    malformed = await client.post("/transactions", json={"amount": 1000}, headers={"X-User-Id": "nope"})
    assert malformed.status_code == 400
    assert malformed.json()["error"] == "validation_error"


async def test_create_rejects_non_positive_amount(client, user):
    response = await client.post("/transactions", json={"amount": 0}, headers=as_user(user))
    assert response.status_code == 422


async def test_unknown_transaction_is_404(client):
    response = await client.get(f"/transactions/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


async def test_listing_stats_and_delete(client, gateway, user, session_factory):
    other = await make_user(session_factory)
    ids = []
    for amount in (50_000, 20_000):
        response = await client.post("/transactions", json={"amount": amount}, headers=as_user(user))
        ids.append(response.json()["id"])
        await gateway.bus.drain()
    await client.post("/transactions", json={"amount": 1}, headers=as_user(other))
    await gateway.bus.drain()
    await gateway.transactions.update_status(uuid.UUID(ids[0]), TransactionStatus.completed)

    listing = (await client.get(f"/transactions/user/{user.id}", params={"limit": 1})).json()
    assert listing["meta"]["total"] == 2
    assert listing["meta"]["totalPages"] == 2
    assert listing["meta"]["hasNextPage"] is True

    stats = (await client.get("/transactions/stats", params={"user_id": str(user.id)})).json()
    assert stats == {"total": 2, "completed": 1, "pending": 1, "failed": 0, "totalAmount": 50_000}

    patched = await client.patch(f"/transactions/{ids[0]}", json={"status": "pending"})
    assert patched.status_code == 409
    assert patched.json()["error"] == "invalid_transition"

    deleted = await client.delete(f"/transactions/{ids[1]}")
    assert deleted.status_code == 200
    assert deleted.json() == {"message": "Transaction deleted successfully", "id": ids[1]}
    assert (await client.get(f"/transactions/{ids[1]}")).status_code == 404


async def test_payment_method_lifecycle(client, session_factory, user):
    body = {"type": "card", "provider": "stripe", "token": "tok_visa_4242", "last_four": "4242"}

    created = await client.post("/payment-methods", json=body, headers=as_user(user))
    assert created.status_code == 201
    method_id = created.json()["id"]

    duplicate = await client.post("/payment-methods", json=body, headers=as_user(user))
    assert duplicate.status_code == 409

    mine = (await client.get("/payment-methods/me", headers=as_user(user))).json()
    assert [m["id"] for m in mine["data"]] == [method_id]

    stranger = await make_user(session_factory)
    forbidden = await client.delete(f"/payment-methods/{method_id}", headers=as_user(stranger))
    assert forbidden.status_code == 403

    deleted = await client.delete(f"/payment-methods/{method_id}", headers=as_user(user))
    assert deleted.status_code == 200
    assert deleted.json()["payment_method"]["last_four"] == "4242"
    assert (await client.get(f"/payment-methods/{method_id}")).status_code == 404


async def test_webhook_requires_valid_signature(client):
    response = await client.post("/payos/webhook", json=webhook_body(1, signature="forged"))
    assert response.status_code == 401
    assert response.json()["error"] == "invalid_signature"


async def test_webhook_settles_once(client, gateway, user, provider):
    created = await client.post("/transactions", json={"amount": 100_000}, headers=as_user(user))
    await gateway.bus.drain()
    order_code = provider.created[0]["order_code"]

    first = await client.post("/payos/webhook", json=webhook_body(order_code))
    second = await client.post("/payos/webhook", json=webhook_body(order_code))
    await gateway.bus.drain()

    assert first.status_code == 200
    assert first.json()["changed"] is True
    assert second.status_code == 200
    assert second.json() == {
        "success": True,
        "transaction_id": created.json()["id"],
        "status": "completed",
        "changed": False,
    }


async def test_patch_cannot_null_required_fields(client, gateway, user):
    created = (await client.post("/transactions", json={"amount": 1000}, headers=as_user(user))).json()
    await gateway.bus.drain()

    response = await client.patch(f"/transactions/{created['id']}", json={"amount": None})

    assert response.status_code == 400
    assert response.json() == {"error": "validation_error", "detail": "amount cannot be null"}
    assert (await client.get(f"/transactions/{created['id']}")).json()["amount"] == 1000


async def test_payment_method_update_and_admin_listing(client, session_factory, user):
    stranger = await make_user(session_factory)
    mine = await client.post(
        "/payment-methods", json={"type": "card", "token": "tok_a", "last_four": "1111"}, headers=as_user(user)
    )
    await client.post("/payment-methods", json={"type": "momo", "token": "tok_b"}, headers=as_user(stranger))
    method_id = mine.json()["id"]

    updated = await client.patch(
        f"/payment-methods/{method_id}",
        json={"last_four": "2222", "is_default": True},
        headers=as_user(user),
    )
    assert updated.status_code == 200
    assert updated.json()["last_four"] == "2222"
    assert updated.json()["is_default"] is True

    forbidden = await client.patch(f"/payment-methods/{method_id}", json={"last_four": "3333"}, headers=as_user(stranger))
    assert forbidden.status_code == 403

    taken = await client.patch(f"/payment-methods/{method_id}", json={"token": "tok_b"}, headers=as_user(user))
    assert taken.status_code == 409
    assert taken.json()["detail"] == "Payment method token already exists"

    cleared = await client.patch(f"/payment-methods/{method_id}", json={"token": None}, headers=as_user(user))
    assert cleared.status_code == 400

    missing = await client.patch(f"/payment-methods/{uuid.uuid4()}", json={"last_four": "4444"}, headers=as_user(user))
    assert missing.status_code == 404

    listing = (await client.get("/payment-methods")).json()
    assert listing["meta"]["total"] == 2
    momo = (await client.get("/payment-methods", params={"type": "momo"})).json()
    assert [m["user_id"] for m in momo["data"]] == [str(stranger.id)]


async def test_user_lifecycle(client, gateway, session_factory):
    created = await client.post("/user", json={"email": "an@example.com", "full_name": "Tran Thi An"})
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "active"
    assert body["kyc_verified"] is False
    user_id = body["id"]
    headers = {"X-User-Id": user_id}

    duplicate = await client.post("/user", json={"email": "an@example.com"})
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "User with this email already exists"

    await client.post("/payment-methods", json={"type": "card", "token": "tok_an"}, headers=headers)
    profile = (await client.get("/user/profile", headers=headers)).json()
    assert profile["email"] == "an@example.com"
    assert [m["type"] for m in profile["payment_methods"]] == ["card"]

    patched = await client.patch("/user/profile/me", json={"phone": "0911111111"}, headers=headers)
    assert patched.json()["phone"] == "0911111111"
    verified = await client.patch(f"/user/{user_id}", json={"kyc_verified": True})
    assert verified.json()["kyc_verified"] is True

    listing = (await client.get("/user", params={"search": "tran thi"})).json()
    assert [u["id"] for u in listing["data"]] == [user_id]

    deleted = await client.delete(f"/user/{user_id}")
    assert deleted.status_code == 200
    assert deleted.json()["message"] == "User an@example.com has been deleted successfully"
    assert (await client.get(f"/user/{user_id}")).status_code == 404


async def test_user_routes_reject_bad_input(client):
    assert (await client.post("/user", json={"email": "not-an-email"})).status_code == 422
    assert (await client.get(f"/user/{uuid.uuid4()}")).status_code == 404
    assert (await client.get("/user/profile")).status_code == 422

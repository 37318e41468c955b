"""PayOSClient against httpx.MockTransport."""
from __future__ import annotations

import hashlib
import hmac
import json

import httpx
import pytest

from gateway.payos.client import PayOSClient, generate_order_code, sign
from gateway.shared.errors import PaymentProviderError

CHECKSUM_KEY = "test-checksum-key"


def make_client(handler) -> PayOSClient:
    return PayOSClient(
        "client-id",
        "api-key",
        CHECKSUM_KEY,
        base_url="https://payos.test",
        return_url="https://shop.test/return",
        cancel_url="https://shop.test/cancel",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def test_order_code_is_last_nine_digits_of_epoch_millis():
    assert generate_order_code(1_712_345_678_901) == 345_678_901
    assert 0 < generate_order_code() < 1_000_000_000


def test_signature_is_over_sorted_key_value_pairs():
    fields = {"orderCode": 1, "amount": 2000, "description": "x", "cancelUrl": "c", "returnUrl": "r"}
    expected = hmac.new(
        CHECKSUM_KEY.encode(),
        b"amount=2000&cancelUrl=c&description=x&orderCode=1&returnUrl=r",
        hashlib.sha256,
    ).hexdigest()
    assert sign(fields, CHECKSUM_KEY) == expected


async def test_create_payment_sends_signed_request():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "code": "00",
                "desc": "success",
                "data": {
                    "orderCode": body["orderCode"],
                    "checkoutUrl": "https://pay.payos.vn/web/abc",
                    "qrCode": "000201...",
                },
            },
        )

    client = make_client(handler)
    link = await client.create_payment("txn-1", 100_000, "A very long order description here")
    await client.aclose()

    request = captured["request"]
    body = json.loads(request.content)
    assert request.url.path == "/v2/payment-requests"
    assert request.headers["x-client-id"] == "client-id"
    assert request.headers["x-api-key"] == "api-key"
    assert len(body["description"]) == 25
    signed = {k: body[k] for k in ("amount", "cancelUrl", "description", "orderCode", "returnUrl")}
    assert body["signature"] == sign(signed, CHECKSUM_KEY)

    assert link.order_code == body["orderCode"]
    assert link.checkout_url == "https://pay.payos.vn/web/abc"
    assert link.qr_code == "000201..."
    assert link.raw["data"]["checkoutUrl"] == link.checkout_url


async def test_rejected_request_raises_provider_error():
    client = make_client(lambda request: httpx.Response(200, json={"code": "20", "desc": "Invalid amount"}))

    with pytest.raises(PaymentProviderError) as exc_info:
        await client.create_payment("txn-1", 1, None)
    await client.aclose()

    assert exc_info.value.code == "20"
    assert "Invalid amount" in exc_info.value.detail


async def test_transport_failure_raises_provider_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(PaymentProviderError):
        await client.cancel_payment(123)
    await client.aclose()


async def test_cancel_payment_posts_reason():
    captured = {}

    def handler(request):
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": "00", "data": {"status": "CANCELLED"}})

    client = make_client(handler)
    await client.cancel_payment(123)
    await client.aclose()

    assert captured["path"] == "/v2/payment-requests/123/cancel"
    assert captured["body"] == {"cancellationReason": "Transaction timed out"}


async def test_get_invoice_reads_payment_request():
    captured = {}

    def handler(request):
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["client_id"] = request.headers.get("x-client-id")
        return httpx.Response(
            200,
            json={"code": "00", "desc": "success", "data": {"orderCode": 123, "status": "PAID", "amountPaid": 3000}},
        )

    client = make_client(handler)
    invoice = await client.get_invoice(123)
    await client.aclose()

    assert captured == {"method": "GET", "path": "/v2/payment-requests/123", "client_id": "client-id"}
    assert invoice["data"]["status"] == "PAID"


async def test_get_invoice_for_unknown_order_raises():
    client = make_client(lambda request: httpx.Response(200, json={"code": "101", "desc": "Not found"}))

    with pytest.raises(PaymentProviderError) as exc_info:
        await client.get_invoice(999)
    await client.aclose()

    assert exc_info.value.code == "101"


def test_webhook_signature_verification():
    client = make_client(lambda request: httpx.Response(200))
    data = {"orderCode": 123, "amount": 3000, "code": "00", "desc": "success", "reference": None}
    payload = {"code": "00", "data": data, "signature": sign(data, CHECKSUM_KEY)}

    assert client.verify_webhook_signature(payload) is True
    assert client.verify_webhook_signature({**payload, "signature": "0" * 64}) is False
    assert client.verify_webhook_signature({"code": "00", "data": data}) is False

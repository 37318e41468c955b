"""Payment-link orchestration triggered by transaction.created."""
from __future__ import annotations

from gateway.payos.listener import PaymentOrchestrationListener
from gateway.shared.events import (
    PAYMENT_LINK_CREATED,
    TRANSACTION_CREATED,
    TRANSACTION_FAILED,
)
from gateway.shared.models import TransactionStatus
from gateway.shared.schemas import TransactionCreate
from gateway.transactions.service import TransactionService
from tests.conftest import provider_error


def collect(bus, event):
    seen = []

    async def record(payload):
        seen.append(payload)

    bus.subscribe(event, record)
    return seen


def wire(bus, transactions, provider) -> PaymentOrchestrationListener:
    listener = PaymentOrchestrationListener(transactions, provider, bus)
    bus.subscribe(TRANSACTION_CREATED, listener.on_transaction_created)
    return listener


async def test_successful_link_moves_transaction_to_awaiting_payment(bus, transactions, provider, user):
    wire(bus, transactions, provider)
    links = collect(bus, PAYMENT_LINK_CREATED)

    txn = await transactions.create(
        TransactionCreate(amount=100_000, description="Order #7"), user.id
    )
    await bus.drain()

    detail = await transactions.find_one(txn.id)
    assert detail.status == TransactionStatus.awaiting_payment
    assert detail.external_transaction_id == provider.created[0]["order_code"]
    assert detail.gateway_response["data"]["checkoutUrl"]
    assert detail.gateway_response["data"]["qrCode"]
    assert [(e.from_value, e.to_value) for e in reversed(detail.events)] == [
        (None, "pending"),
        ("pending", "processing"),
        ("processing", "awaiting_payment"),
    ]

    assert provider.created[0]["order_id"] == str(txn.id)
    assert provider.created[0]["amount"] == 100_000
    assert len(links) == 1
    assert links[0].order_code == detail.external_transaction_id
    assert links[0].owner_id == user.id
    assert links[0].amount == 100_000


async def test_provider_failure_fails_the_transaction(bus, transactions, provider, user):
    wire(bus, transactions, provider)
    failures = collect(bus, TRANSACTION_FAILED)
    links = collect(bus, PAYMENT_LINK_CREATED)
    provider.fail_create = provider_error("PayOS unavailable")

    txn = await transactions.create(TransactionCreate(amount=25_000), user.id)
    await bus.drain()

    detail = await transactions.find_one(txn.id)
    assert detail.status == TransactionStatus.failed
    assert detail.gateway_response["error"] == "PayOS unavailable"
    assert "timestamp" in detail.gateway_response
    assert detail.external_transaction_id is None

    assert links == []
    assert len(failures) == 1
    assert failures[0].owner_id == user.id
    assert failures[0].amount == 25_000
    assert failures[0].reason == "Payment creation failed: PayOS unavailable"


async def test_unexpected_exception_also_fails_the_transaction(bus, transactions, provider, user):
    wire(bus, transactions, provider)
    provider.fail_create = RuntimeError("socket closed")

    txn = await transactions.create(TransactionCreate(amount=1000), user.id)
    await bus.drain()

    detail = await transactions.find_one(txn.id)
    assert detail.status == TransactionStatus.failed
    assert detail.gateway_response["error"] == "socket closed"


class AwaitingWriteFails(TransactionService):
    async def update(self, transaction_id, patch):
        if patch.status == TransactionStatus.awaiting_payment:
            raise RuntimeError("database unavailable")
        return await super().update(transaction_id, patch)


async def test_link_is_withdrawn_when_it_cannot_be_recorded(bus, session_factory, provider, user):
    transactions = AwaitingWriteFails(session_factory, bus)
    wire(bus, transactions, provider)
    failures = collect(bus, TRANSACTION_FAILED)
    links = collect(bus, PAYMENT_LINK_CREATED)

    txn = await transactions.create(TransactionCreate(amount=40_000), user.id)
    await bus.drain()

    order_code = provider.created[0]["order_code"]
    assert provider.cancelled == [order_code]
    detail = await transactions.find_one(txn.id)
    assert detail.status == TransactionStatus.failed
    assert detail.gateway_response["error"] == "database unavailable"
    assert links == []
    assert [f.reason for f in failures] == ["Payment creation failed: database unavailable"]


async def test_withdraw_failure_still_fails_the_transaction(bus, session_factory, provider, user):
    transactions = AwaitingWriteFails(session_factory, bus)
    wire(bus, transactions, provider)
    provider.fail_cancel = provider_error("cancel refused")

    txn = await transactions.create(TransactionCreate(amount=40_000), user.id)
    await bus.drain()

    assert provider.cancelled == []
    assert (await transactions.find_one(txn.id)).status == TransactionStatus.failed

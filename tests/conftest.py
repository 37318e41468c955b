"""
Shared pytest fixtures.

Every test gets a fresh SQLite file (through aiosqlite) so that the service's
separate sessions and the background event handlers all see the same data,
and a fresh fakeredis instance for the timeout markers.  Celery is replaced
by recorders: tests run the timeout handler themselves.
"""
from __future__ import annotations

import itertools
import uuid
from typing import Any

import fakeredis.aioredis
import pytest

from gateway.bootstrap import build_gateway
from gateway.notifications.relay import NotificationRelay
from gateway.payos.client import PaymentLink
from gateway.shared.database import build_engine, build_session_factory, init_db
from gateway.shared.errors import PaymentProviderError
from gateway.shared.events import EventBus
from gateway.shared.models import PaymentMethod, User
from gateway.timeouts.scheduler import TimeoutScheduler
from gateway.transactions.service import TransactionService


class FakeProvider:
    """Stands in for PayOSClient; records every call."""

    def __init__(self) -> None:
        self._codes = itertools.count(100_000_001)
        self.created: list[dict[str, Any]] = []
        self.cancelled: list[int] = []
        self.fail_create: Exception | None = None
        self.fail_cancel: Exception | None = None

    async def create_payment(self, order_id, amount, description) -> PaymentLink:
        if self.fail_create is not None:
            raise self.fail_create
        code = next(self._codes)
        self.created.append({"order_id": str(order_id), "amount": amount, "order_code": code})
        data = {
            "orderCode": code,
            "amount": amount,
            "checkoutUrl": f"https://pay.payos.vn/web/{code}",
            "qrCode": f"qr-{code}",
        }
        return PaymentLink(
            order_code=code,
            checkout_url=data["checkoutUrl"],
            qr_code=data["qrCode"],
            raw={"code": "00", "desc": "success", "data": data},
        )

    async def cancel_payment(self, order_code, reason="Transaction timed out"):
        if self.fail_cancel is not None:
            raise self.fail_cancel
        self.cancelled.append(order_code)
        return {"code": "00", "data": {"orderCode": order_code, "status": "CANCELLED"}}

    async def get_invoice(self, order_code):
        return {"code": "00", "data": {"orderCode": order_code}}

    def verify_webhook_signature(self, payload: dict) -> bool:
        return payload.get("signature") == "valid-signature"


class FakeExchange:
    """Collects messages the notification relay publishes."""

    def __init__(self) -> None:
        self.published: list[tuple[str, Any]] = []
        self.fail = False

    async def publish(self, message, routing_key: str):
        if self.fail:
            raise ConnectionError("broker gone")
        self.published.append((routing_key, message))


class FakeTimeoutTask:
    """Records apply_async calls instead of sending them to a broker."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail: Exception | None = None

    def apply_async(self, args=None, task_id=None, countdown=None):
        if self.fail is not None:
            raise self.fail
        self.sent.append({"args": args, "task_id": task_id, "countdown": countdown})


class FakeControl:
    def __init__(self) -> None:
        self.revoked: list[str] = []

    def revoke(self, task_id):
        self.revoked.append(task_id)


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def transactions(session_factory, bus):
    return TransactionService(session_factory, bus)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def exchange():
    return FakeExchange()


@pytest.fixture
def timeout_task():
    return FakeTimeoutTask()


@pytest.fixture
def control():
    return FakeControl()


@pytest.fixture
def scheduler(redis, timeout_task, control):
    return TimeoutScheduler(redis, task=timeout_task, control=control)


@pytest.fixture
async def gateway(session_factory, redis, provider, exchange, scheduler):
    gw = build_gateway(
        session_factory,
        redis,
        provider=provider,
        relay=NotificationRelay(exchange=exchange),
        scheduler=scheduler,
        timeout_delay=60,
    )
    yield gw
    await gw.bus.drain()


@pytest.fixture
async def user(session_factory):
    return await make_user(session_factory)


async def make_user(session_factory, email: str | None = None, full_name: str = "Nguyen Van A") -> User:
    user = User(
        id=uuid.uuid4(),
        email=email or f"{uuid.uuid4().hex[:8]}@example.com",
        full_name=full_name,
        phone="0900000000",
    )
    async with session_factory() as session:
        async with session.begin():
            session.add(user)
    return user


async def make_payment_method(session_factory, owner: User, token: str | None = None) -> PaymentMethod:
    payment_method = PaymentMethod(
        id=uuid.uuid4(),
        user_id=owner.id,
        type="card",
        provider="payos",
        token=token or f"tok_{uuid.uuid4().hex}",
        last_four="4242",
    )
    async with session_factory() as session:
        async with session.begin():
            session.add(payment_method)
    return payment_method


def provider_error(message: str = "PayOS unavailable") -> PaymentProviderError:
    return PaymentProviderError(message)

"""
In-process event bus and the transaction lifecycle event taxonomy.

Listeners are registered explicitly at startup (see gateway.bootstrap); there
is no decorator-driven or global registration.  ``emit`` is fire-and-forget:
it schedules one dispatch task per event and returns immediately.  Handlers
for a single event run sequentially in registration order, and a failing
handler is logged without stopping the ones after it.
"""
from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

logger = structlog.get_logger(__name__)

TRANSACTION_CREATED = "transaction.created"
TRANSACTION_STATUS_UPDATED = "transaction.status_updated"
TRANSACTION_FAILED = "transaction.failed"
PAYMENT_LINK_CREATED = "payment.link_created"
PAYMENT_SUCCESS = "payment.success"
PAYMENT_FAILED = "payment.failed"


class LifecycleEvent(BaseModel):
    """Base payload; serialises with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TransactionCreated(LifecycleEvent):
    transaction_id: uuid.UUID
    owner_id: uuid.UUID
    amount: int
    currency: str
    description: str | None = None
    payment_method_id: uuid.UUID | None = None


class PaymentLinkCreated(LifecycleEvent):
    transaction_id: uuid.UUID
    owner_id: uuid.UUID
    amount: int = 0
    checkout_url: str | None = None
    qr_code: str | None = None
    order_code: int | None = None


class TransactionStatusUpdated(LifecycleEvent):
    transaction_id: uuid.UUID
    status: str
    should_cancel_timeout: bool


class TransactionFailed(LifecycleEvent):
    transaction_id: uuid.UUID | None = None
    owner_id: uuid.UUID
    email: str | None = None
    full_name: str | None = None
    amount: int
    reason: str


class PaymentSucceeded(LifecycleEvent):
    owner_id: uuid.UUID
    email: str | None = None
    full_name: str | None = None
    amount: int
    message: str


class PaymentFailed(LifecycleEvent):
    owner_id: uuid.UUID
    email: str | None = None
    full_name: str | None = None
    amount: int
    reason: str


EVENT_PAYLOADS: dict[str, type[LifecycleEvent]] = {
    TRANSACTION_CREATED: TransactionCreated,
    TRANSACTION_STATUS_UPDATED: TransactionStatusUpdated,
    TRANSACTION_FAILED: TransactionFailed,
    PAYMENT_LINK_CREATED: PaymentLinkCreated,
    PAYMENT_SUCCESS: PaymentSucceeded,
    PAYMENT_FAILED: PaymentFailed,
}

Handler = Callable[[Any], Awaitable[Any]]


class EventBus:
    """Explicit publish/subscribe registry keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event: str, handler: Handler) -> None:
        if event not in EVENT_PAYLOADS:
            raise ValueError(f"Unknown event: {event}")
        self._handlers[event].append(handler)
        logger.debug("event_handler_registered", event_name=event, handler=_name(handler))

    def handlers(self, event: str) -> list[Handler]:
        return list(self._handlers.get(event, ()))

    def emit(self, event: str, payload: LifecycleEvent) -> asyncio.Task | None:
        """Schedule delivery of ``payload`` and return without waiting for it."""
        self._check(event, payload)
        handlers = self.handlers(event)
        if not handlers:
            logger.debug("event_without_subscribers", event_name=event)
            return None

        task = asyncio.get_running_loop().create_task(
            self._dispatch(event, payload, handlers), name=f"event:{event}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def publish(self, event: str, payload: LifecycleEvent) -> None:
        """Deliver ``payload`` and wait until every handler has run."""
        self._check(event, payload)
        await self._dispatch(event, payload, self.handlers(event))

    async def drain(self) -> None:
        """Wait for all in-flight deliveries, including ones they trigger."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _dispatch(self, event: str, payload: LifecycleEvent, handlers: list[Handler]) -> None:
        for handler in handlers:
            try:
                await handler(payload)
            except Exception as exc:
                logger.error(
                    "event_handler_failed",
                    event_name=event,
                    handler=_name(handler),
                    error=str(exc),
                    exc_info=True,
                )

    @staticmethod
    def _check(event: str, payload: LifecycleEvent) -> None:
        expected = EVENT_PAYLOADS.get(event)
        if expected is None:
            raise ValueError(f"Unknown event: {event}")
        if not isinstance(payload, expected):
            raise TypeError(
                f"{event} expects {expected.__name__}, got {type(payload).__name__}"
            )


def _name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", repr(handler))

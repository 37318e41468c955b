"""
Wiring for the payment gateway core.

``build_gateway`` constructs every service and listener and registers each
event subscription explicitly; nothing subscribes itself on import.

    transaction.created         -> PaymentOrchestrationListener
    payment.link_created        -> TimeoutSchedulerListener, NotificationRelay
    transaction.status_updated  -> TimeoutSchedulerListener
    transaction.failed          -> NotificationRelay
    payment.success             -> NotificationRelay
    payment.failed              -> NotificationRelay

Timeout jobs themselves run on Celery workers (``gateway.timeouts.tasks``),
which build their own gateway with ``schedule_timeouts=False``.
"""
from __future__ import annotations

from dataclasses import dataclass

import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.notifications.relay import SOCKET_EVENTS, NotificationRelay
from gateway.payment_methods.service import PaymentMethodService
from gateway.payos.client import PaymentProviderClient, PayOSClient
from gateway.payos.listener import PaymentOrchestrationListener
from gateway.payos.webhook import WebhookHandler
from gateway.shared.config import TRANSACTION_TIMEOUT_SECONDS
from gateway.shared.events import (
    PAYMENT_LINK_CREATED,
    TRANSACTION_CREATED,
    TRANSACTION_STATUS_UPDATED,
    EventBus,
)
from gateway.timeouts.handler import TransactionTimeoutHandler
from gateway.timeouts.listener import TimeoutSchedulerListener
from gateway.timeouts.scheduler import TimeoutScheduler
from gateway.transactions.service import TransactionService
from gateway.users.service import UserService

logger = structlog.get_logger(__name__)


@dataclass
class Gateway:
    bus: EventBus
    transactions: TransactionService
    users: UserService
    payment_methods: PaymentMethodService
    provider: PaymentProviderClient
    webhooks: WebhookHandler
    scheduler: TimeoutScheduler
    payment_listener: PaymentOrchestrationListener
    timeout_scheduler: TimeoutSchedulerListener
    timeout_handler: TransactionTimeoutHandler
    relay: NotificationRelay

    async def start(self, connect_relay: bool = True) -> None:
        if connect_relay:
            await self.relay.connect()
        logger.info("gateway_started")

    async def shutdown(self) -> None:
        await self.bus.drain()
        await self.relay.close()
        aclose = getattr(self.provider, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("gateway_stopped")


def build_gateway(
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis,
    *,
    provider: PaymentProviderClient | None = None,
    relay: NotificationRelay | None = None,
    scheduler: TimeoutScheduler | None = None,
    timeout_delay: float = TRANSACTION_TIMEOUT_SECONDS,
    schedule_timeouts: bool = True,
) -> Gateway:
    bus = EventBus()
    provider = provider if provider is not None else PayOSClient()
    relay = relay if relay is not None else NotificationRelay()
    scheduler = scheduler if scheduler is not None else TimeoutScheduler(redis)

    transactions = TransactionService(session_factory, bus)
    payment_listener = PaymentOrchestrationListener(transactions, provider, bus)
    timeout_scheduler = TimeoutSchedulerListener(scheduler, delay=timeout_delay)
    timeout_handler = TransactionTimeoutHandler(transactions, provider, bus)

    bus.subscribe(TRANSACTION_CREATED, payment_listener.on_transaction_created)
    if schedule_timeouts:
        bus.subscribe(PAYMENT_LINK_CREATED, timeout_scheduler.on_payment_link_created)
    bus.subscribe(TRANSACTION_STATUS_UPDATED, timeout_scheduler.on_status_updated)
    for event in SOCKET_EVENTS:
        bus.subscribe(event, relay.handler_for(event))

    return Gateway(
        bus=bus,
        transactions=transactions,
        users=UserService(session_factory),
        payment_methods=PaymentMethodService(session_factory),
        provider=provider,
        webhooks=WebhookHandler(transactions, bus),
        scheduler=scheduler,
        payment_listener=payment_listener,
        timeout_scheduler=timeout_scheduler,
        timeout_handler=timeout_handler,
        relay=relay,
    )

"""
Bridge from lifecycle events to the realtime notifier.

Each user-facing event is published as a persistent JSON message on a durable
topic exchange with routing key ``user.<ownerId>.<socket event>``; the socket
gateway consumes it and pushes it to the owner's open connections.  Broker
trouble is logged and the notification dropped: notifications never affect
transaction state.
"""
from __future__ import annotations

import json
from typing import Any

import aio_pika
import structlog
from aio_pika.abc import AbstractExchange, AbstractRobustConnection

from gateway.shared.config import NOTIFICATION_EXCHANGE, RABBITMQ_URL
from gateway.shared.events import (
    PAYMENT_FAILED,
    PAYMENT_LINK_CREATED,
    PAYMENT_SUCCESS,
    TRANSACTION_FAILED,
    LifecycleEvent,
)
from gateway.shared.models import utcnow

logger = structlog.get_logger(__name__)

SOCKET_EVENTS: dict[str, str] = {
    PAYMENT_LINK_CREATED: "payment:link_created",
    TRANSACTION_FAILED: "transaction:failed",
    PAYMENT_SUCCESS: "payment:success",
    PAYMENT_FAILED: "payment:failed",
}


def routing_key(owner_id: object, socket_event: str) -> str:
    return f"user.{owner_id}.{socket_event}"


class NotificationRelay:
    def __init__(
        self,
        url: str = RABBITMQ_URL,
        exchange_name: str = NOTIFICATION_EXCHANGE,
        exchange: AbstractExchange | None = None,
    ) -> None:
        self._url = url
        self._exchange_name = exchange_name
        self._connection: AbstractRobustConnection | None = None
        self._exchange = exchange

    async def connect(self) -> bool:
        try:
            self._connection = await aio_pika.connect_robust(self._url)
            channel = await self._connection.channel()
            self._exchange = await channel.declare_exchange(
                self._exchange_name, aio_pika.ExchangeType.TOPIC, durable=True
            )
        except Exception as exc:
            logger.warning("notification_broker_unavailable", error=str(exc))
            return False
        logger.info("notification_relay_connected", exchange=self._exchange_name)
        return True

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
        self._exchange = None

    def handler_for(self, event: str):
        """Bus handler that forwards ``event`` under its socket name."""
        socket_event = SOCKET_EVENTS[event]

        async def forward(payload: LifecycleEvent) -> None:
            await self.publish(socket_event, payload)

        forward.__qualname__ = f"NotificationRelay.forward[{socket_event}]"
        return forward

    async def publish(self, socket_event: str, payload: LifecycleEvent) -> bool:
        owner_id = getattr(payload, "owner_id", None)
        if self._exchange is None:
            logger.warning("notification_dropped", reason="broker_not_connected", socket_event=socket_event)
            return False

        body: dict[str, Any] = {
            "event": socket_event,
            "data": payload.to_message(),
            "timestamp": utcnow().isoformat(),
        }
        message = aio_pika.Message(
            body=json.dumps(body).encode(),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        key = routing_key(owner_id, socket_event)
        try:
            await self._exchange.publish(message, routing_key=key)
        except Exception as exc:
            logger.error("notification_publish_failed", routing_key=key, error=str(exc))
            return False

        logger.info("notification_published", routing_key=key)
        return True

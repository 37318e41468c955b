"""Schedules and cancels timeout jobs in response to lifecycle events."""
from __future__ import annotations

import structlog

from gateway.shared.config import TRANSACTION_TIMEOUT_SECONDS
from gateway.shared.errors import QueueError
from gateway.shared.events import PaymentLinkCreated, TransactionStatusUpdated
from gateway.shared.models import utcnow
from gateway.timeouts.handler import TimeoutJobData, timeout_job_id
from gateway.timeouts.scheduler import TimeoutScheduler

logger = structlog.get_logger(__name__)


class TimeoutSchedulerListener:
    """Scheduling failures are logged here and never reach the emitter."""

    def __init__(
        self,
        scheduler: TimeoutScheduler,
        delay: float = TRANSACTION_TIMEOUT_SECONDS,
    ) -> None:
        self._scheduler = scheduler
        self._delay = delay

    async def on_payment_link_created(self, event: PaymentLinkCreated) -> None:
        if event.order_code is None:
            logger.warning("timeout_not_scheduled_no_order_code", transaction_id=str(event.transaction_id))
            return

        data = TimeoutJobData(
            transaction_id=str(event.transaction_id),
            external_transaction_id=event.order_code,
            user_id=str(event.owner_id),
            amount=event.amount,
            created_at=utcnow().isoformat(),
        )
        try:
            await self._scheduler.schedule(data, delay=self._delay)
        except QueueError as exc:
            logger.error("timeout_schedule_failed", job_id=timeout_job_id(event.transaction_id), error=str(exc))

    async def on_status_updated(self, event: TransactionStatusUpdated) -> None:
        if not event.should_cancel_timeout:
            return

        job_id = timeout_job_id(event.transaction_id)
        try:
            removed = await self._scheduler.cancel(event.transaction_id)
        except QueueError as exc:
            logger.error("timeout_cancel_failed", job_id=job_id, error=str(exc))
            return
        logger.info("timeout_cancelled" if removed else "timeout_cancel_no_job", job_id=job_id, status=event.status)

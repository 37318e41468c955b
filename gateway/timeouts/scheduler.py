"""
Schedules timeout jobs on Celery, at most one per transaction.

A Redis marker ``<prefix>:<transaction id>`` is taken with SET NX before the
task is sent, so a second schedule for the same transaction is rejected.  The
marker expires a grace period after the job is due, which bounds how long a
lost job can block rescheduling.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any

import redis.asyncio as aioredis
import structlog
from kombu.exceptions import KombuError
from redis.exceptions import RedisError

from gateway.shared.config import TIMEOUT_KEY_PREFIX
from gateway.shared.errors import QueueError
from gateway.timeouts.handler import TimeoutJobData, timeout_job_id
from gateway.timeouts.tasks import cancel_expired_transaction, celery_app

logger = structlog.get_logger(__name__)

MARKER_GRACE_SECONDS = 3600


class TimeoutScheduler:
    def __init__(
        self,
        redis: aioredis.Redis,
        task: Any = cancel_expired_transaction,
        control: Any = None,
        prefix: str = TIMEOUT_KEY_PREFIX,
    ) -> None:
        self._redis = redis
        self._task = task
        self._control = control if control is not None else celery_app.control
        self._prefix = prefix

    def marker_key(self, transaction_id: uuid.UUID | str) -> str:
        return f"{self._prefix}:{transaction_id}"

    async def schedule(self, data: TimeoutJobData, delay: float) -> bool:
        """Send the job to run after ``delay`` seconds; False if one is already scheduled."""
        job_id = timeout_job_id(data.transaction_id)
        key = self.marker_key(data.transaction_id)
        try:
            taken = await self._redis.set(key, job_id, nx=True, ex=int(delay) + MARKER_GRACE_SECONDS)
        except RedisError as exc:
            raise QueueError(f"Could not schedule {job_id}: {exc}") from exc
        if not taken:
            logger.info("timeout_already_scheduled", job_id=job_id)
            return False

        try:
            await asyncio.to_thread(
                self._task.apply_async,
                args=[data.to_dict()],
                task_id=job_id,
                countdown=delay,
            )
        except KombuError as exc:
            await self._redis.delete(key)
            raise QueueError(f"Could not schedule {job_id}: {exc}") from exc

        logger.info("timeout_scheduled", job_id=job_id, delay=delay)
        return True

    async def cancel(self, transaction_id: uuid.UUID | str) -> bool:
        """Revoke the job; False if none was scheduled."""
        job_id = timeout_job_id(transaction_id)
        try:
            removed = await self._redis.delete(self.marker_key(transaction_id))
            if removed:
                await asyncio.to_thread(self._control.revoke, job_id)
        except (RedisError, KombuError) as exc:
            raise QueueError(f"Could not cancel {job_id}: {exc}") from exc
        return bool(removed)

    async def release(self, transaction_id: uuid.UUID | str) -> None:
        """Drop the marker once the job has run."""
        await self._redis.delete(self.marker_key(transaction_id))

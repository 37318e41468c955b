"""
Celery task that fails unpaid transactions once their window has elapsed.

Run a worker with:

    celery -A gateway.timeouts.tasks worker -Q transaction-timeout

Each attempt builds its own engine, Redis client and gateway, since a Celery
worker process has no running event loop to share with the API.  Anything
the handler raises is retried with exponential backoff up to
TIMEOUT_JOB_ATTEMPTS attempts; the last failure stays in the result backend.
"""
from __future__ import annotations

import asyncio
from typing import Any

import redis.asyncio as aioredis
import structlog
from celery import Celery, Task
from celery.signals import setup_logging
from sqlalchemy.pool import NullPool

from gateway.shared import metrics
from gateway.shared.config import (
    DATABASE_URL,
    REDIS_URL,
    TIMEOUT_JOB_ATTEMPTS,
    TIMEOUT_JOB_BACKOFF_SECONDS,
)
from gateway.shared.database import build_engine, build_session_factory
from gateway.timeouts.handler import TimeoutJobData, TimeoutResult

logger = structlog.get_logger(__name__)

TIMEOUT_TASK_NAME = "gateway.timeouts.cancel_expired_transaction"

celery_app = Celery("gateway")
celery_app.config_from_object("gateway.timeouts.celeryconfig")


@setup_logging.connect
def configure_structlog(**kwargs: Any) -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    )


class TimeoutTask(Task):
    """Logs retries and exhausted jobs."""

    def on_retry(self, exc, task_id, args, kwargs, einfo) -> None:
        metrics.TIMEOUT_JOBS.labels(outcome="retried").inc()
        logger.warning(
            "timeout_job_retrying",
            job_id=task_id,
            attempt=self.request.retries + 1,
            error=str(exc),
        )

    def on_failure(self, exc, task_id, args, kwargs, einfo) -> None:
        metrics.TIMEOUT_JOBS.labels(outcome="failed").inc()
        logger.error("timeout_job_failed", job_id=task_id, error=str(exc))


async def run_timeout_job(data: TimeoutJobData) -> TimeoutResult:
    from gateway.bootstrap import build_gateway

    engine = build_engine(DATABASE_URL, poolclass=NullPool)
    redis = aioredis.from_url(REDIS_URL, decode_responses=True)
    gateway = build_gateway(build_session_factory(engine), redis, schedule_timeouts=False)
    await gateway.start()
    try:
        result = await gateway.timeout_handler.process(data)
        await gateway.scheduler.release(data.transaction_id)
        return result
    finally:
        await gateway.shutdown()
        await redis.aclose()
        await engine.dispose()


@celery_app.task(
    bind=True,
    base=TimeoutTask,
    name=TIMEOUT_TASK_NAME,
    autoretry_for=(Exception,),
    max_retries=TIMEOUT_JOB_ATTEMPTS - 1,
    retry_backoff=TIMEOUT_JOB_BACKOFF_SECONDS,
    retry_backoff_max=600,
    retry_jitter=False,
)
def cancel_expired_transaction(self, data: dict[str, Any]) -> dict[str, Any]:
    job = TimeoutJobData.from_dict(data)
    logger.info("timeout_job_started", job_id=self.request.id, transaction_id=job.transaction_id)
    result = asyncio.run(run_timeout_job(job))
    return {
        "transactionId": result.transaction_id,
        "cancelled": result.cancelled,
        "status": result.status,
        "remoteCancelled": result.remote_cancelled,
    }

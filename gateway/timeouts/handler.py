"""
Timeout job body.

Runs when a transaction's payment window has elapsed.  The decision is taken
from a fresh read of the transaction, never from the job payload: a webhook
may have resolved the transaction after the job was scheduled, and in that
case the job does nothing.

Still unresolved (pending / awaiting_payment):
  1. cancel the provider payment link (failure logged, not fatal),
  2. mark the transaction FAILED,
  3. emit ``transaction.failed``.

Anything raised by steps 2-3 propagates so Celery retries the job.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from gateway.payos.client import PaymentProviderClient
from gateway.shared import metrics
from gateway.shared.events import TRANSACTION_FAILED, EventBus, TransactionFailed
from gateway.shared.models import UNRESOLVED_STATUSES, TransactionStatus
from gateway.transactions.service import TransactionService

logger = structlog.get_logger(__name__)

TIMEOUT_JOB_NAME = "transaction-timeout"
TIMEOUT_REASON = "Transaction cancelled due to timeout"


def timeout_job_id(transaction_id: uuid.UUID | str) -> str:
    return f"timeout-{transaction_id}"


@dataclass(frozen=True)
class TimeoutJobData:
    """Job payload.  Informational only; the handler re-reads the transaction."""

    transaction_id: str
    external_transaction_id: int
    user_id: str
    amount: int
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "externalTransactionId": self.external_transaction_id,
            "userId": self.user_id,
            "amount": self.amount,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimeoutJobData":
        return cls(
            transaction_id=data["transactionId"],
            external_transaction_id=int(data["externalTransactionId"]),
            user_id=data["userId"],
            amount=int(data.get("amount") or 0),
            created_at=data["createdAt"],
        )


@dataclass(frozen=True)
class TimeoutResult:
    transaction_id: str
    cancelled: bool
    status: str
    remote_cancelled: bool = False


class TransactionTimeoutHandler:
    def __init__(
        self,
        transactions: TransactionService,
        provider: PaymentProviderClient,
        bus: EventBus,
    ) -> None:
        self._transactions = transactions
        self._provider = provider
        self._bus = bus

    async def process(self, job: TimeoutJobData) -> TimeoutResult:
        log = logger.bind(
            transaction_id=job.transaction_id,
            order_code=job.external_transaction_id,
        )
        transaction = await self._transactions.find_one(uuid.UUID(job.transaction_id))
        status = TransactionStatus(transaction.status).value

        if status not in UNRESOLVED_STATUSES:
            metrics.TIMEOUT_JOBS.labels(outcome="skipped").inc()
            log.info("timeout_skipped_already_resolved", status=status)
            return TimeoutResult(job.transaction_id, cancelled=False, status=status)

        order_code = transaction.external_transaction_id or job.external_transaction_id
        remote_cancelled = False
        try:
            await self._provider.cancel_payment(order_code)
            remote_cancelled = True
        except Exception as exc:
            log.warning("timeout_remote_cancel_failed", error=str(exc))

        await self._transactions.update_status(transaction.id, TransactionStatus.failed)

        metrics.TIMEOUT_JOBS.labels(outcome="cancelled").inc()
        log.info("transaction_timed_out", previous_status=status, remote_cancelled=remote_cancelled)
        self._bus.emit(
            TRANSACTION_FAILED,
            TransactionFailed(
                transaction_id=transaction.id,
                owner_id=transaction.user_id,
                email=transaction.user.email,
                full_name=transaction.user.full_name,
                amount=transaction.amount,
                reason=TIMEOUT_REASON,
            ),
        )
        return TimeoutResult(
            job.transaction_id,
            cancelled=True,
            status=TransactionStatus.failed.value,
            remote_cancelled=remote_cancelled,
        )

"""
Payment orchestration listener.

Reacts to ``transaction.created``:
  1. mark the transaction PROCESSING (best effort),
  2. ask the provider for a payment link,
  3. success -> AWAITING_PAYMENT + external reference, emit ``payment.link_created``;
     failure -> FAILED with the error recorded, emit ``transaction.failed``.

The transaction never stays in PROCESSING after this handler returns, unless
the database itself refuses the final write (which is logged).
"""
from __future__ import annotations

import structlog

from gateway.payos.client import PaymentProviderClient
from gateway.shared import metrics
from gateway.shared.events import (
    PAYMENT_LINK_CREATED,
    TRANSACTION_FAILED,
    EventBus,
    PaymentLinkCreated,
    TransactionCreated,
    TransactionFailed,
)
from gateway.shared.models import TransactionStatus, utcnow
from gateway.shared.schemas import TransactionUpdate
from gateway.transactions.service import TransactionService

logger = structlog.get_logger(__name__)


class PaymentOrchestrationListener:
    def __init__(
        self,
        transactions: TransactionService,
        provider: PaymentProviderClient,
        bus: EventBus,
    ) -> None:
        self._transactions = transactions
        self._provider = provider
        self._bus = bus

    async def on_transaction_created(self, event: TransactionCreated) -> None:
        log = logger.bind(transaction_id=str(event.transaction_id))

        try:
            await self._transactions.update_status(
                event.transaction_id, TransactionStatus.processing
            )
        except Exception as exc:
            log.warning("mark_processing_failed", error=str(exc))

        try:
            link = await self._provider.create_payment(
                event.transaction_id, event.amount, event.description
            )
        except Exception as exc:
            await self._fail(event, exc)
            return

        try:
            await self._transactions.update(
                event.transaction_id,
                TransactionUpdate(
                    status=TransactionStatus.awaiting_payment,
                    gateway_response=link.raw,
                    external_transaction_id=link.order_code,
                ),
            )
        except Exception as exc:
            await self._withdraw(link.order_code, log)
            await self._fail(event, exc)
            return

        metrics.PAYMENT_LINKS.labels(outcome="created").inc()
        log.info("payment_link_created", order_code=link.order_code)
        self._bus.emit(
            PAYMENT_LINK_CREATED,
            PaymentLinkCreated(
                transaction_id=event.transaction_id,
                owner_id=event.owner_id,
                amount=event.amount,
                checkout_url=link.checkout_url,
                qr_code=link.qr_code,
                order_code=link.order_code,
            ),
        )

    async def _withdraw(self, order_code: int, log) -> None:
        """Cancel a link that was created for a transaction we could not update."""
        try:
            await self._provider.cancel_payment(order_code, "Transaction could not be updated")
            log.warning("payment_link_withdrawn", order_code=order_code)
        except Exception as exc:
            log.error("payment_link_withdraw_failed", order_code=order_code, error=str(exc))

    async def _fail(self, event: TransactionCreated, error: Exception) -> None:
        metrics.PAYMENT_LINKS.labels(outcome="failed").inc()
        logger.error(
            "payment_link_failed",
            transaction_id=str(event.transaction_id),
            error=str(error),
        )
        try:
            await self._transactions.update(
                event.transaction_id,
                TransactionUpdate(
                    status=TransactionStatus.failed,
                    gateway_response={
                        "error": str(error),
                        "timestamp": utcnow().isoformat(),
                    },
                ),
            )
        except Exception as exc:
            logger.error(
                "mark_failed_failed",
                transaction_id=str(event.transaction_id),
                error=str(exc),
                exc_info=True,
            )

        self._bus.emit(
            TRANSACTION_FAILED,
            TransactionFailed(
                transaction_id=event.transaction_id,
                owner_id=event.owner_id,
                amount=event.amount,
                reason=f"Payment creation failed: {error}",
            ),
        )

"""
PayOS payment callbacks.

Payloads reach the handler only after gateway.payos.routes has verified the
signature.
    1. Find the transaction by the callback's orderCode (404 if unknown).
    2. data.code == "00" -> COMPLETED, anything else -> FAILED.
    3. Emit payment.success / payment.failed with the owner's contact details.

Redeliveries are safe: writing the terminal status a transaction already has
changes nothing and emits nothing.  A callback that contradicts a different
terminal status (e.g. success after the timeout failed the transaction) is
acknowledged and logged, never applied.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog

from gateway.payos.client import SUCCESS_CODE
from gateway.shared import metrics
from gateway.shared.errors import InvalidTransitionError
from gateway.shared.events import (
    PAYMENT_FAILED,
    PAYMENT_SUCCESS,
    EventBus,
    PaymentFailed,
    PaymentSucceeded,
)
from gateway.shared.models import TransactionStatus
from gateway.shared.schemas import PayOSWebhookPayload
from gateway.transactions.service import TransactionService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    transaction_id: uuid.UUID
    status: str
    changed: bool


class WebhookHandler:
    """Applies an already-verified provider callback to its transaction."""

    def __init__(self, transactions: TransactionService, bus: EventBus) -> None:
        self._transactions = transactions
        self._bus = bus

    async def handle(self, payload: PayOSWebhookPayload) -> WebhookResult:
        data = payload.data
        succeeded = payload.code == SUCCESS_CODE and data.code == SUCCESS_CODE
        target = TransactionStatus.completed if succeeded else TransactionStatus.failed
        log = logger.bind(order_code=data.orderCode, reference=data.reference)

        try:
            transaction, changed = await self._transactions.update_gateway_response(
                data.orderCode, payload.model_dump(mode="json"), target
            )
        except InvalidTransitionError as exc:
            metrics.WEBHOOKS.labels(outcome="conflict").inc()
            log.warning(
                "webhook_contradicts_terminal_status",
                transaction_id=str(exc.transaction_id),
                current=exc.current,
                requested=exc.requested,
            )
            return WebhookResult(exc.transaction_id, exc.current, changed=False)

        log = log.bind(transaction_id=str(transaction.id))
        if not changed:
            metrics.WEBHOOKS.labels(outcome="duplicate").inc()
            log.info("webhook_redelivery_ignored", status=target.value)
            return WebhookResult(transaction.id, target.value, changed=False)

        owner = await self._transactions.find_owner_by_external_ref(data.orderCode)
        if succeeded:
            metrics.WEBHOOKS.labels(outcome="success").inc()
            log.info("payment_succeeded", amount=data.amount)
            self._bus.emit(
                PAYMENT_SUCCESS,
                PaymentSucceeded(
                    owner_id=transaction.user_id,
                    email=owner.email,
                    full_name=owner.full_name,
                    amount=data.amount,
                    message="Payment successful",
                ),
            )
        else:
            metrics.WEBHOOKS.labels(outcome="failed").inc()
            log.info("payment_failed", code=data.code, desc=data.desc)
            self._bus.emit(
                PAYMENT_FAILED,
                PaymentFailed(
                    owner_id=transaction.user_id,
                    email=owner.email,
                    full_name=owner.full_name,
                    amount=data.amount,
                    reason=data.desc or payload.desc or "Payment failed",
                ),
            )
        return WebhookResult(transaction.id, target.value, changed=True)


"""
PayOS callback route.

POST /payos/webhook:
    1. Reject the body unless its HMAC signature verifies (401).
    2. Hand the parsed payload to the WebhookHandler.
    3. Acknowledge with the resulting status, including for redeliveries.
"""
from __future__ import annotations

import pydantic
import structlog
from fastapi import APIRouter, Depends, Request

from gateway.bootstrap import Gateway
from gateway.dependencies import get_gateway
from gateway.shared.errors import ValidationError, WebhookSignatureError
from gateway.shared.schemas import PayOSWebhookPayload

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/payos", tags=["payos"])


async def verified_payload(
    request: Request, gateway: Gateway = Depends(get_gateway)
) -> PayOSWebhookPayload:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Webhook body must be JSON") from exc
    if not isinstance(body, dict) or not gateway.provider.verify_webhook_signature(body):
        logger.warning("webhook_signature_rejected")
        raise WebhookSignatureError("Invalid webhook signature")
    try:
        return PayOSWebhookPayload.model_validate(body)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Malformed webhook payload: {exc.error_count()} error(s)") from exc


@router.post("/webhook", summary="Receive a PayOS payment callback")
async def receive_webhook(
    payload: PayOSWebhookPayload = Depends(verified_payload),
    gateway: Gateway = Depends(get_gateway),
) -> dict:
    logger.info(
        "webhook_received",
        order_code=payload.data.orderCode,
        amount=payload.data.amount,
        reference=payload.data.reference,
    )
    result = await gateway.webhooks.handle(payload)
    return {
        "success": True,
        "transaction_id": str(result.transaction_id),
        "status": result.status,
        "changed": result.changed,
    }

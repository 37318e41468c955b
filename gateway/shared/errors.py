"""Domain error taxonomy and its mapping onto HTTP responses."""
from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from gateway.shared.schemas import ErrorResponse

logger = structlog.get_logger(__name__)


class GatewayError(Exception):
    """Base class for errors raised by gateway services."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "internal_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "validation_error"


class ForbiddenError(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "forbidden"


class NotFoundError(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "not_found"


class ConflictError(GatewayError):
    status_code = status.HTTP_409_CONFLICT
    error = "conflict"


class InvalidTransitionError(ConflictError):
    """Raised when a write would move a transaction out of a terminal status."""

    error = "invalid_transition"

    def __init__(self, transaction_id: object, current: str, requested: str) -> None:
        super().__init__(
            f"Transaction {transaction_id} is {current}; cannot transition to {requested}"
        )
        self.transaction_id = transaction_id
        self.current = current
        self.requested = requested


class WebhookSignatureError(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "invalid_signature"


class PaymentProviderError(GatewayError):
    """Any failure talking to the external payment provider."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error = "payment_provider_error"

    def __init__(self, detail: str, *, code: str | None = None) -> None:
        super().__init__(detail)
        self.code = code


class QueueError(GatewayError):
    error = "queue_error"


def register_exception_handlers(app: FastAPI) -> None:
    """Render every GatewayError as the standard error envelope."""

    @app.exception_handler(GatewayError)
    async def _handle_gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.detail)
        else:
            logger.info(
                "request_rejected",
                path=request.url.path,
                status_code=exc.status_code,
                error=exc.detail,
            )
        body = ErrorResponse(error=exc.error, detail=exc.detail)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

"""
PayOS merchant API client.

Provides:
- create_payment()            - open a payment link for an internal transaction
- cancel_payment()            - cancel an unpaid payment link
- get_invoice()               - fetch the provider's view of a payment link
- verify_webhook_signature()  - check the HMAC on an inbound callback

Every failure (transport error, non-2xx, or a body whose ``code`` is not
``"00"``) surfaces as PaymentProviderError.
"""
from __future__ import annotations

import hashlib
import hmac
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog

from gateway.shared import config
from gateway.shared.errors import PaymentProviderError

logger = structlog.get_logger(__name__)

SUCCESS_CODE = "00"
MAX_DESCRIPTION_LENGTH = 25


@dataclass(frozen=True)
class PaymentLink:
    """Result of a successful payment-link creation."""

    order_code: int
    checkout_url: str | None
    qr_code: str | None
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentProviderClient(Protocol):
    """Provider operations the lifecycle code depends on."""

    async def create_payment(
        self, order_id: uuid.UUID | str, amount: int, description: str | None
    ) -> PaymentLink: ...

    async def cancel_payment(self, order_code: int, reason: str = ...) -> dict[str, Any]: ...

    async def get_invoice(self, order_code: int) -> dict[str, Any]: ...


def generate_order_code(now_ms: int | None = None) -> int:
    """Numeric order code from the last 9 digits of the epoch milliseconds."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return int(str(now_ms)[-9:])


def sign(fields: dict[str, Any], checksum_key: str) -> str:
    """HMAC-SHA256 over ``k=v`` pairs sorted by key and joined with ``&``."""
    message = "&".join(
        f"{key}={'' if fields[key] is None else fields[key]}" for key in sorted(fields)
    )
    return hmac.new(checksum_key.encode(), message.encode(), hashlib.sha256).hexdigest()


class PayOSClient:
    """Thin async wrapper over the PayOS v2 payment-request endpoints."""

    def __init__(
        self,
        client_id: str = config.PAYOS_CLIENT_ID,
        api_key: str = config.PAYOS_API_KEY,
        checksum_key: str = config.PAYOS_CHECKSUM_KEY,
        *,
        base_url: str = config.PAYOS_BASE_URL,
        return_url: str = config.PAYOS_RETURN_URL,
        cancel_url: str = config.PAYOS_CANCEL_URL,
        timeout: float = config.PAYOS_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._checksum_key = checksum_key
        self._return_url = return_url
        self._cancel_url = cancel_url
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"x-client-id": client_id, "x-api-key": api_key},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Payment requests
    # ------------------------------------------------------------------

    async def create_payment(
        self, order_id: uuid.UUID | str, amount: int, description: str | None
    ) -> PaymentLink:
        order_code = generate_order_code()
        signed = {
            "orderCode": order_code,
            "amount": amount,
            "description": (description or f"Payment {order_code}")[:MAX_DESCRIPTION_LENGTH],
            "cancelUrl": self._cancel_url,
            "returnUrl": self._return_url,
        }
        payload = {**signed, "signature": sign(signed, self._checksum_key)}

        body = await self._request("POST", "/v2/payment-requests", json=payload)
        data = body.get("data") or {}
        logger.info(
            "payos_payment_created",
            order_id=str(order_id),
            order_code=data.get("orderCode", order_code),
            amount=amount,
        )
        return PaymentLink(
            order_code=int(data.get("orderCode", order_code)),
            checkout_url=data.get("checkoutUrl"),
            qr_code=data.get("qrCode"),
            raw=body,
        )

    async def cancel_payment(
        self, order_code: int, reason: str = "Transaction timed out"
    ) -> dict[str, Any]:
        body = await self._request(
            "POST",
            f"/v2/payment-requests/{order_code}/cancel",
            json={"cancellationReason": reason},
        )
        logger.info("payos_payment_cancelled", order_code=order_code)
        return body

    async def get_invoice(self, order_code: int) -> dict[str, Any]:
        return await self._request("GET", f"/v2/payment-requests/{order_code}")

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook_signature(self, payload: dict[str, Any]) -> bool:
        data = payload.get("data")
        signature = payload.get("signature")
        if not isinstance(data, dict) or not isinstance(signature, str):
            return False
        expected = sign(data, self._checksum_key)
        return hmac.compare_digest(expected, signature)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            logger.warning("payos_request_failed", method=method, path=path, error=str(exc))
            raise PaymentProviderError(f"PayOS request failed: {exc}") from exc
        except ValueError as exc:
            raise PaymentProviderError(f"PayOS returned a non-JSON body: {exc}") from exc

        code = str(body.get("code"))
        if code != SUCCESS_CODE:
            logger.warning("payos_request_rejected", method=method, path=path, code=code, desc=body.get("desc"))
            raise PaymentProviderError(
                f"PayOS rejected request: {body.get('desc') or code}", code=code
            )
        return body

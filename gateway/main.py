"""
Payment Gateway API.

Transactions are created PENDING and returned immediately.  The rest of the
lifecycle is event-driven inside this process:
    - a payment link is requested from PayOS (AWAITING_PAYMENT or FAILED),
    - a timeout job is scheduled on Celery to fail unpaid transactions,
    - PayOS callbacks at /payos/webhook settle the transaction and cancel
      the timeout,
    - user-facing outcomes are relayed to RabbitMQ for the realtime notifier.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
import uvicorn
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from gateway.bootstrap import build_gateway
from gateway.payment_methods.routes import router as payment_methods_router
from gateway.payos.routes import router as payos_router
from gateway.shared.database import AsyncSessionFactory, init_db
from gateway.shared.errors import register_exception_handlers
from gateway.shared.redis_client import close_redis, get_redis
from gateway.transactions.routes import router as transactions_router
from gateway.users.routes import router as users_router

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ]
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("payment_gateway_startup")
    await init_db()
    gateway = build_gateway(AsyncSessionFactory, get_redis())
    await gateway.start()
    app.state.gateway = gateway
    yield
    await gateway.shutdown()
    await close_redis()
    logger.info("payment_gateway_shutdown")


app = FastAPI(
    title="Payment Gateway API",
    description=(
        "Transaction lifecycle over PayOS: payment-link orchestration, "
        "webhook settlement and automatic timeout cancellation."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

register_exception_handlers(app)
app.include_router(transactions_router)
app.include_router(users_router)
app.include_router(payment_methods_router)
app.include_router(payos_router)


@app.get("/health", tags=["ops"])
async def health() -> dict:
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("gateway.main:app", host="0.0.0.0", port=8000, reload=False)

"""Prometheus counters for transaction lifecycle outcomes."""
from __future__ import annotations

from prometheus_client import Counter

TRANSACTIONS_CREATED = Counter(
    "gateway_transactions_created_total",
    "Transactions created.",
)
PAYMENT_LINKS = Counter(
    "gateway_payment_links_total",
    "Payment-link creation attempts by outcome.",
    ["outcome"],
)
WEBHOOKS = Counter(
    "gateway_webhooks_total",
    "Provider callbacks processed by outcome.",
    ["outcome"],
)
TIMEOUT_JOBS = Counter(
    "gateway_timeout_jobs_total",
    "Timeout jobs by outcome.",
    ["outcome"],
)

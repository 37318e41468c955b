"""Shared re-exports for scenario modules used by the runner."""
from __future__ import annotations

from failure_scenarios.scenarios import (
    contradicting_webhook,
    duplicate_webhook,
    forged_webhook,
    payment_timeout,
)

__all__ = [
    "contradicting_webhook",
    "duplicate_webhook",
    "forged_webhook",
    "payment_timeout",
]

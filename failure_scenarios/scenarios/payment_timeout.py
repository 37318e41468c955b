"""
Payment timeout scenario.

Nobody pays.  Requires the deployment to run with a short
TRANSACTION_TIMEOUT_SECONDS; SCENARIO_TIMEOUT_WAIT bounds how long to poll.

Expected: the transaction ends FAILED, and a success callback arriving
afterwards does not revive it.
"""
from __future__ import annotations

import asyncio
import os

import httpx

from failure_scenarios import FailureResult, create_payable, get_transaction, signed_callback

SCENARIO_NAME = "payment_timeout"
WAIT_SECONDS = float(os.getenv("SCENARIO_TIMEOUT_WAIT", "90"))


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute payment timeout scenario."""
    timed_out_status: str | None = None
    final_status: str | None = None
    waited = 0.0
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            txn = await create_payable(client, base_url, amount=15_000)
            while waited < WAIT_SECONDS:
                timed_out_status = (await get_transaction(client, base_url, txn["id"]))["status"]
                if timed_out_status != "awaiting_payment":
                    break
                await asyncio.sleep(1.0)
                waited += 1.0

            await client.post(
                f"{base_url}/payos/webhook",
                json=signed_callback(txn["external_transaction_id"], txn["amount"]),
            )
            final_status = (await get_transaction(client, base_url, txn["id"]))["status"]

    except Exception as exc:
        error = str(exc)

    correct = timed_out_status == "failed" and final_status == "failed"

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="failed by timeout, late payment ignored",
        actual_outcome=f"after_wait={timed_out_status} final={final_status}",
        correct=correct,
        details={"waited_seconds": waited},
        error=error,
    )

"""
Contradicting webhook scenario.

A failure callback settles the transaction, then a late success callback for
the same order arrives.

Expected: the transaction stays FAILED; the late callback is acknowledged
without changing anything.
"""
from __future__ import annotations

import httpx

from failure_scenarios import FailureResult, create_payable, get_transaction, signed_callback

SCENARIO_NAME = "contradicting_webhook"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute contradicting webhook scenario."""
    late: dict | None = None
    final_status: str | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            txn = await create_payable(client, base_url, amount=30_000)
            order_code = txn["external_transaction_id"]
            await client.post(
                f"{base_url}/payos/webhook",
                json=signed_callback(order_code, txn["amount"], code="01", desc="Card declined"),
            )
            r = await client.post(
                f"{base_url}/payos/webhook", json=signed_callback(order_code, txn["amount"])
            )
            late = {"status_code": r.status_code, **r.json()}
            final_status = (await get_transaction(client, base_url, txn["id"]))["status"]

    except Exception as exc:
        error = str(exc)

    correct = (
        final_status == "failed"
        and late is not None
        and late["status_code"] == 200
        and late.get("changed") is False
    )

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="stays failed, late success ignored",
        actual_outcome=f"status={final_status}",
        correct=correct,
        details={"late_response": late},
        error=error,
    )

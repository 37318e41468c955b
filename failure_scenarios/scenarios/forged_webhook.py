"""
Forged webhook scenario.

A success callback arrives with a signature made with the wrong key.

Expected: 401, and the transaction is still awaiting payment.
"""
from __future__ import annotations

import httpx

from failure_scenarios import FailureResult, create_payable, get_transaction, signed_callback

SCENARIO_NAME = "forged_webhook"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute forged webhook scenario."""
    status_code: int | None = None
    final_status: str | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            txn = await create_payable(client, base_url, amount=10_000)
            forged = signed_callback(txn["external_transaction_id"], txn["amount"])
            forged["signature"] = "0" * 64
            r = await client.post(f"{base_url}/payos/webhook", json=forged)
            status_code = r.status_code
            final_status = (await get_transaction(client, base_url, txn["id"]))["status"]

    except Exception as exc:
        error = str(exc)

    correct = status_code == 401 and final_status == "awaiting_payment"

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="401 and still awaiting_payment",
        actual_outcome=f"http={status_code} status={final_status}",
        correct=correct,
        error=error,
    )

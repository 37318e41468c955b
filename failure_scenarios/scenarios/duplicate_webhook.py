"""
Duplicate webhook scenario.

PayOS redelivers the same success callback twice in a row.

Expected: the transaction is COMPLETED, the first delivery reports a change,
the second is acknowledged (200) without one.
"""
from __future__ import annotations

import httpx

from failure_scenarios import FailureResult, create_payable, get_transaction, signed_callback

SCENARIO_NAME = "duplicate_webhook"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute duplicate webhook scenario."""
    changes: list[bool] = []
    statuses: list[int] = []
    final_status: str | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            txn = await create_payable(client, base_url, amount=75_000)
            callback = signed_callback(txn["external_transaction_id"], txn["amount"])
            for _ in range(2):
                r = await client.post(f"{base_url}/payos/webhook", json=callback)
                statuses.append(r.status_code)
                if r.status_code == 200:
                    changes.append(r.json()["changed"])
            final_status = (await get_transaction(client, base_url, txn["id"]))["status"]

    except Exception as exc:
        error = str(exc)

    correct = statuses == [200, 200] and changes == [True, False] and final_status == "completed"

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="completed once, redelivery acknowledged unchanged",
        actual_outcome=f"status={final_status} changes={changes}",
        correct=correct,
        details={"http_statuses": statuses},
        error=error,
    )

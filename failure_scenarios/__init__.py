"""
Failure scenarios package.

Live checks against a running gateway.  Provides the FailureResult dataclass
used by all scenario modules plus helpers for creating a payable transaction
and forging correctly signed PayOS callbacks.

Environment:
    GATEWAY_URL          base URL of the API (default http://localhost:8000)
    SCENARIO_USER_ID     id of an existing user to transact as; when unset a
                         user is created through POST /user
    PAYOS_CHECKSUM_KEY   the deployment's checksum key, to sign callbacks
"""
from __future__ import annotations

import asyncio
import os
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx

from gateway.payos.client import sign

GATEWAY_URL: str = os.getenv("GATEWAY_URL", "http://localhost:8000")
SCENARIO_USER_ID: str = os.getenv("SCENARIO_USER_ID", "")
CHECKSUM_KEY: str = os.getenv("PAYOS_CHECKSUM_KEY", "")


@dataclass
class FailureResult:
    """Result of a single failure scenario run."""

    scenario_name: str
    service: str
    expected_outcome: str
    actual_outcome: str
    correct: bool
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


def signed_callback(order_code: int, amount: int, code: str = "00", desc: str = "success") -> dict:
    data = {
        "orderCode": order_code,
        "amount": amount,
        "description": "failure scenario",
        "reference": f"SCN{order_code}",
        "code": code,
        "desc": desc,
    }
    return {
        "code": "00",
        "desc": "success",
        "success": True,
        "data": data,
        "signature": sign(data, CHECKSUM_KEY),
    }


async def create_payable(
    client: httpx.AsyncClient, base_url: str, amount: int, wait: float = 10.0
) -> dict:
    """Create a transaction and wait until its payment link exists."""
    user_id = await scenario_user(client, base_url)
    r = await client.post(
        f"{base_url}/transactions",
        json={"amount": amount, "description": "failure scenario"},
        headers={"X-User-Id": user_id},
    )
    r.raise_for_status()
    transaction_id = r.json()["id"]

    deadline = asyncio.get_running_loop().time() + wait
    while True:
        detail = await get_transaction(client, base_url, transaction_id)
        if detail["status"] not in ("pending", "processing"):
            return detail
        if asyncio.get_running_loop().time() > deadline:
            return detail
        await asyncio.sleep(0.2)


async def get_transaction(client: httpx.AsyncClient, base_url: str, transaction_id: str) -> dict:
    r = await client.get(f"{base_url}/transactions/{transaction_id}")
    r.raise_for_status()
    return r.json()


async def scenario_user(client: httpx.AsyncClient, base_url: str) -> str:
    if SCENARIO_USER_ID:
        return SCENARIO_USER_ID
    r = await client.post(
        f"{base_url}/user",
        json={"email": f"scenario-{uuid.uuid4().hex[:12]}@example.com", "full_name": "Failure Scenario"},
    )
    r.raise_for_status()
    return r.json()["id"]

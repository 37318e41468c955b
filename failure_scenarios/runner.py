"""
Failure scenario runner.

Executes every scenario against the gateway at GATEWAY_URL, collects
FailureResult objects, writes JSON to results/failure_results.json,
and prints a Rich summary table.

    python -m failure_scenarios.runner
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.table import Table

from failure_scenarios import GATEWAY_URL, FailureResult
from failure_scenarios.scenarios import (
    contradicting_webhook,
    duplicate_webhook,
    forged_webhook,
    payment_timeout,
)

SERVICE_NAME = "payment_gateway"

SCENARIO_MODULES = [
    duplicate_webhook,
    contradicting_webhook,
    forged_webhook,
    payment_timeout,
]

RESULTS_DIR = Path(__file__).parent.parent / "results"


async def run_all(base_url: str = GATEWAY_URL) -> list[FailureResult]:
    """Run every scenario and return all results."""
    results: list[FailureResult] = []

    for module in SCENARIO_MODULES:
        try:
            result: FailureResult = await module.run(base_url=base_url, service_name=SERVICE_NAME)
        except Exception as exc:
            result = FailureResult(
                scenario_name=getattr(module, "SCENARIO_NAME", module.__name__),
                service=SERVICE_NAME,
                expected_outcome="no exception",
                actual_outcome="runner exception",
                correct=False,
                error=str(exc),
            )
        results.append(result)

    return results


def save_results(results: list[FailureResult]) -> Path:
    """Serialise results to JSON."""
    RESULTS_DIR.mkdir(exist_ok=True)
    output_path = RESULTS_DIR / "failure_results.json"
    serialisable = [
        {
            "scenario_name": r.scenario_name,
            "service": r.service,
            "expected_outcome": r.expected_outcome,
            "actual_outcome": r.actual_outcome,
            "correct": r.correct,
            "details": r.details,
            "error": r.error,
        }
        for r in results
    ]
    with open(output_path, "w") as fh:
        json.dump(
            {"run_at": datetime.now(timezone.utc).isoformat(), "results": serialisable},
            fh,
            indent=2,
        )
    return output_path


def print_table(results: list[FailureResult]) -> None:
    """Print Rich summary table."""
    console = Console()
    table = Table(title="Payment Gateway Failure Scenarios", show_lines=True)
    table.add_column("Scenario", style="cyan", no_wrap=True)
    table.add_column("Expected", style="white")
    table.add_column("Actual", style="white")
    table.add_column("Pass/Fail", justify="center")

    for r in results:
        status = "[green]PASS[/green]" if r.correct else "[red]FAIL[/red]"
        table.add_row(r.scenario_name, r.expected_outcome, r.actual_outcome or (r.error or ""), status)

    console.print(table)
    passed = sum(1 for r in results if r.correct)
    console.print(f"\n[bold]Total: {len(results)}  Passed: {passed}  Failed: {len(results) - passed}[/bold]")


async def main() -> None:
    results = await run_all()
    path = save_results(results)
    print_table(results)
    print(f"\nResults written to {path}")


if __name__ == "__main__":
    asyncio.run(main())

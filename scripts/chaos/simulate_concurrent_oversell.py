#!/usr/bin/env python3
"""Chaos scenario: hammer a capacity-limited deal with concurrent reservations.

The script creates (or reuses) a deal with a fixed capacity, fires many
reservation requests at the same time and then checks that the deal's
`soldQuantity` never exceeds `maxQuantity` and that the number of accepted
units matches the stored counter. Output is a JSON report; the exit code is
non-zero when an oversell or an unexpected error is detected.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

import httpx


@dataclass(slots=True)
class AttemptResult:
    status_code: int
    quantity: int
    duration_seconds: float
    reason: str | None


class ChaosError(RuntimeError):
    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: Dict[str, Any] = dict(context or {})


def _env_default(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fire concurrent reservations against a deal to detect oversell")
    parser.add_argument(
        "--base-url",
        default=_env_default("DEAL_BASE_URL", "http://127.0.0.1:8000"),
        help="Base URL for the deal service (default: %(default)s or DEAL_BASE_URL)",
    )
    parser.add_argument(
        "--deal-id",
        type=int,
        default=None,
        help="Existing deal to target; a fresh capacity-limited deal is created when omitted",
    )
    parser.add_argument(
        "--capacity",
        type=int,
        default=int(_env_default("OVERSELL_CAPACITY", "10")),
        help="maxQuantity for a freshly created deal (default: %(default)s or OVERSELL_CAPACITY)",
    )
    parser.add_argument(
        "--requests",
        type=int,
        default=int(_env_default("OVERSELL_REQUESTS", "50")),
        help="Number of concurrent reservation requests (default: %(default)s or OVERSELL_REQUESTS)",
    )
    parser.add_argument(
        "--quantity",
        type=int,
        default=1,
        help="Units requested per reservation (default: %(default)s)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=float(_env_default("OVERSELL_TIMEOUT", "10")),
        help="Per-request timeout in seconds (default: %(default)s or OVERSELL_TIMEOUT)",
    )

    args = parser.parse_args()
    if args.capacity <= 0:
        parser.error("--capacity must be positive")
    if args.requests <= 0:
        parser.error("--requests must be positive")
    if args.quantity <= 0:
        parser.error("--quantity must be positive")
    return args


async def _create_deal(client: httpx.AsyncClient, capacity: int) -> int:
    response = await client.post(
        "/deals",
        json={
            "title": "Oversell probe",
            "tier1Qty": 1,
            "tier1Price": "1.00",
            "expirationType": "quantity",
            "maxQuantity": capacity,
        },
    )
    if response.status_code != 201:
        raise ChaosError(
            "failed to create probe deal",
            context={"status": response.status_code, "body": response.text},
        )
    return int(response.json()["id"])


async def _reserve(client: httpx.AsyncClient, deal_id: int, quantity: int) -> AttemptResult:
    start = time.monotonic()
    response = await client.post(f"/deals/{deal_id}/reservations", json={"quantity": quantity})
    duration = time.monotonic() - start
    reason: str | None = None
    if response.status_code == 409:
        detail = response.json().get("detail")
        if isinstance(detail, dict):
            reason = detail.get("reason")
    return AttemptResult(
        status_code=response.status_code,
        quantity=quantity,
        duration_seconds=duration,
        reason=reason,
    )


async def run(args: argparse.Namespace) -> Mapping[str, Any]:
    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        deal_id = args.deal_id if args.deal_id is not None else await _create_deal(client, args.capacity)
        before = await client.get(f"/deals/{deal_id}")
        if before.status_code != 200:
            raise ChaosError("deal not found", context={"dealId": deal_id, "status": before.status_code})
        max_quantity = before.json().get("maxQuantity")
        sold_before = int(before.json()["soldQuantity"])

        attempts: List[AttemptResult] = await asyncio.gather(
            *(_reserve(client, deal_id, args.quantity) for _ in range(args.requests))
        )

        # Every reservation invalidates the cached display payload.
        after = await client.get(f"/deals/{deal_id}")
        after.raise_for_status()

    statuses = Counter(attempt.status_code for attempt in attempts)
    accepted_units = sum(attempt.quantity for attempt in attempts if attempt.status_code == 201)
    sold_after = int(after.json()["soldQuantity"])
    oversold = max_quantity is not None and sold_after > max_quantity
    mismatch = sold_after != sold_before + accepted_units
    unexpected = {code: count for code, count in statuses.items() if code not in (201, 409)}

    return {
        "status": "oversell" if oversold else ("mismatch" if mismatch else ("error" if unexpected else "ok")),
        "dealId": deal_id,
        "requests": args.requests,
        "quantityPerRequest": args.quantity,
        "acceptedUnits": accepted_units,
        "soldBefore": sold_before,
        "soldAfter": sold_after,
        "maxQuantity": max_quantity,
        "statusCodes": {str(code): count for code, count in sorted(statuses.items())},
        "rejectReasons": dict(Counter(attempt.reason for attempt in attempts if attempt.reason)),
        "maxLatencySeconds": round(max(attempt.duration_seconds for attempt in attempts), 3),
    }


def main() -> int:
    args = parse_args()
    try:
        result = asyncio.run(run(args))
    except ChaosError as exc:
        payload = {
            "status": "error",
            "message": str(exc),
            "context": exc.context,
        }
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 2
    except Exception as exc:  # noqa: BLE001
        payload = {
            "status": "error",
            "message": str(exc),
        }
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 3

    json.dump(result, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0 if result["status"] == "ok" else 1


if __name__ == "__main__":
    raise SystemExit(main())

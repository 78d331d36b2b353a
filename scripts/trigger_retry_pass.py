#!/usr/bin/env python3
"""Trigger one retry pass on a running service and print the outcome.

Usage:
    python scripts/trigger_retry_pass.py

    # Against another deployment:
    PRIZE_DISTRIBUTION_URL=https://prizes.example.com python scripts/trigger_retry_pass.py
"""

import asyncio
import os
import sys

import httpx

PRIZE_DISTRIBUTION_URL = os.getenv("PRIZE_DISTRIBUTION_URL", "http://localhost:8000")


async def trigger() -> int:
    async with httpx.AsyncClient(base_url=PRIZE_DISTRIBUTION_URL, timeout=120.0) as client:
        try:
            resp = await client.post("/retry-prize-distribution")
        except httpx.HTTPError as exc:
            print(f"Service not reachable at {PRIZE_DISTRIBUTION_URL}: {exc}")
            return 2

    body = resp.json()
    if resp.status_code != 200:
        print(f"Retry pass failed ({resp.status_code}): {body.get('error')}")
        return 1

    print(f"{body['message']} (available ${body['balanceChecked']['availableUSD']:,.2f})")
    for result in body.get("retryResults", []):
        if result["success"]:
            print(f"  [sent]   {result['challengeTitle']} needs ${result['totalNeeded']:,.2f}")
        else:
            print(f"  [{result['action']}] {result['challengeTitle']}: {result.get('error')}")

    summary = body["summary"]
    print(
        f"\nProcessed {summary['prizesProcessed']}: "
        f"{summary['totalSuccesses']} sent, {summary['totalFailures']} failed"
    )
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(trigger()))

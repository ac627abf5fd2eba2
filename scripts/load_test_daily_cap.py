#!/usr/bin/env python3
"""Load test script: concurrent submissions against the daily reward cap.

RUN:  python scripts/load_test_daily_cap.py

Fires TOTAL_SUBMISSIONS game results for one user concurrently and
prints how many were rewarded and the day's reward total, which must
never exceed DAILY_REWARD_CAP (10.00 by default).

Prerequisites:
  - The API must be running: uvicorn rewards_service.main:app --port 8000
  - Use a fresh USER_ID per run (or restart an in-memory server),
    otherwise earlier runs already count toward today's cap.
"""

from __future__ import annotations

import asyncio
import sys
import time
import uuid

import httpx

BASE_URL = "http://localhost:8000"
TOTAL_SUBMISSIONS = 50
USER_ID = f"load-test-{uuid.uuid4().hex[:8]}"


async def _submit(client: httpx.AsyncClient, i: int) -> float:
    resp = await client.post(
        "/v1/games/results",
        json={
            "game_type": "QUIZ",
            "difficulty": "MEDIUM",
            "score": 65,
            "max_score": 100,
        },
        headers={"X-User-Id": USER_ID},
    )
    if resp.status_code != 201:
        print(f"  submission {i} failed: {resp.status_code}")
        return 0.0
    reward = resp.json()["reward"]
    return reward["discount_amount"] if reward else 0.0


async def main() -> None:
    print("Daily Cap Load Test")
    print("=" * 50)
    print(f"User: {USER_ID}")
    print(f"Concurrent submissions: {TOTAL_SUBMISSIONS}")
    print()

    async with httpx.AsyncClient(base_url=BASE_URL, timeout=30) as client:
        start = time.monotonic()
        amounts = await asyncio.gather(
            *(_submit(client, i) for i in range(TOTAL_SUBMISSIONS))
        )
        elapsed = time.monotonic() - start

        rewarded = sum(1 for a in amounts if a > 0)
        total = round(sum(amounts), 2)
        progress = (
            await client.get("/v1/games/progress", headers={"X-User-Id": USER_ID})
        ).json()

    print(f"Results ({elapsed:.2f}s):")
    print("─" * 40)
    print(f"  Rewarded:      {rewarded:>6}")
    print(f"  Declined:      {TOTAL_SUBMISSIONS - rewarded:>6}")
    print(f"  Total reward:  {total:>6.2f}")
    print(f"  Games played:  {progress['total_games_played']:>6}")
    print()

    if total > 10.00:
        print("FAIL: daily cap exceeded under concurrency.")
        sys.exit(1)
    print("Daily cap held.")


if __name__ == "__main__":
    asyncio.run(main())

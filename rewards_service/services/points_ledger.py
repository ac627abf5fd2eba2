"""Points ledger: earning, spending, and converting points to discounts.

TWO NUMBERS PER USER
---------------------
  total_points     spendable balance; goes up on award, down on spend
  lifetime_points  everything ever earned; never goes down

Every change to total_points is also an append-only PointsTransaction
(positive for awards, negative SPENT entries for spending), so a user's
transactions always sum to their current total_points.

LEVELS FOLLOW LIFETIME POINTS
------------------------------
The level is the user's achievement tier, so it is derived from
lifetime_points.  Spending 500 points on a course discount lowers the
balance, not the level.  ``next_level_points`` is the distance from
lifetime_points to the next breakpoint (0 at the top tier).

DISCOUNT CONVERSION
--------------------
100 points buy 1 unit of discount, capped at 50% of the price.  The
final price is also floored at 50% of the original, independent of the
points cap.  ``apply_discount`` only quotes; the caller spends the
returned ``points_used`` through ``spend``.
"""

from __future__ import annotations

import bisect
import math
import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from rewards_service.core.clock import Clock, now_ms, start_of_day
from rewards_service.core.errors import ConcurrencyConflict, StorageError
from rewards_service.core.metrics import (
    POINTS_AWARDED,
    POINTS_REJECTED,
    POINTS_SPENT,
    STORE_CONFLICTS,
    STORE_ERRORS,
)
from rewards_service.models.points import (
    DiscountResult,
    PointsTransaction,
    PointsType,
    UserPoints,
)
from rewards_service.repos.document_store import (
    POINTS_TRANSACTIONS,
    USER_POINTS,
    GuardedStore,
    Write,
)
from rewards_service.services.user_lock import UserLocks

logger = logging.getLogger(__name__)

DEFAULT_POINTS: dict[PointsType, int] = {
    PointsType.QUIZ_GAME_WIN: 50,
    PointsType.MEMORY_GAME_WIN: 30,
    PointsType.PUZZLE_GAME_WIN: 40,
    PointsType.COURSE_COMPLETION: 500,
    PointsType.QUIZ_PASS: 100,
    PointsType.DAILY_LOGIN: 10,
    PointsType.STREAK_BONUS: 20,
}

# Level n+1 starts at LEVEL_BREAKPOINTS[n-1]; past the last one is level 10.
LEVEL_BREAKPOINTS: tuple[int, ...] = (100, 300, 600, 1000, 1500, 2500, 4000, 6000, 10000)

POINTS_PER_DISCOUNT_PERCENT = 100
MAX_DISCOUNT_PERCENT = 50
MIN_PRICE_FRACTION = 0.5


def level_for_points(points: int) -> int:
    return bisect.bisect_right(LEVEL_BREAKPOINTS, points) + 1


def points_to_next_level(points: int) -> int:
    idx = bisect.bisect_right(LEVEL_BREAKPOINTS, points)
    if idx >= len(LEVEL_BREAKPOINTS):
        return 0
    return LEVEL_BREAKPOINTS[idx] - points


def calculate_discount_percentage(total_points: int) -> int:
    return min(max(total_points, 0) // POINTS_PER_DISCOUNT_PERCENT, MAX_DISCOUNT_PERCENT)


def apply_discount(original_price: float, points_to_use: int) -> DiscountResult | None:
    """Quote ``original_price`` after spending up to ``points_to_use``.

    None for a negative or non-finite price or a negative point count.
    """
    if not math.isfinite(original_price) or original_price < 0 or points_to_use < 0:
        logger.warning(
            "Rejected discount quote price=%r points=%d", original_price, points_to_use
        )
        return None
    if original_price == 0:
        return DiscountResult(0.0, 0.0, 0.0, 0, 0)

    # Percentage cap first...
    max_points_usable = int(
        original_price * MAX_DISCOUNT_PERCENT / 100 * POINTS_PER_DISCOUNT_PERCENT
    )
    points_used = min(points_to_use, max_points_usable)
    discount = points_used / POINTS_PER_DISCOUNT_PERCENT
    # ...then the absolute floor.
    final_price = round(
        max(original_price - discount, original_price * MIN_PRICE_FRACTION), 2
    )
    discount_amount = round(original_price - final_price, 2)
    return DiscountResult(
        original_price=original_price,
        discount_amount=discount_amount,
        final_price=final_price,
        points_used=points_used,
        discount_percentage=int(discount_amount / original_price * 100),
    )


class PointsLedger:
    def __init__(
        self,
        store: GuardedStore,
        locks: UserLocks,
        *,
        daily_cap: int | None = 2000,
        clock: Clock = now_ms,
        max_retries: int = 3,
    ) -> None:
        self._store = store
        self._locks = locks
        self._daily_cap = daily_cap
        self._clock = clock
        self._max_retries = max_retries

    # Pure conversions, exposed on the service for callers holding only a ledger.
    calculate_discount_percentage = staticmethod(calculate_discount_percentage)
    apply_discount = staticmethod(apply_discount)

    async def _load(self, user_id: str) -> UserPoints:
        doc = await self._store.get(USER_POINTS, user_id)
        if doc is None:
            return UserPoints(user_id=user_id)
        return UserPoints.from_document(doc)

    async def get_user_points(self, user_id: str) -> UserPoints | None:
        """Balance for ``user_id``; the initial (0, 0, 1, 100) if none yet."""
        try:
            return await self._load(user_id)
        except StorageError:
            STORE_ERRORS.labels(operation="get_user_points").inc()
            logger.exception("Reading points failed user=%s", user_id)
            return None

    async def get_history(self, user_id: str, limit: int = 20) -> list[PointsTransaction]:
        """Newest first, ordered by ``seq`` rather than the millisecond clock."""
        if limit <= 0:
            return []
        try:
            docs = await self._store.query(
                POINTS_TRANSACTIONS,
                equals={"user_id": user_id},
                order_by="seq",
                descending=True,
                limit=limit,
            )
        except StorageError:
            STORE_ERRORS.labels(operation="get_history").inc()
            logger.exception("Reading points history failed user=%s", user_id)
            return []
        return [PointsTransaction.from_document(d) for d in docs]

    async def _earned_today(self, user_id: str, now: int) -> int:
        docs = await self._store.query(
            POINTS_TRANSACTIONS,
            equals={"user_id": user_id},
            at_least={"timestamp": start_of_day(now)},
        )
        return sum(int(d["amount"]) for d in docs if int(d["amount"]) > 0)

    async def _with_retries(self, operation: str, user_id: str, fn) -> bool:
        async with self._locks.hold(user_id):
            for attempt in range(self._max_retries + 1):
                try:
                    return await fn()
                except ConcurrencyConflict as e:
                    STORE_CONFLICTS.labels(collection=e.collection).inc()
                    logger.warning(
                        "Conflict on %s user=%s attempt=%d",
                        operation,
                        user_id,
                        attempt + 1,
                        extra={"user_id": user_id, "operation": operation},
                    )
        raise StorageError(f"{operation} for {user_id} kept conflicting")

    # ------------------------------------------------------------------
    # Award
    # ------------------------------------------------------------------

    async def award(
        self,
        user_id: str,
        points_type: PointsType,
        amount: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Credit points for an activity.

        ``amount`` overrides the per-activity default.  Returns False when
        the input is invalid, the daily earning cap leaves nothing to
        credit, or the store fails; in all three cases nothing changes.
        """
        if points_type is PointsType.SPENT:
            POINTS_REJECTED.labels(operation="award", reason="invalid").inc()
            logger.warning("Rejected award of SPENT type user=%s", user_id)
            return False
        points = DEFAULT_POINTS[points_type] if amount is None else amount
        if points <= 0:
            POINTS_REJECTED.labels(operation="award", reason="invalid").inc()
            logger.warning("Rejected non-positive award=%d user=%s", points, user_id)
            return False

        async def _once() -> bool:
            return await self._award_once(user_id, points_type, points, metadata)

        try:
            return await self._with_retries("award", user_id, _once)
        except StorageError:
            POINTS_REJECTED.labels(operation="award", reason="storage").inc()
            STORE_ERRORS.labels(operation="award").inc()
            logger.exception(
                "Award declined user=%s type=%s",
                user_id,
                points_type.value,
                extra={"user_id": user_id, "operation": "award"},
            )
            return False

    async def _award_once(
        self,
        user_id: str,
        points_type: PointsType,
        points: int,
        metadata: Mapping[str, Any] | None,
    ) -> bool:
        now = self._clock()
        if self._daily_cap is not None:
            earned = await self._earned_today(user_id, now)
            points = min(points, max(self._daily_cap - earned, 0))
            if points == 0:
                POINTS_REJECTED.labels(operation="award", reason="daily_cap").inc()
                logger.info(
                    "Daily points cap reached user=%s earned_today=%d",
                    user_id,
                    earned,
                    extra={"user_id": user_id, "operation": "award"},
                )
                return False

        current = await self._load(user_id)
        txn = PointsTransaction.new(
            user_id=user_id,
            points_type=points_type,
            amount=points,
            timestamp=now,
            metadata=dict(metadata or {}),
            seq=current.version + 1,
        )
        lifetime = current.lifetime_points + points
        updated = replace(
            current,
            total_points=current.total_points + points,
            lifetime_points=lifetime,
            level=level_for_points(lifetime),
            next_level_points=points_to_next_level(lifetime),
            created_at=current.created_at or now,
            last_updated=now,
            version=current.version + 1,
        )
        await self._store.commit(
            [
                Write(POINTS_TRANSACTIONS, txn.id, txn.to_document()),
                Write(
                    USER_POINTS,
                    user_id,
                    updated.to_document(),
                    expected_version=current.version,
                ),
            ]
        )

        POINTS_AWARDED.labels(points_type=points_type.value).inc(points)
        logger.info(
            "Awarded %d points for %s user=%s total=%d",
            points,
            points_type.value,
            user_id,
            updated.total_points,
            extra={"user_id": user_id, "operation": "award"},
        )
        return True

    # ------------------------------------------------------------------
    # Spend
    # ------------------------------------------------------------------

    async def spend(self, user_id: str, amount: int, reason: str = "Course discount") -> bool:
        """Debit ``amount`` points.  False (and no change) if the balance is short."""
        if amount <= 0:
            POINTS_REJECTED.labels(operation="spend", reason="invalid").inc()
            logger.warning("Rejected non-positive spend=%d user=%s", amount, user_id)
            return False

        async def _once() -> bool:
            return await self._spend_once(user_id, amount, reason)

        try:
            return await self._with_retries("spend", user_id, _once)
        except StorageError:
            POINTS_REJECTED.labels(operation="spend", reason="storage").inc()
            STORE_ERRORS.labels(operation="spend").inc()
            logger.exception(
                "Spend declined user=%s amount=%d",
                user_id,
                amount,
                extra={"user_id": user_id, "operation": "spend"},
            )
            return False

    async def _spend_once(self, user_id: str, amount: int, reason: str) -> bool:
        current = await self._load(user_id)
        if amount > current.total_points:
            POINTS_REJECTED.labels(operation="spend", reason="insufficient").inc()
            logger.warning(
                "Spend rejected user=%s amount=%d balance=%d",
                user_id,
                amount,
                current.total_points,
                extra={"user_id": user_id, "operation": "spend"},
            )
            return False

        now = self._clock()
        txn = PointsTransaction.new(
            user_id=user_id,
            points_type=PointsType.SPENT,
            amount=-amount,
            timestamp=now,
            reason=reason,
            seq=current.version + 1,
        )
        updated = replace(
            current,
            total_points=current.total_points - amount,
            last_updated=now,
            version=current.version + 1,
        )
        await self._store.commit(
            [
                Write(POINTS_TRANSACTIONS, txn.id, txn.to_document()),
                Write(
                    USER_POINTS,
                    user_id,
                    updated.to_document(),
                    expected_version=current.version,
                ),
            ]
        )

        POINTS_SPENT.inc(amount)
        logger.info(
            "Spent %d points for %s user=%s remaining=%d",
            amount,
            reason,
            user_id,
            updated.total_points,
            extra={"user_id": user_id, "operation": "spend"},
        )
        return True

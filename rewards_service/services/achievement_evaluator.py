"""Milestone achievements unlocked from a user's game progress.

Rules are thresholds, checked against the progress *after* a game is
counted.  An achievement already on record is never issued again, so a
streak that reaches 3, resets, and reaches 3 again unlocks STREAK_3 once,
and a streak that jumps past 3 still unlocks it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from rewards_service.core.clock import Clock, now_ms
from rewards_service.core.errors import StorageError
from rewards_service.core.metrics import ACHIEVEMENTS_UNLOCKED, STORE_ERRORS
from rewards_service.models.achievement import AchievementType, StudentAchievement
from rewards_service.models.game import GameProgress
from rewards_service.repos.document_store import STUDENT_ACHIEVEMENTS, GuardedStore, Write

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AchievementRule:
    achievement_type: AchievementType
    title: str
    description: str
    reward_amount: float
    applies: Callable[[GameProgress], bool]


RULES: tuple[AchievementRule, ...] = (
    AchievementRule(
        AchievementType.FIRST_WIN,
        "First Victory!",
        "Won your first game",
        1.00,
        lambda p: p.games_won >= 1,
    ),
    AchievementRule(
        AchievementType.STREAK_3,
        "On Fire!",
        "3 games won in a row",
        2.00,
        lambda p: p.current_streak >= 3,
    ),
    AchievementRule(
        AchievementType.STREAK_5,
        "Unstoppable!",
        "5 games won in a row",
        3.00,
        lambda p: p.current_streak >= 5,
    ),
    AchievementRule(
        AchievementType.STREAK_10,
        "Legendary!",
        "10 games won in a row",
        5.00,
        lambda p: p.current_streak >= 10,
    ),
    AchievementRule(
        AchievementType.PERFECT_SCORE,
        "Perfectionist!",
        "Achieved a perfect score",
        2.00,
        lambda p: p.perfect_scores >= 1,
    ),
)


def pending_unlocks(
    progress: GameProgress,
    unlocked: set[AchievementType],
    *,
    now: int,
) -> list[StudentAchievement]:
    """Achievements ``progress`` qualifies for that aren't in ``unlocked``."""
    return [
        StudentAchievement.new(
            user_id=progress.user_id,
            achievement_type=rule.achievement_type,
            title=rule.title,
            description=rule.description,
            reward_amount=rule.reward_amount,
            unlocked_at=now,
        )
        for rule in RULES
        if rule.achievement_type not in unlocked and rule.applies(progress)
    ]


class AchievementEvaluator:
    def __init__(self, store: GuardedStore, *, clock: Clock = now_ms) -> None:
        self._store = store
        self._clock = clock

    async def _unlocked_types(self, user_id: str) -> set[AchievementType]:
        docs = await self._store.query(
            STUDENT_ACHIEVEMENTS, equals={"user_id": user_id}
        )
        return {AchievementType(d["achievement_type"]) for d in docs}

    async def evaluate(self, progress: GameProgress) -> list[StudentAchievement]:
        """Persist and return the achievements newly unlocked by ``progress``.

        Callers must hold the user's lock.  On a store failure nothing is
        unlocked; the same rules fire again on the next evaluation.
        """
        try:
            unlocked = await self._unlocked_types(progress.user_id)
            new = pending_unlocks(progress, unlocked, now=self._clock())
            if new:
                await self._store.commit(
                    [Write(STUDENT_ACHIEVEMENTS, a.id, a.to_document()) for a in new]
                )
        except StorageError:
            STORE_ERRORS.labels(operation="evaluate_achievements").inc()
            logger.exception(
                "Achievement evaluation failed user=%s",
                progress.user_id,
                extra={"user_id": progress.user_id, "operation": "evaluate"},
            )
            return []

        for a in new:
            ACHIEVEMENTS_UNLOCKED.labels(achievement_type=a.achievement_type.value).inc()
            logger.info(
                "Achievement unlocked user=%s type=%s",
                a.user_id,
                a.achievement_type.value,
                extra={"user_id": a.user_id, "operation": "evaluate"},
            )
        return new

    async def list_achievements(self, user_id: str) -> list[StudentAchievement]:
        try:
            docs = await self._store.query(
                STUDENT_ACHIEVEMENTS,
                equals={"user_id": user_id},
                order_by="unlocked_at",
                descending=True,
            )
        except StorageError:
            STORE_ERRORS.labels(operation="list_achievements").inc()
            logger.exception("Listing achievements failed user=%s", user_id)
            return []
        return [StudentAchievement.from_document(d) for d in docs]

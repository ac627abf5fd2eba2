"""Game submissions: reward, progress and achievements for one result.

SUBMISSION SEQUENCE
--------------------
  Client -> submit_result(GameResult)
    -> validate
    -> [user lock]
         -> duplicate result id?  replay the original outcome
         -> load progress, quote reward, clamp to the daily cap
         -> commit {result, reward?, progress} atomically
              (progress carries its version: a concurrent writer
               elsewhere turns this into a conflict, and we retry)
         -> evaluate achievements on the committed progress
    -> StudentReward or None

Progress is advanced for every accepted submission, including losses
and capped games: a loss must reset the streak, and games played must
count every game, whether it paid out or not.

FAILURE SEMANTICS
------------------
Any StorageError (failure, timeout, lock timeout, conflicts beyond the
retry budget) declines the whole submission and returns None.  Because
the three writes go through one ``commit``, a declined submission has
written nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from rewards_service.core.clock import Clock, now_ms, start_of_day
from rewards_service.core.errors import ConcurrencyConflict, StorageError, ValidationError
from rewards_service.core.metrics import (
    GAME_SUBMISSIONS,
    REWARD_AMOUNT,
    STORE_CONFLICTS,
    STORE_ERRORS,
)
from rewards_service.models.game import GameProgress, GameResult, StudentReward
from rewards_service.repos.document_store import (
    GAME_PROGRESS,
    GAME_RESULTS,
    STUDENT_REWARDS,
    GuardedStore,
    Write,
)
from rewards_service.services.achievement_evaluator import AchievementEvaluator
from rewards_service.services.reward_calculator import (
    DEFAULT_CONFIG,
    RewardConfig,
    apply_daily_cap,
    compute_reward,
    discount_percentage,
    experience_points,
    is_perfect,
    is_win,
    level_for_xp,
    to_cents,
)
from rewards_service.services.user_lock import UserLocks

logger = logging.getLogger(__name__)


def advance_progress(
    progress: GameProgress,
    result: GameResult,
    reward_amount: float,
    *,
    now: int,
    config: RewardConfig = DEFAULT_CONFIG,
) -> GameProgress:
    """Return ``progress`` with ``result`` counted.  Bumps the version."""
    percent = result.score_percent
    won = is_win(percent)

    games_played = progress.total_games_played + 1
    total_score = progress.total_score + result.score
    streak = progress.current_streak + 1 if won else 0
    xp = progress.experience_points + experience_points(
        result.score, result.max_score, result.difficulty, config
    )

    return replace(
        progress,
        total_games_played=games_played,
        total_score=total_score,
        average_score=total_score / games_played,
        current_streak=streak,
        longest_streak=max(progress.longest_streak, streak),
        games_won=progress.games_won + (1 if won else 0),
        perfect_scores=progress.perfect_scores + (1 if is_perfect(percent) else 0),
        total_rewards_earned=to_cents(progress.total_rewards_earned + reward_amount),
        experience_points=xp,
        level=level_for_xp(xp),
        last_played_at=now,
        version=progress.version + 1,
    )


@dataclass(frozen=True, slots=True)
class _Outcome:
    reward: StudentReward | None
    progress: GameProgress | None  # None when nothing was written (replay)
    label: str


class GameProgressTracker:
    def __init__(
        self,
        store: GuardedStore,
        locks: UserLocks,
        evaluator: AchievementEvaluator,
        *,
        config: RewardConfig = DEFAULT_CONFIG,
        clock: Clock = now_ms,
        max_retries: int = 3,
    ) -> None:
        self._store = store
        self._locks = locks
        self._evaluator = evaluator
        self._config = config
        self._clock = clock
        self._max_retries = max_retries

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _load_progress(self, user_id: str) -> GameProgress:
        doc = await self._store.get(GAME_PROGRESS, user_id)
        if doc is None:
            return GameProgress(user_id=user_id)
        return GameProgress.from_document(doc)

    async def get_progress(self, user_id: str) -> GameProgress | None:
        """Current progress (zero-state if the user never played).

        None means the store could not be read.
        """
        try:
            return await self._load_progress(user_id)
        except StorageError:
            STORE_ERRORS.labels(operation="get_progress").inc()
            logger.exception("Reading progress failed user=%s", user_id)
            return None

    async def get_rewards(self, user_id: str) -> list[StudentReward]:
        try:
            docs = await self._store.query(
                STUDENT_REWARDS,
                equals={"user_id": user_id},
                order_by="earned_at",
                descending=True,
            )
        except StorageError:
            STORE_ERRORS.labels(operation="get_rewards").inc()
            logger.exception("Listing rewards failed user=%s", user_id)
            return []
        return [StudentReward.from_document(d) for d in docs]

    async def _earned_since(self, user_id: str, since: int) -> float:
        docs = await self._store.query(
            STUDENT_REWARDS,
            equals={"user_id": user_id},
            at_least={"earned_at": since},
        )
        return to_cents(sum(float(d["discount_amount"]) for d in docs))

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_result(self, result: GameResult) -> StudentReward | None:
        try:
            result.validate()
        except ValidationError as e:
            GAME_SUBMISSIONS.labels(outcome="invalid").inc()
            logger.warning(
                "Rejected game result id=%s: %s",
                result.id,
                e,
                extra={"user_id": result.user_id, "operation": "submit_result"},
            )
            return None

        try:
            async with self._locks.hold(result.user_id):
                outcome = await self._submit_with_retries(result)
                if outcome.progress is not None:
                    await self._evaluator.evaluate(outcome.progress)
        except ValidationError as e:
            GAME_SUBMISSIONS.labels(outcome="invalid").inc()
            logger.warning(
                "Rejected game result id=%s: %s",
                result.id,
                e,
                extra={"user_id": result.user_id, "operation": "submit_result"},
            )
            return None
        except StorageError:
            GAME_SUBMISSIONS.labels(outcome="storage").inc()
            STORE_ERRORS.labels(operation="submit_result").inc()
            logger.exception(
                "Game submission declined id=%s user=%s",
                result.id,
                result.user_id,
                extra={"user_id": result.user_id, "operation": "submit_result"},
            )
            return None

        GAME_SUBMISSIONS.labels(outcome=outcome.label).inc()
        if outcome.label == "rewarded" and outcome.reward is not None:
            REWARD_AMOUNT.inc(outcome.reward.discount_amount)
        logger.info(
            "Game result processed id=%s user=%s outcome=%s amount=%.2f",
            result.id,
            result.user_id,
            outcome.label,
            outcome.reward.discount_amount if outcome.reward else 0.0,
            extra={"user_id": result.user_id, "operation": "submit_result"},
        )
        return outcome.reward

    async def _submit_with_retries(self, result: GameResult) -> _Outcome:
        for attempt in range(self._max_retries + 1):
            try:
                return await self._submit_once(result)
            except ConcurrencyConflict as e:
                STORE_CONFLICTS.labels(collection=e.collection).inc()
                logger.warning(
                    "Conflict on submission id=%s attempt=%d: %s",
                    result.id,
                    attempt + 1,
                    e,
                    extra={"user_id": result.user_id, "operation": "submit_result"},
                )
        raise StorageError(
            f"submission {result.id} still conflicting after {self._max_retries} retries"
        )

    async def _submit_once(self, result: GameResult) -> _Outcome:
        existing = await self._store.get(GAME_RESULTS, result.id)
        if existing is not None:
            return await self._replay(result, existing)

        now = self._clock()
        progress = await self._load_progress(result.user_id)

        quote = compute_reward(
            result.score_percent,
            progress.current_streak,
            result.difficulty,
            self._config,
        )
        label = "rewarded" if quote.amount > 0 else "no_reward"
        if quote.amount > 0:
            earned_today = await self._earned_since(result.user_id, start_of_day(now))
            quote = apply_daily_cap(quote, earned_today, self._config)
            if quote.amount <= 0:
                label = "daily_cap"
                logger.info(
                    "Daily reward cap reached user=%s earned_today=%.2f",
                    result.user_id,
                    earned_today,
                    extra={"user_id": result.user_id, "operation": "submit_result"},
                )

        reward = None
        if quote.amount > 0:
            reward = StudentReward.new(
                user_id=result.user_id,
                game_result_id=result.id,
                discount_amount=quote.amount,
                discount_percentage=discount_percentage(quote.amount, self._config),
                description=quote.description,
                earned_at=now,
            )

        updated = advance_progress(
            progress,
            result,
            reward.discount_amount if reward else 0.0,
            now=now,
            config=self._config,
        )

        result_doc = result.to_document()
        result_doc["reward_id"] = reward.id if reward else None
        writes = [Write(GAME_RESULTS, result.id, result_doc)]
        if reward is not None:
            writes.append(Write(STUDENT_REWARDS, reward.id, reward.to_document()))
        writes.append(
            Write(
                GAME_PROGRESS,
                result.user_id,
                updated.to_document(),
                expected_version=progress.version,
            )
        )
        await self._store.commit(writes)
        return _Outcome(reward, updated, label)

    async def _replay(self, result: GameResult, existing: dict) -> _Outcome:
        if existing.get("user_id") != result.user_id:
            raise ValidationError(f"game result id {result.id} belongs to another user")

        reward_id = existing.get("reward_id")
        reward = None
        if reward_id:
            doc = await self._store.get(STUDENT_REWARDS, reward_id)
            reward = StudentReward.from_document(doc) if doc is not None else None
        return _Outcome(reward, None, "replay")

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    async def redeem_reward(self, user_id: str, reward_id: str) -> bool:
        """Mark one of ``user_id``'s rewards as redeemed.

        False when the reward is unknown, owned by someone else, already
        redeemed, expired, or the store failed.
        """
        try:
            async with self._locks.hold(user_id):
                for attempt in range(self._max_retries + 1):
                    try:
                        return await self._redeem_once(user_id, reward_id)
                    except ConcurrencyConflict as e:
                        STORE_CONFLICTS.labels(collection=e.collection).inc()
                        logger.warning(
                            "Conflict on redemption reward=%s attempt=%d",
                            reward_id,
                            attempt + 1,
                        )
                raise StorageError(f"redemption of {reward_id} kept conflicting")
        except StorageError:
            STORE_ERRORS.labels(operation="redeem_reward").inc()
            logger.exception(
                "Redemption declined reward=%s user=%s",
                reward_id,
                user_id,
                extra={"user_id": user_id, "operation": "redeem_reward"},
            )
            return False

    async def _redeem_once(self, user_id: str, reward_id: str) -> bool:
        doc = await self._store.get(STUDENT_REWARDS, reward_id)
        if doc is None or doc.get("user_id") != user_id:
            logger.warning("Redeem of unknown reward=%s user=%s", reward_id, user_id)
            return False

        reward = StudentReward.from_document(doc)
        now = self._clock()
        if reward.is_redeemed:
            logger.warning("Reward already redeemed reward=%s", reward_id)
            return False
        if reward.is_expired(now):
            logger.warning("Reward expired reward=%s", reward_id)
            return False

        progress = await self._load_progress(user_id)
        redeemed = replace(reward, is_redeemed=True, redeemed_at=now)
        updated = replace(
            progress,
            total_rewards_redeemed=to_cents(
                progress.total_rewards_redeemed + reward.discount_amount
            ),
            version=progress.version + 1,
        )
        await self._store.commit(
            [
                Write(STUDENT_REWARDS, reward_id, redeemed.to_document()),
                Write(
                    GAME_PROGRESS,
                    user_id,
                    updated.to_document(),
                    expected_version=progress.version,
                ),
            ]
        )
        logger.info(
            "Reward redeemed reward=%s user=%s amount=%.2f",
            reward_id,
            user_id,
            reward.discount_amount,
            extra={"user_id": user_id, "operation": "redeem_reward"},
        )
        return True

"""Game result submission, progress, rewards and achievements.

  POST /v1/games/results                    submit one finished game
  GET  /v1/games/progress                   streaks, XP, level
  GET  /v1/games/rewards                    reward history, newest first
  POST /v1/games/rewards/{reward_id}/redeem mark a reward as used
  GET  /v1/games/achievements               unlocked milestones
"""

from __future__ import annotations

from typing import Annotated
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, model_validator

from rewards_service.api.dependencies import require_user
from rewards_service.core.clock import now_ms
from rewards_service.models.achievement import AchievementType
from rewards_service.models.game import GameDifficulty, GameResult, GameType
from rewards_service.models.principal import Principal
from rewards_service.services.engine import achievement_evaluator, game_tracker

router = APIRouter(prefix="/v1/games", tags=["games"])


class GameResultIn(BaseModel):
    # Clients may supply their own id so a retried upload replays, not repeats.
    id: str | None = Field(default=None, min_length=1, max_length=128)
    game_type: GameType
    difficulty: GameDifficulty
    score: int = Field(ge=0)
    max_score: int = Field(gt=0)
    played_at: int | None = None
    time_spent_ms: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _score_within_max(self) -> GameResultIn:
        if self.score > self.max_score:
            raise ValueError("score must not exceed max_score")
        return self


class RewardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    game_result_id: str
    discount_amount: float
    discount_percentage: float
    description: str
    is_redeemed: bool
    earned_at: int
    expires_at: int
    redeemed_at: int | None


class SubmissionOut(BaseModel):
    game_result_id: str
    reward: RewardOut | None


class ProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_games_played: int
    total_score: int
    average_score: float
    current_streak: int
    longest_streak: int
    games_won: int
    perfect_scores: int
    total_rewards_earned: float
    total_rewards_redeemed: float
    experience_points: int
    level: int
    last_played_at: int


class AchievementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    achievement_type: AchievementType
    title: str
    description: str
    reward_amount: float
    unlocked_at: int


class RedeemOut(BaseModel):
    reward_id: str
    redeemed: bool


@router.post(
    "/results",
    response_model=SubmissionOut,
    status_code=status.HTTP_201_CREATED,
)
async def submit_game_result(
    body: GameResultIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> SubmissionOut:
    result = GameResult(
        id=body.id or str(uuid4()),
        user_id=principal.user_id,
        game_type=body.game_type,
        difficulty=body.difficulty,
        score=body.score,
        max_score=body.max_score,
        played_at=body.played_at if body.played_at is not None else now_ms(),
        time_spent_ms=body.time_spent_ms,
    )
    reward = await game_tracker.submit_result(result)
    return SubmissionOut(
        game_result_id=result.id,
        reward=RewardOut.model_validate(reward) if reward is not None else None,
    )


@router.get("/progress", response_model=ProgressOut)
async def get_progress(
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    progress = await game_tracker.get_progress(principal.user_id)
    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress store unavailable",
        )
    return ProgressOut.model_validate(progress)


@router.get("/rewards", response_model=list[RewardOut])
async def list_rewards(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[RewardOut]:
    rewards = await game_tracker.get_rewards(principal.user_id)
    return [RewardOut.model_validate(r) for r in rewards]


@router.post("/rewards/{reward_id}/redeem", response_model=RedeemOut)
async def redeem_reward(
    reward_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> RedeemOut:
    if not await game_tracker.redeem_reward(principal.user_id, reward_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Reward cannot be redeemed",
        )
    return RedeemOut(reward_id=reward_id, redeemed=True)


@router.get("/achievements", response_model=list[AchievementOut])
async def list_achievements(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[AchievementOut]:
    achievements = await achievement_evaluator.list_achievements(principal.user_id)
    return [AchievementOut.model_validate(a) for a in achievements]

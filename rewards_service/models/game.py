from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

from rewards_service.core.errors import ValidationError

# Rewards stay claimable for 30 days after they are earned.
REWARD_TTL_MS = 30 * 24 * 60 * 60 * 1000


class GameType(str, Enum):
    QUIZ = "QUIZ"
    PUZZLE = "PUZZLE"
    MEMORY_GAME = "MEMORY_GAME"
    WORD_MATCH = "WORD_MATCH"
    MATH_CHALLENGE = "MATH_CHALLENGE"


class GameDifficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


@dataclass(frozen=True, slots=True)
class GameResult:
    """One completed game, as reported by the client.  Never mutated."""

    id: str
    user_id: str
    game_type: GameType
    difficulty: GameDifficulty
    score: int
    max_score: int
    played_at: int
    time_spent_ms: int = 0

    @staticmethod
    def new(
        *,
        user_id: str,
        game_type: GameType,
        difficulty: GameDifficulty,
        score: int,
        max_score: int,
        played_at: int,
        time_spent_ms: int = 0,
    ) -> GameResult:
        return GameResult(
            id=str(uuid4()),
            user_id=user_id,
            game_type=game_type,
            difficulty=difficulty,
            score=score,
            max_score=max_score,
            played_at=played_at,
            time_spent_ms=time_spent_ms,
        )

    @property
    def score_percent(self) -> float:
        return self.score / self.max_score * 100

    def validate(self) -> None:
        if not self.id:
            raise ValidationError("game result id must be non-empty")
        if not self.user_id:
            raise ValidationError("user_id must be non-empty")
        if self.max_score <= 0:
            raise ValidationError(f"max_score must be positive (got {self.max_score})")
        if not 0 <= self.score <= self.max_score:
            raise ValidationError(
                f"score must be within 0..{self.max_score} (got {self.score})"
            )
        if self.time_spent_ms < 0:
            raise ValidationError("time_spent_ms must be >= 0")

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "game_type": self.game_type.value,
            "difficulty": self.difficulty.value,
            "score": self.score,
            "max_score": self.max_score,
            "played_at": self.played_at,
            "time_spent_ms": self.time_spent_ms,
        }

    @staticmethod
    def from_document(doc: dict[str, Any]) -> GameResult:
        return GameResult(
            id=doc["id"],
            user_id=doc["user_id"],
            game_type=GameType(doc["game_type"]),
            difficulty=GameDifficulty(doc["difficulty"]),
            score=int(doc["score"]),
            max_score=int(doc["max_score"]),
            played_at=int(doc["played_at"]),
            time_spent_ms=int(doc.get("time_spent_ms", 0)),
        )


@dataclass(frozen=True, slots=True)
class GameProgress:
    """Per-user play statistics.  Only the tracker writes these.

    ``average_score`` and ``level`` are derived; they are stored so that
    readers don't need the formulas, but are always recomputed on write.
    """

    user_id: str
    total_games_played: int = 0
    total_score: int = 0
    average_score: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    games_won: int = 0
    perfect_scores: int = 0
    total_rewards_earned: float = 0.0
    total_rewards_redeemed: float = 0.0
    experience_points: int = 0
    level: int = 1
    last_played_at: int = 0
    version: int = 0

    def to_document(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "total_games_played": self.total_games_played,
            "total_score": self.total_score,
            "average_score": self.average_score,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "games_won": self.games_won,
            "perfect_scores": self.perfect_scores,
            "total_rewards_earned": self.total_rewards_earned,
            "total_rewards_redeemed": self.total_rewards_redeemed,
            "experience_points": self.experience_points,
            "level": self.level,
            "last_played_at": self.last_played_at,
            "version": self.version,
        }

    @staticmethod
    def from_document(doc: dict[str, Any]) -> GameProgress:
        return GameProgress(
            user_id=doc["user_id"],
            total_games_played=int(doc.get("total_games_played", 0)),
            total_score=int(doc.get("total_score", 0)),
            average_score=float(doc.get("average_score", 0.0)),
            current_streak=int(doc.get("current_streak", 0)),
            longest_streak=int(doc.get("longest_streak", 0)),
            games_won=int(doc.get("games_won", 0)),
            perfect_scores=int(doc.get("perfect_scores", 0)),
            total_rewards_earned=float(doc.get("total_rewards_earned", 0.0)),
            total_rewards_redeemed=float(doc.get("total_rewards_redeemed", 0.0)),
            experience_points=int(doc.get("experience_points", 0)),
            level=int(doc.get("level", 1)),
            last_played_at=int(doc.get("last_played_at", 0)),
            version=int(doc.get("version", 0)),
        )


@dataclass(frozen=True, slots=True)
class StudentReward:
    id: str
    user_id: str
    game_result_id: str
    discount_amount: float
    discount_percentage: float
    description: str
    earned_at: int
    expires_at: int
    is_redeemed: bool = False
    redeemed_at: int | None = None

    @staticmethod
    def new(
        *,
        user_id: str,
        game_result_id: str,
        discount_amount: float,
        discount_percentage: float,
        description: str,
        earned_at: int,
    ) -> StudentReward:
        return StudentReward(
            id=str(uuid4()),
            user_id=user_id,
            game_result_id=game_result_id,
            discount_amount=discount_amount,
            discount_percentage=discount_percentage,
            description=description,
            earned_at=earned_at,
            expires_at=earned_at + REWARD_TTL_MS,
        )

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "game_result_id": self.game_result_id,
            "discount_amount": self.discount_amount,
            "discount_percentage": self.discount_percentage,
            "description": self.description,
            "earned_at": self.earned_at,
            "expires_at": self.expires_at,
            "is_redeemed": self.is_redeemed,
            "redeemed_at": self.redeemed_at,
        }

    @staticmethod
    def from_document(doc: dict[str, Any]) -> StudentReward:
        redeemed_at = doc.get("redeemed_at")
        return StudentReward(
            id=doc["id"],
            user_id=doc["user_id"],
            game_result_id=doc["game_result_id"],
            discount_amount=float(doc["discount_amount"]),
            discount_percentage=float(doc["discount_percentage"]),
            description=doc.get("description", ""),
            earned_at=int(doc["earned_at"]),
            expires_at=int(doc["expires_at"]),
            is_redeemed=bool(doc.get("is_redeemed", False)),
            redeemed_at=int(redeemed_at) if redeemed_at is not None else None,
        )

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class AchievementType(str, Enum):
    FIRST_WIN = "FIRST_WIN"
    STREAK_3 = "STREAK_3"
    STREAK_5 = "STREAK_5"
    STREAK_10 = "STREAK_10"
    PERFECT_SCORE = "PERFECT_SCORE"
    # No unlock rule yet; kept so stored documents round-trip.
    SPEED_DEMON = "SPEED_DEMON"
    GAME_MASTER = "GAME_MASTER"
    QUIZ_CHAMPION = "QUIZ_CHAMPION"
    PUZZLE_SOLVER = "PUZZLE_SOLVER"
    MEMORY_EXPERT = "MEMORY_EXPERT"


@dataclass(frozen=True, slots=True)
class StudentAchievement:
    id: str
    user_id: str
    achievement_type: AchievementType
    title: str
    description: str
    reward_amount: float
    unlocked_at: int

    @staticmethod
    def key_for(user_id: str, achievement_type: AchievementType) -> str:
        # One document per (user, type): a second unlock overwrites nothing new.
        return f"{user_id}:{achievement_type.value}"

    @staticmethod
    def new(
        *,
        user_id: str,
        achievement_type: AchievementType,
        title: str,
        description: str,
        reward_amount: float,
        unlocked_at: int,
    ) -> StudentAchievement:
        return StudentAchievement(
            id=StudentAchievement.key_for(user_id, achievement_type),
            user_id=user_id,
            achievement_type=achievement_type,
            title=title,
            description=description,
            reward_amount=reward_amount,
            unlocked_at=unlocked_at,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "achievement_type": self.achievement_type.value,
            "title": self.title,
            "description": self.description,
            "reward_amount": self.reward_amount,
            "unlocked_at": self.unlocked_at,
        }

    @staticmethod
    def from_document(doc: dict[str, Any]) -> StudentAchievement:
        return StudentAchievement(
            id=doc["id"],
            user_id=doc["user_id"],
            achievement_type=AchievementType(doc["achievement_type"]),
            title=doc.get("title", ""),
            description=doc.get("description", ""),
            reward_amount=float(doc.get("reward_amount", 0.0)),
            unlocked_at=int(doc["unlocked_at"]),
        )

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4


class PointsType(str, Enum):
    QUIZ_GAME_WIN = "QUIZ_GAME_WIN"
    MEMORY_GAME_WIN = "MEMORY_GAME_WIN"
    PUZZLE_GAME_WIN = "PUZZLE_GAME_WIN"
    COURSE_COMPLETION = "COURSE_COMPLETION"
    QUIZ_PASS = "QUIZ_PASS"
    DAILY_LOGIN = "DAILY_LOGIN"
    STREAK_BONUS = "STREAK_BONUS"
    SPENT = "SPENT"  # debit entries only; not awardable


@dataclass(frozen=True, slots=True)
class UserPoints:
    """Balance document, one per user.

    ``total_points`` is spendable; ``lifetime_points`` only ever grows.
    """

    user_id: str
    total_points: int = 0
    lifetime_points: int = 0
    level: int = 1
    next_level_points: int = 100
    created_at: int = 0
    last_updated: int = 0
    version: int = 0

    def to_document(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "total_points": self.total_points,
            "lifetime_points": self.lifetime_points,
            "level": self.level,
            "next_level_points": self.next_level_points,
            "created_at": self.created_at,
            "last_updated": self.last_updated,
            "version": self.version,
        }

    @staticmethod
    def from_document(doc: dict[str, Any]) -> UserPoints:
        return UserPoints(
            user_id=doc["user_id"],
            total_points=int(doc.get("total_points", 0)),
            lifetime_points=int(doc.get("lifetime_points", 0)),
            level=int(doc.get("level", 1)),
            next_level_points=int(doc.get("next_level_points", 100)),
            created_at=int(doc.get("created_at", 0)),
            last_updated=int(doc.get("last_updated", 0)),
            version=int(doc.get("version", 0)),
        )


@dataclass(frozen=True, slots=True)
class PointsTransaction:
    """Append-only ledger entry.  Debits carry a negative amount.

    ``seq`` is the balance version this entry produced, so it orders a
    user's entries strictly even when two share a millisecond.
    """

    id: str
    user_id: str
    points_type: PointsType
    amount: int
    timestamp: int
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    seq: int = 0

    @staticmethod
    def new(
        *,
        user_id: str,
        points_type: PointsType,
        amount: int,
        timestamp: int,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
        seq: int = 0,
    ) -> PointsTransaction:
        return PointsTransaction(
            id=str(uuid4()),
            user_id=user_id,
            points_type=points_type,
            amount=amount,
            timestamp=timestamp,
            reason=reason,
            metadata=dict(metadata or {}),
            seq=seq,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "points_type": self.points_type.value,
            "amount": self.amount,
            "timestamp": self.timestamp,
            "reason": self.reason,
            "metadata": dict(self.metadata),
            "seq": self.seq,
        }

    @staticmethod
    def from_document(doc: dict[str, Any]) -> PointsTransaction:
        return PointsTransaction(
            id=doc["id"],
            user_id=doc["user_id"],
            points_type=PointsType(doc["points_type"]),
            amount=int(doc["amount"]),
            timestamp=int(doc["timestamp"]),
            reason=doc.get("reason"),
            metadata=dict(doc.get("metadata") or {}),
            seq=int(doc.get("seq", 0)),
        )


@dataclass(frozen=True, slots=True)
class DiscountResult:
    original_price: float
    discount_amount: float
    final_price: float
    points_used: int
    discount_percentage: int

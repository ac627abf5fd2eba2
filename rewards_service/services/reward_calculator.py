"""Pure reward, experience and level arithmetic.

No I/O and no clock: the same inputs always give the same quote.  The
game tracker calls into this module.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rewards_service.models.game import GameDifficulty

WIN_THRESHOLD_PERCENT = 60.0
PERFECT_THRESHOLD_PERCENT = 90.0
XP_PER_LEVEL = 100


@dataclass(frozen=True, slots=True)
class RewardTier:
    min_percent: float
    bonus: float
    label: str


@dataclass(frozen=True, slots=True)
class RewardConfig:
    base_amount: float = 0.50
    # Highest threshold first; the first tier whose min_percent is met wins.
    tiers: tuple[RewardTier, ...] = (
        RewardTier(90.0, 1.00, "Perfect Performance!"),
        RewardTier(80.0, 0.50, "Excellent Work!"),
        RewardTier(70.0, 0.25, "Great Job!"),
        RewardTier(60.0, 0.00, "Good Effort!"),
    )
    streak_unit: float = 0.25
    streak_cap: float = 2.00
    daily_cap: float = 10.00
    # Discount percentages are quoted against this course price.
    reference_price: float = 50.00
    base_xp: dict[GameDifficulty, int] = field(
        default_factory=lambda: {
            GameDifficulty.EASY: 10,
            GameDifficulty.MEDIUM: 20,
            GameDifficulty.HARD: 30,
        }
    )


DEFAULT_CONFIG = RewardConfig()

DAILY_CAP_MESSAGE = "Daily reward limit reached. Try again tomorrow!"


@dataclass(frozen=True, slots=True)
class RewardQuote:
    amount: float
    description: str


def to_cents(amount: float) -> float:
    return round(amount, 2)


def is_win(score_percent: float) -> bool:
    return score_percent >= WIN_THRESHOLD_PERCENT


def is_perfect(score_percent: float) -> bool:
    return score_percent >= PERFECT_THRESHOLD_PERCENT


def compute_reward(
    score_percent: float,
    current_streak: int,
    difficulty: GameDifficulty,
    config: RewardConfig = DEFAULT_CONFIG,
) -> RewardQuote:
    """Quote the discount reward for one game.

    ``current_streak`` is the streak *before* this game is counted.
    Difficulty does not change the amount today, only the XP; it is part
    of the signature so tiers can become difficulty-aware without
    touching callers.
    """
    tier = next((t for t in config.tiers if score_percent >= t.min_percent), None)
    if tier is None:
        return RewardQuote(0.0, "")

    amount = config.base_amount + tier.bonus
    description = tier.label

    streak_bonus = to_cents(min(current_streak * config.streak_unit, config.streak_cap))
    if streak_bonus > 0:
        amount += streak_bonus
        description += f" Streak Bonus: +${streak_bonus:.2f}"

    return RewardQuote(to_cents(amount), description)


def apply_daily_cap(
    quote: RewardQuote, earned_today: float, config: RewardConfig = DEFAULT_CONFIG
) -> RewardQuote:
    """Clamp ``quote`` so the day's total never exceeds the cap."""
    if quote.amount <= 0:
        return quote
    if earned_today + quote.amount <= config.daily_cap:
        return quote
    remaining = to_cents(max(config.daily_cap - earned_today, 0.0))
    if remaining <= 0:
        return RewardQuote(0.0, DAILY_CAP_MESSAGE)
    return RewardQuote(remaining, quote.description)


def experience_points(
    score: int,
    max_score: int,
    difficulty: GameDifficulty,
    config: RewardConfig = DEFAULT_CONFIG,
) -> int:
    return int(config.base_xp[difficulty] * (score / max_score))


def level_for_xp(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


def discount_percentage(amount: float, config: RewardConfig = DEFAULT_CONFIG) -> float:
    return to_cents(amount / config.reference_price * 100)

"""Process-wide service instances.

Services are stateless: all per-user state lives in the document store,
so one instance of each per process is enough, and any number of
processes can serve the same users (with Redis providing the shared
per-user locks).  The backing store follows DATABASE_URL, the same way
the lock implementation follows REDIS_URL.
"""

from __future__ import annotations

from rewards_service.core.config import SETTINGS
from rewards_service.db.engine import async_session_factory
from rewards_service.repos.document_store import (
    DocumentStore,
    GuardedStore,
    InMemoryDocumentStore,
)
from rewards_service.repos.pg_document_store import PgDocumentStore
from rewards_service.services.achievement_evaluator import AchievementEvaluator
from rewards_service.services.game_progress_tracker import GameProgressTracker
from rewards_service.services.points_ledger import PointsLedger
from rewards_service.services.reward_calculator import RewardConfig
from rewards_service.services.user_lock import user_locks

if async_session_factory is not None:
    backing_store: DocumentStore = PgDocumentStore(async_session_factory)
else:
    backing_store = InMemoryDocumentStore()

store = GuardedStore(backing_store, timeout_seconds=SETTINGS.store_timeout_seconds)

reward_config = RewardConfig(daily_cap=SETTINGS.daily_reward_cap)

achievement_evaluator = AchievementEvaluator(store)

game_tracker = GameProgressTracker(
    store,
    user_locks,
    achievement_evaluator,
    config=reward_config,
    max_retries=SETTINGS.store_max_retries,
)

points_ledger = PointsLedger(
    store,
    user_locks,
    daily_cap=SETTINGS.points_daily_cap or None,  # 0 disables the cap
    max_retries=SETTINGS.store_max_retries,
)

"""Per-user serialization of read-modify-write sequences.

THE LOST-UPDATE PROBLEM
------------------------
Every engine write is a read-modify-write:

  1. Read progress (streak=2) and today's rewards (sum=9.50)
  2. Compute the new streak and the capped reward
  3. Write both back

Two submissions for the same user (two devices, or a client retrying
after a timeout) can both finish step 1 before either reaches step 3.
Both see sum=9.50, both grant 0.50, and the user ends the day at 10.50
against a 10.00 cap.  One of the two streak increments is also lost.

THE FIX: ONE WRITER PER USER
-----------------------------
Each service runs steps 1-3 inside ``async with user_locks.hold(user_id)``.
Submissions for different users never share a lock, so they still run
fully in parallel.

  InMemoryUserLocks: one asyncio.Lock per user id, created on demand
                     and dropped when nobody holds or waits for it.
                     Correct for one process only.

  RedisUserLocks:    a Redis lock (SET NX PX + token-checked release)
                     shared by every API instance.  Locks carry a TTL
                     so a crashed holder can't wedge a user forever.

Acquisition is bounded by the store timeout.  A caller that can't get
the lock in time gets StorageError, i.e. a declined operation, never
an indefinite wait.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from redis.exceptions import LockError, RedisError

from rewards_service.core.config import SETTINGS
from rewards_service.core.errors import StorageError
from rewards_service.db.redis import redis_pool

logger = logging.getLogger(__name__)


@runtime_checkable
class UserLocks(Protocol):
    def hold(self, user_id: str) -> AsyncIterator[None]:
        """Async context manager: exclusive section for ``user_id``."""
        ...


@dataclass
class _Entry:
    lock: asyncio.Lock
    holders: int = 0  # tasks holding or waiting


class InMemoryUserLocks:
    def __init__(self, *, timeout_seconds: float) -> None:
        self._timeout = timeout_seconds
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(user_id)
        if entry is None:
            entry = self._entries[user_id] = _Entry(asyncio.Lock())
        entry.holders += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self._timeout)
            except TimeoutError:
                logger.warning(
                    "Lock wait timed out user=%s", user_id, extra={"user_id": user_id}
                )
                raise StorageError(f"lock for user {user_id} timed out") from None
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(user_id, None)


class RedisUserLocks:
    _PREFIX = "lock:user:"

    def __init__(self, redis_client, *, timeout_seconds: float) -> None:
        self._redis = redis_client
        self._timeout = timeout_seconds
        # Held longer than any single operation should take, short enough
        # that a crashed holder frees the user quickly.
        self._ttl = max(timeout_seconds * 4, 10.0)

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            f"{self._PREFIX}{user_id}",
            timeout=self._ttl,
            blocking_timeout=self._timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise StorageError(f"lock for user {user_id} unavailable: {e}") from e
        if not acquired:
            logger.warning(
                "Lock wait timed out user=%s", user_id, extra={"user_id": user_id}
            )
            raise StorageError(f"lock for user {user_id} timed out")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # TTL expired mid-operation; the version check on commit
                # already protected the data.
                logger.warning(
                    "Lock expired before release user=%s",
                    user_id,
                    extra={"user_id": user_id},
                )


# ---------------------------------------------------------------------------
# Module-level singleton, conditional on Redis availability
# ---------------------------------------------------------------------------

if redis_pool is not None:
    user_locks: UserLocks = RedisUserLocks(
        redis_pool, timeout_seconds=SETTINGS.store_timeout_seconds
    )
else:
    user_locks = InMemoryUserLocks(timeout_seconds=SETTINGS.store_timeout_seconds)

"""Document store contract and the in-memory implementation.

THE STORE CONTRACT
-------------------
The engine treats persistence as a plain document store: collections of
JSON-able dicts addressed by a string key.  Four operations:

  get(collection, key)          -> document or None
  put(collection, key, doc)     -> unconditional single write
  query(collection, ...)        -> equality / lower-bound filter, order, limit
  commit(writes)                -> several writes, all or none

ATOMIC BATCHES
---------------
A game submission writes up to three documents (result, reward,
progress).  If the reward landed but the progress update didn't, the
next submission would see a reward with no matching streak, and the
daily cap would be computed against a history that progress never
acknowledged.  ``commit`` takes the whole set and applies it as one
unit: the in-memory store applies every write without yielding to the
event loop; the Postgres store wraps them in one transaction.

VERSIONED WRITES (OPTIMISTIC CONCURRENCY)
------------------------------------------
A ``Write`` may carry ``expected_version``.  The store compares it to
the ``version`` field of the document currently stored (0 if absent)
and refuses the whole batch with ConcurrencyConflict on mismatch.

Services already serialize work per user (see services/user_lock.py),
so conflicts only show up when two processes share a store without a
shared lock.  The version check is what makes that case safe.

TIMEOUTS
---------
``GuardedStore`` wraps any implementation and bounds every call with
``asyncio.wait_for``.  Timeouts and driver exceptions come out as
StorageError, so services only ever have to catch one type.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from rewards_service.core.errors import ConcurrencyConflict, RewardsError, StorageError

logger = logging.getLogger(__name__)

Document = dict[str, Any]

# Collection names
GAME_RESULTS = "game_results"
GAME_PROGRESS = "game_progress"
STUDENT_REWARDS = "student_rewards"
STUDENT_ACHIEVEMENTS = "student_achievements"
USER_POINTS = "user_points"
POINTS_TRANSACTIONS = "points_transactions"


@dataclass(frozen=True, slots=True)
class Write:
    collection: str
    key: str
    document: Document
    expected_version: int | None = None


@runtime_checkable
class DocumentStore(Protocol):
    async def get(self, collection: str, key: str) -> Document | None: ...

    async def put(self, collection: str, key: str, document: Document) -> None: ...

    async def query(
        self,
        collection: str,
        *,
        equals: Mapping[str, Any] | None = None,
        at_least: Mapping[str, float] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]: ...

    async def commit(self, writes: Sequence[Write]) -> None: ...


def _version_of(document: Document | None) -> int:
    if document is None:
        return 0
    return int(document.get("version", 0))


def _matches(
    document: Document,
    equals: Mapping[str, Any] | None,
    at_least: Mapping[str, float] | None,
) -> bool:
    if equals:
        for field_name, value in equals.items():
            if document.get(field_name) != value:
                return False
    if at_least:
        for field_name, bound in at_least.items():
            value = document.get(field_name)
            if value is None or value < bound:
                return False
    return True


class InMemoryDocumentStore:
    """Dict-backed store for tests and local dev.

    Documents are deep-copied on the way in and out so callers can't
    mutate stored state through a reference they kept.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}

    def clear(self) -> None:
        self._collections.clear()

    async def get(self, collection: str, key: str) -> Document | None:
        document = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(document) if document is not None else None

    async def put(self, collection: str, key: str, document: Document) -> None:
        self._collections.setdefault(collection, {})[key] = copy.deepcopy(document)

    async def query(
        self,
        collection: str,
        *,
        equals: Mapping[str, Any] | None = None,
        at_least: Mapping[str, float] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        docs = [
            d
            for d in self._collections.get(collection, {}).values()
            if _matches(d, equals, at_least)
        ]
        if order_by is not None:
            docs.sort(key=lambda d: d.get(order_by, 0), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return [copy.deepcopy(d) for d in docs]

    async def commit(self, writes: Sequence[Write]) -> None:
        # Check every version before touching anything: all or none.
        for w in writes:
            if w.expected_version is None:
                continue
            current = self._collections.get(w.collection, {}).get(w.key)
            found = _version_of(current)
            if found != w.expected_version:
                raise ConcurrencyConflict(w.collection, w.key, w.expected_version, found)

        for w in writes:
            self._collections.setdefault(w.collection, {})[w.key] = copy.deepcopy(
                w.document
            )


class GuardedStore:
    """Timeout + error-normalizing wrapper around any DocumentStore."""

    def __init__(self, inner: DocumentStore, *, timeout_seconds: float) -> None:
        self._inner = inner
        self._timeout = timeout_seconds

    @property
    def inner(self) -> DocumentStore:
        return self._inner

    async def _call(self, operation: str, coro) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except RewardsError:
            raise
        except TimeoutError:
            logger.warning(
                "Store %s timed out after %.2fs", operation, self._timeout
            )
            raise StorageError(f"{operation} timed out") from None
        except Exception as e:
            raise StorageError(f"{operation} failed: {e}") from e

    async def get(self, collection: str, key: str) -> Document | None:
        return await self._call("get", self._inner.get(collection, key))

    async def put(self, collection: str, key: str, document: Document) -> None:
        await self._call("put", self._inner.put(collection, key, document))

    async def query(
        self,
        collection: str,
        *,
        equals: Mapping[str, Any] | None = None,
        at_least: Mapping[str, float] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        return await self._call(
            "query",
            self._inner.query(
                collection,
                equals=equals,
                at_least=at_least,
                order_by=order_by,
                descending=descending,
                limit=limit,
            ),
        )

    async def commit(self, writes: Sequence[Write]) -> None:
        await self._call("commit", self._inner.commit(writes))

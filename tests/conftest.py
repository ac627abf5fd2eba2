from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import rewards_service` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rewards_service.main import app  # noqa: E402
from rewards_service.repos.document_store import (  # noqa: E402
    GuardedStore,
    InMemoryDocumentStore,
)
from rewards_service.services import engine  # noqa: E402
from rewards_service.services.user_lock import InMemoryUserLocks, user_locks  # noqa: E402


@pytest.fixture(autouse=True)
def reset_store() -> None:
    """Empty the in-memory document store between tests."""
    if isinstance(engine.backing_store, InMemoryDocumentStore):
        engine.backing_store.clear()


@pytest.fixture(autouse=True)
def reset_user_locks() -> None:
    """Drop per-user lock entries so no asyncio.Lock outlives its loop."""
    if isinstance(user_locks, InMemoryUserLocks):
        user_locks._entries.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def memory_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def store(memory_store: InMemoryDocumentStore) -> GuardedStore:
    return GuardedStore(memory_store, timeout_seconds=1.0)


@pytest.fixture
def locks() -> InMemoryUserLocks:
    return InMemoryUserLocks(timeout_seconds=1.0)


class FakeClock:
    """Settable epoch-ms clock for services that take ``clock=``."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FailingStore:
    """DocumentStore whose chosen operations raise or hang.

    Reads and writes that aren't sabotaged go to ``inner``, so a test
    can check afterwards that a failed commit left nothing behind.
    """

    def __init__(
        self,
        inner: InMemoryDocumentStore,
        *,
        fail_on: set[str] | None = None,
        hang_on: set[str] | None = None,
    ) -> None:
        self.inner = inner
        self.fail_on = fail_on or set()
        self.hang_on = hang_on or set()

    async def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise ConnectionError(f"{operation} unavailable")
        if operation in self.hang_on:
            await asyncio.sleep(10)

    async def get(self, collection, key):
        await self._maybe_fail("get")
        return await self.inner.get(collection, key)

    async def put(self, collection, key, document):
        await self._maybe_fail("put")
        await self.inner.put(collection, key, document)

    async def query(self, collection, **kwargs):
        await self._maybe_fail("query")
        return await self.inner.query(collection, **kwargs)

    async def commit(self, writes):
        await self._maybe_fail("commit")
        await self.inner.commit(writes)

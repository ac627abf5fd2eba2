from __future__ import annotations

import asyncio

import pytest

from rewards_service.core.errors import ConcurrencyConflict, StorageError
from rewards_service.repos.document_store import (
    DocumentStore,
    GuardedStore,
    InMemoryDocumentStore,
    Write,
)
from tests.conftest import FailingStore


def test_in_memory_store_satisfies_protocol() -> None:
    assert isinstance(InMemoryDocumentStore(), DocumentStore)


def test_get_returns_copy(memory_store: InMemoryDocumentStore) -> None:
    asyncio.run(memory_store.put("c", "k", {"n": 1}))
    doc = asyncio.run(memory_store.get("c", "k"))
    doc["n"] = 99
    assert asyncio.run(memory_store.get("c", "k")) == {"n": 1}


def test_get_missing_returns_none(memory_store: InMemoryDocumentStore) -> None:
    assert asyncio.run(memory_store.get("c", "nope")) is None


def test_query_filters_orders_and_limits(memory_store: InMemoryDocumentStore) -> None:
    async def run():
        await memory_store.put("c", "a", {"user_id": "u1", "t": 10})
        await memory_store.put("c", "b", {"user_id": "u1", "t": 30})
        await memory_store.put("c", "c", {"user_id": "u1", "t": 20})
        await memory_store.put("c", "d", {"user_id": "u2", "t": 40})
        return await memory_store.query(
            "c",
            equals={"user_id": "u1"},
            at_least={"t": 15},
            order_by="t",
            descending=True,
            limit=5,
        )

    assert [d["t"] for d in asyncio.run(run())] == [30, 20]


def test_commit_applies_all_writes(memory_store: InMemoryDocumentStore) -> None:
    asyncio.run(
        memory_store.commit(
            [Write("a", "1", {"v": 1}), Write("b", "1", {"version": 1}, expected_version=0)]
        )
    )
    assert asyncio.run(memory_store.get("a", "1")) == {"v": 1}
    assert asyncio.run(memory_store.get("b", "1")) == {"version": 1}


def test_commit_version_mismatch_writes_nothing(
    memory_store: InMemoryDocumentStore,
) -> None:
    asyncio.run(memory_store.put("p", "u1", {"version": 3}))

    with pytest.raises(ConcurrencyConflict) as exc:
        asyncio.run(
            memory_store.commit(
                [
                    Write("r", "x", {"amount": 1.0}),
                    Write("p", "u1", {"version": 3}, expected_version=2),
                ]
            )
        )

    assert (exc.value.expected, exc.value.found) == (2, 3)
    assert asyncio.run(memory_store.get("r", "x")) is None


def test_conflict_is_a_storage_error() -> None:
    assert issubclass(ConcurrencyConflict, StorageError)


# ---- GuardedStore ----


def test_guarded_store_maps_driver_errors(memory_store: InMemoryDocumentStore) -> None:
    guarded = GuardedStore(FailingStore(memory_store, fail_on={"get"}), timeout_seconds=1.0)
    with pytest.raises(StorageError, match="get failed"):
        asyncio.run(guarded.get("c", "k"))


def test_guarded_store_maps_timeouts(memory_store: InMemoryDocumentStore) -> None:
    guarded = GuardedStore(
        FailingStore(memory_store, hang_on={"query"}), timeout_seconds=0.05
    )
    with pytest.raises(StorageError, match="timed out"):
        asyncio.run(guarded.query("c"))


def test_guarded_store_passes_conflicts_through(
    memory_store: InMemoryDocumentStore,
) -> None:
    guarded = GuardedStore(memory_store, timeout_seconds=1.0)
    with pytest.raises(ConcurrencyConflict):
        asyncio.run(guarded.commit([Write("p", "u1", {"version": 1}, expected_version=5)]))

from __future__ import annotations

import asyncio

import pytest

from rewards_service.core.clock import DAY_MS
from rewards_service.models.points import PointsType, UserPoints
from rewards_service.repos.document_store import (
    POINTS_TRANSACTIONS,
    GuardedStore,
    InMemoryDocumentStore,
)
from rewards_service.services.points_ledger import (
    PointsLedger,
    apply_discount,
    calculate_discount_percentage,
    level_for_points,
    points_to_next_level,
)
from rewards_service.services.user_lock import InMemoryUserLocks
from tests.conftest import FailingStore, FakeClock


def _ledger(
    store: GuardedStore, clock: FakeClock, daily_cap: int | None = None
) -> PointsLedger:
    return PointsLedger(
        store,
        InMemoryUserLocks(timeout_seconds=5.0),
        daily_cap=daily_cap,
        clock=clock,
    )


# ---- award / spend ----


def test_new_user_has_initial_balance(store: GuardedStore, clock: FakeClock) -> None:
    points = asyncio.run(_ledger(store, clock).get_user_points("u1"))
    assert points == UserPoints(user_id="u1")
    assert (points.total_points, points.lifetime_points, points.level) == (0, 0, 1)
    assert points.next_level_points == 100


def test_award_uses_activity_default(store: GuardedStore, clock: FakeClock) -> None:
    ledger = _ledger(store, clock)

    async def run():
        ok = await ledger.award("u1", PointsType.QUIZ_GAME_WIN)
        return ok, await ledger.get_user_points("u1")

    ok, points = asyncio.run(run())
    assert ok is True
    assert points.total_points == 50
    assert points.lifetime_points == 50
    assert points.next_level_points == 50
    assert points.created_at == clock.now


def test_award_amount_overrides_default(store: GuardedStore, clock: FakeClock) -> None:
    ledger = _ledger(store, clock)

    async def run():
        await ledger.award("u1", PointsType.DAILY_LOGIN, 25, {"source": "app"})
        return await ledger.get_history("u1")

    (txn,) = asyncio.run(run())
    assert txn.amount == 25
    assert txn.points_type is PointsType.DAILY_LOGIN
    assert txn.metadata == {"source": "app"}


def test_spend_lowers_balance_but_not_lifetime_or_level(
    store: GuardedStore, clock: FakeClock
) -> None:
    ledger = _ledger(store, clock)

    async def run():
        await ledger.award("u1", PointsType.COURSE_COMPLETION)
        ok = await ledger.spend("u1", 450)
        return ok, await ledger.get_user_points("u1")

    ok, points = asyncio.run(run())
    assert ok is True
    assert points.total_points == 50
    assert points.lifetime_points == 500
    assert points.level == 3
    assert points.next_level_points == 100


def test_spend_more_than_balance_is_rejected(
    memory_store: InMemoryDocumentStore, store: GuardedStore, clock: FakeClock
) -> None:
    ledger = _ledger(store, clock)

    async def run():
        await ledger.award("u1", PointsType.QUIZ_GAME_WIN)
        ok = await ledger.spend("u1", 51)
        return ok, await ledger.get_user_points("u1")

    ok, points = asyncio.run(run())
    assert ok is False
    assert points.total_points == 50
    assert len(asyncio.run(memory_store.query(POINTS_TRANSACTIONS))) == 1


@pytest.mark.parametrize(
    ("points_type", "amount"),
    [(PointsType.SPENT, None), (PointsType.QUIZ_PASS, 0), (PointsType.QUIZ_PASS, -5)],
)
def test_invalid_awards_are_rejected(
    store: GuardedStore, clock: FakeClock, points_type: PointsType, amount: int | None
) -> None:
    assert asyncio.run(_ledger(store, clock).award("u1", points_type, amount)) is False


def test_non_positive_spend_is_rejected(store: GuardedStore, clock: FakeClock) -> None:
    assert asyncio.run(_ledger(store, clock).spend("u1", 0)) is False


def test_history_is_newest_first_and_sums_to_balance(
    store: GuardedStore, clock: FakeClock
) -> None:
    ledger = _ledger(store, clock)

    async def run():
        await ledger.award("u1", PointsType.QUIZ_PASS)
        clock.advance(1)
        await ledger.award("u1", PointsType.STREAK_BONUS)
        clock.advance(1)
        await ledger.spend("u1", 70, "Python course")
        return await ledger.get_history("u1"), await ledger.get_user_points("u1")

    history, points = asyncio.run(run())
    assert [t.amount for t in history] == [-70, 20, 100]
    assert history[0].points_type is PointsType.SPENT
    assert history[0].reason == "Python course"
    assert sum(t.amount for t in history) == points.total_points == 50


def test_award_then_spend_round_trip(store: GuardedStore, clock: FakeClock) -> None:
    ledger = _ledger(store, clock)

    async def run():
        before = await ledger.get_user_points("u1")
        await ledger.award("u1", PointsType.QUIZ_GAME_WIN)
        spent = await ledger.spend("u1", 50)
        return before, spent, await ledger.get_user_points("u1")

    before, spent, after = asyncio.run(run())
    assert spent is True
    assert after.total_points == before.total_points
    assert after.lifetime_points == before.lifetime_points + 50


def test_history_orders_entries_within_one_millisecond(
    store: GuardedStore, clock: FakeClock
) -> None:
    ledger = _ledger(store, clock)

    async def run():
        await ledger.award("u1", PointsType.QUIZ_GAME_WIN)
        await ledger.award("u1", PointsType.DAILY_LOGIN)
        await ledger.spend("u1", 50)
        return await ledger.get_history("u1", limit=1), await ledger.get_history("u1")

    (latest,), history = asyncio.run(run())
    assert latest.points_type is PointsType.SPENT
    assert [t.seq for t in history] == [3, 2, 1]
    assert [t.amount for t in history] == [-50, 10, 50]


def test_history_respects_limit(store: GuardedStore, clock: FakeClock) -> None:
    ledger = _ledger(store, clock)

    async def run():
        for _ in range(5):
            await ledger.award("u1", PointsType.DAILY_LOGIN)
            clock.advance(1)
        return await ledger.get_history("u1", limit=2), await ledger.get_history("u1", limit=0)

    limited, empty = asyncio.run(run())
    assert len(limited) == 2
    assert empty == []


def test_concurrent_spends_never_overdraw(store: GuardedStore, clock: FakeClock) -> None:
    ledger = _ledger(store, clock)

    async def run():
        await ledger.award("u1", PointsType.QUIZ_PASS)
        results = await asyncio.gather(*(ledger.spend("u1", 30) for _ in range(5)))
        return results, await ledger.get_user_points("u1")

    results, points = asyncio.run(run())
    assert results.count(True) == 3
    assert points.total_points == 10


# ---- daily earning cap ----


def test_daily_cap_clamps_then_rejects(store: GuardedStore, clock: FakeClock) -> None:
    ledger = _ledger(store, clock, daily_cap=550)

    async def run():
        first = await ledger.award("u1", PointsType.COURSE_COMPLETION)
        second = await ledger.award("u1", PointsType.QUIZ_PASS)
        third = await ledger.award("u1", PointsType.DAILY_LOGIN)
        return first, second, third, await ledger.get_user_points("u1")

    first, second, third, points = asyncio.run(run())
    assert (first, second, third) == (True, True, False)
    assert points.total_points == 550


def test_daily_cap_ignores_spending_and_resets_next_day(
    store: GuardedStore, clock: FakeClock
) -> None:
    ledger = _ledger(store, clock, daily_cap=100)

    async def run():
        await ledger.award("u1", PointsType.QUIZ_PASS)
        await ledger.spend("u1", 100)
        capped = await ledger.award("u1", PointsType.DAILY_LOGIN)
        clock.advance(DAY_MS)
        fresh = await ledger.award("u1", PointsType.DAILY_LOGIN)
        return capped, fresh

    assert asyncio.run(run()) == (False, True)


# ---- storage failures ----


def test_commit_failure_leaves_balance_unchanged(
    memory_store: InMemoryDocumentStore, clock: FakeClock
) -> None:
    failing = FailingStore(memory_store, fail_on={"commit"})
    ledger = _ledger(GuardedStore(failing, timeout_seconds=1.0), clock)

    assert asyncio.run(ledger.award("u1", PointsType.QUIZ_PASS)) is False
    assert asyncio.run(memory_store.query(POINTS_TRANSACTIONS)) == []


def test_unreadable_store_reports_none_and_empty_history(
    memory_store: InMemoryDocumentStore, clock: FakeClock
) -> None:
    failing = FailingStore(memory_store, fail_on={"get", "query"})
    ledger = _ledger(GuardedStore(failing, timeout_seconds=1.0), clock)

    assert asyncio.run(ledger.get_user_points("u1")) is None
    assert asyncio.run(ledger.get_history("u1")) == []


# ---- levels and discounts (pure) ----


@pytest.mark.parametrize(
    ("points", "level", "to_next"),
    [(0, 1, 100), (99, 1, 1), (100, 2, 200), (999, 4, 1), (6000, 9, 4000), (10000, 10, 0)],
)
def test_levels(points: int, level: int, to_next: int) -> None:
    assert level_for_points(points) == level
    assert points_to_next_level(points) == to_next


@pytest.mark.parametrize(
    ("points", "percent"), [(0, 0), (99, 0), (250, 2), (5000, 50), (99999, 50)]
)
def test_calculate_discount_percentage(points: int, percent: int) -> None:
    assert calculate_discount_percentage(points) == percent


def test_apply_discount_caps_at_half_price() -> None:
    result = apply_discount(100.0, 100000)
    assert result.final_price == 50.0
    assert result.discount_amount == 50.0
    assert result.points_used == 5000
    assert result.discount_percentage == 50


def test_apply_discount_uses_only_points_offered() -> None:
    result = apply_discount(100.0, 1000)
    assert result.points_used == 1000
    assert result.final_price == 90.0
    assert result.discount_percentage == 10


def test_apply_discount_free_course() -> None:
    result = apply_discount(0.0, 500)
    assert (result.final_price, result.points_used) == (0.0, 0)


@pytest.mark.parametrize(
    ("price", "points"),
    [(-1.0, 100), (10.0, -100), (float("inf"), 10), (float("nan"), 10)],
)
def test_apply_discount_rejects_invalid_input(price: float, points: int) -> None:
    assert apply_discount(price, points) is None


def test_ledger_exposes_pure_conversions(store: GuardedStore, clock: FakeClock) -> None:
    ledger = _ledger(store, clock)
    assert ledger.calculate_discount_percentage(300) == 3
    assert ledger.apply_discount(20.0, 500).final_price == 15.0

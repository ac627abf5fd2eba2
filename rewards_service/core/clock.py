from __future__ import annotations

import datetime
from collections.abc import Callable

DAY_MS = 24 * 60 * 60 * 1000

Clock = Callable[[], int]


def now_ms() -> int:
    """Wall-clock time as epoch milliseconds (UTC)."""
    return int(datetime.datetime.now(datetime.UTC).timestamp() * 1000)


def start_of_day(ts_ms: int) -> int:
    # Day windows are aligned to the epoch, same clock as the stored timestamps.
    return ts_ms - (ts_ms % DAY_MS)

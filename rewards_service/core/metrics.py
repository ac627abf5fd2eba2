"""Application metrics using the Prometheus client library.

All metrics are defined here, in one inventory.  Services import the
ones they own and increment them at the point of action.

Engine counters are the aggregate view of what the log records one
event at a time: how many submissions were rewarded versus declined,
and why they were declined.  A spike in ``reason="daily_cap"`` is normal
in the evening; a spike in ``reason="storage"`` is an outage.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Engine metrics
# ---------------------------------------------------------------------------

GAME_SUBMISSIONS = Counter(
    "game_submissions_total",
    "Game results submitted, by outcome",
    ["outcome"],  # rewarded|no_reward|daily_cap|replay|invalid|storage
)

REWARD_AMOUNT = Counter(
    "reward_discount_amount_total",
    "Sum of discount currency granted as game rewards",
)

ACHIEVEMENTS_UNLOCKED = Counter(
    "achievements_unlocked_total",
    "Achievements unlocked, by type",
    ["achievement_type"],
)

POINTS_AWARDED = Counter(
    "points_awarded_total",
    "Points credited to user balances, by activity",
    ["points_type"],
)

POINTS_SPENT = Counter(
    "points_spent_total",
    "Points debited from user balances",
)

POINTS_REJECTED = Counter(
    "points_operations_rejected_total",
    "Ledger operations declined, by operation and reason",
    ["operation", "reason"],  # award|spend x insufficient|daily_cap|invalid|storage
)

STORE_ERRORS = Counter(
    "store_errors_total",
    "Document store failures surfaced as declined operations",
    ["operation"],
)

STORE_CONFLICTS = Counter(
    "store_conflicts_total",
    "Optimistic-lock conflicts (each retry counts once)",
    ["collection"],
)

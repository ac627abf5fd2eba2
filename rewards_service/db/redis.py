"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured we create a real
connection pool; when it's None (local dev, tests) per-user locking
falls back to in-process asyncio locks and no Redis server is needed.

WHAT REDIS IS FOR HERE
-----------------------
Only coordination.  Documents live in Postgres; Redis holds short-lived
per-user locks so that two API instances never run a read-modify-write
on the same user's progress or balance at the same time.  Losing Redis
state loses nothing but in-flight locks, which expire on their own.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from rewards_service.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
        socket_timeout=SETTINGS.store_timeout_seconds,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis; mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, per-user locks are process-local")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        # Start anyway: lock acquisition will fail and decline operations
        # until Redis comes back, which /health reports as degraded.
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")

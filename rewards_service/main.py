from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rewards_service.api.games import router as games_router
from rewards_service.api.health import router as health_router
from rewards_service.api.metrics_endpoint import router as metrics_router
from rewards_service.api.points import router as points_router
from rewards_service.core.config import SETTINGS
from rewards_service.core.logging import setup_logging
from rewards_service.db.engine import lifespan_db
from rewards_service.db.redis import lifespan_redis
from rewards_service.middleware.metrics import MetricsMiddleware
from rewards_service.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse order (Redis closes before the DB engine).
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="rewards-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) → Metrics → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(games_router)
app.include_router(points_router)

logger.info(
    "rewards-service started  env=%s log_level=%s port=%d daily_reward_cap=%.2f",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.daily_reward_cap,
)

"""Health and readiness endpoints.

  /health (liveness): 200 whenever the process can answer; ``status``
    says whether the store and Redis are reachable.
  /ready (readiness): 503 while the document store can't be read, so
    the load balancer stops routing submissions that would all be
    declined anyway.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response

from rewards_service.core.errors import StorageError
from rewards_service.db.redis import redis_pool
from rewards_service.repos.document_store import InMemoryDocumentStore
from rewards_service.services.engine import store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_HEALTH_COLLECTION = "_health"


async def _store_status() -> str:
    if isinstance(store.inner, InMemoryDocumentStore):
        return "in_memory"
    try:
        await store.get(_HEALTH_COLLECTION, "ping")
    except StorageError:
        logger.warning("Store health check failed")
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    checks["store"] = await _store_status()
    if checks["store"] == "degraded":
        overall = "degraded"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _store_status() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)

"""Liveness and readiness probes."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from catalog_io.core.config import get_settings
from catalog_io.db.session import engine
from catalog_io.storage.object_store import BUCKETS
from catalog_io.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "catalog-io-api"


def _check_database() -> dict[str, str]:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Database connection failed: {e}"}
    return {"status": "healthy", "message": "Database connection successful"}


def _check_storage() -> dict[str, str]:
    root = Path(get_settings().storage_root)
    missing = [bucket for bucket in BUCKETS if not (root / bucket).is_dir()]
    if missing:
        return {"status": "unhealthy", "message": f"Missing storage buckets: {', '.join(missing)}"}
    return {"status": "healthy", "message": "Storage buckets present"}


def _check_redis(url: str, label: str) -> dict[str, str]:
    try:
        client = create_redis_client(url, decode_responses=True, socket_connect_timeout=2)
        try:
            client.ping()
        finally:
            client.close()
    except RedisError as e:
        logger.warning(f"{label} health check failed: {e}")
        return {"status": "unhealthy", "message": f"{label} connection failed: {e}"}
    return {"status": "healthy", "message": f"{label} connection successful"}


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates the API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/ready", summary="Readiness probe")
def ready() -> dict[str, Any]:
    """Check the database and storage, plus Redis when it backs rate limiting.

    The Celery broker is reported but never fails readiness; workers may run
    elsewhere and synchronous processing does not need them.
    """
    settings = get_settings()
    checks: dict[str, Any] = {"status": "ok", "service": SERVICE_NAME, "checks": {}}

    checks["checks"]["database"] = _check_database()
    checks["checks"]["storage"] = _check_storage()
    if settings.rate_limit_backend == "redis":
        checks["checks"]["redis"] = _check_redis(settings.redis_url, "Redis")
    checks["checks"]["celery_broker"] = _check_redis(
        settings.celery_broker_url or settings.redis_url, "Celery broker"
    )

    required = [name for name in ("database", "storage", "redis") if name in checks["checks"]]
    if any(checks["checks"][name]["status"] != "healthy" for name in required):
        checks["status"] = "unhealthy"
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=checks)

    return checks

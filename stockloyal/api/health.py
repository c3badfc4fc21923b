"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (database, redis, log directory)
"""
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from stockloyal.config import Settings, get_settings
from stockloyal.database import get_optional_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


async def _check_database(db: Optional[AsyncSession]) -> Optional[bool]:
    if db is None:
        return None
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return False


async def _check_redis(settings: Settings) -> Optional[bool]:
    if settings.state_backend != "redis":
        return None
    try:
        from stockloyal.utils.dedup import get_redis
        redis = await get_redis()
        await redis.ping()
        return True
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return False


def _check_log_dir(settings: Settings) -> bool:
    root = Path(settings.webhook_log_dir)
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Log directory unavailable: %s", str(e))
        return False
    return os.access(root, os.W_OK)


@router.get("/health/ready")
async def readiness_check(
    settings: Settings = Depends(get_settings),
    db: Optional[AsyncSession] = Depends(get_optional_db),
):
    """
    Readiness check. Unconfigured dependencies are reported as null and
    do not count against readiness.
    """
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(settings),
        "log_dir": _check_log_dir(settings),
    }
    all_healthy = all(v for v in checks.values() if v is not None)
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

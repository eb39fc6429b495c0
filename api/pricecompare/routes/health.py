from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from pricecompare.db.session import async_transaction
from pricecompare.services.cache import ResultCache

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _check(healthy: bool, message: str) -> Dict[str, str]:
    return {"status": "healthy" if healthy else "unhealthy", "message": message}


async def _check_database() -> Dict[str, str]:
    try:
        async with async_transaction() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return _check(False, "Database connection failed")
    return _check(True, "Database connection successful")


async def _check_cache(cache: Optional[ResultCache]) -> Dict[str, str]:
    if cache is None:
        return _check(True, "Result cache disabled")
    try:
        await cache.store.ping()
    except Exception as e:
        logger.error(f"Cache health check failed: {e}")
        return _check(False, "Result cache unavailable")
    return _check(True, "Result cache available")


@router.get("/healthz")
async def healthcheck() -> dict[str, str]:
    """
    Basic liveness probe - returns OK if the application is running.
    """
    return {"status": "ok"}


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """
    Readiness check over the database and the result cache store.
    Returns 200 if all checks pass, 503 if any check fails.
    """
    checks = {
        "database": await _check_database(),
        "cache": await _check_cache(request.app.state.comparison_service.cache),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())

    body: Dict[str, Any] = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body,
    )

"""Liveness and readiness checks.

/health  "is the process alive?"  Always 200; the body says whether a
         dependency is degraded.
/ready   "should the load balancer send traffic here?"  503 until the
         unified view has been built once, so a fresh replica does not
         make its first dashboard readers pay for the full scan.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response, status
from sqlalchemy import text

from enrollment_hub.db.engine import async_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if async_session_factory is not None:
        try:
            async with async_session_factory() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            logger.warning("Database health check failed", exc_info=True)
            checks["database"] = "degraded"
            overall = "degraded"
    else:
        checks["database"] = "not_configured"

    cache = getattr(request.app.state, "enrollment_cache", None)
    if cache is None:
        checks["unified_cache"] = "not_initialised"
        overall = "degraded"
    else:
        checks["unified_cache"] = cache.state
        if cache.last_error is not None:
            overall = "degraded"

    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready(request: Request) -> Response:
    cache = getattr(request.app.state, "enrollment_cache", None)
    if cache is None or not cache.has_warmed:
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)

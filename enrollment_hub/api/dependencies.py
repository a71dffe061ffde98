from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status

from enrollment_hub.services.unified_cache import UnifiedEnrollmentCache

logger = logging.getLogger(__name__)


def get_enrollment_cache(request: Request) -> UnifiedEnrollmentCache:
    """The cache instance owned by the app lifespan.

    Dashboards read through it; write paths call ``invalidate()`` on it.
    """
    cache = getattr(request.app.state, "enrollment_cache", None)
    if cache is None:
        logger.error("Unified enrollment cache requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="unified enrollment cache not initialised",
        )
    return cache

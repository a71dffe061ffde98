"""Unified enrollment endpoints.

Read side (dashboards, reports):
  GET  /v1/enrollments          -> filtered, paginated unified view
  GET  /v1/enrollments/summary  -> counts for the migration dashboard
  GET  /v1/enrollments/cache    -> cache bookkeeping

Write side (sync jobs, migration scripts, batch imports):
  POST /v1/enrollments/cache/invalidate
       -> call right after changing legacy users or user_products.
          Returns 202 immediately; the rebuild runs in the background.

A failed rebuild is a 503 with a "unified view unavailable" detail, so
callers can tell it apart from a normal response that merely skipped some
malformed records.
"""

from __future__ import annotations

import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from enrollment_hub.api.dependencies import get_enrollment_cache
from enrollment_hub.models.enrollment import CanonicalEnrollment
from enrollment_hub.services.unified_cache import (
    CacheRefreshError,
    UnifiedEnrollmentCache,
)

router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])

CacheDep = Annotated[UnifiedEnrollmentCache, Depends(get_enrollment_cache)]


class ProductOut(BaseModel):
    id: str
    code: str
    name: str
    platform: str


class EnrollmentOut(BaseModel):
    id: str
    user_id: str
    user_display_name: str
    user_email: str
    product: ProductOut
    platform: str
    platform_external_id: str
    status: str
    progress_percentage: float
    engagement_score: float
    engagement_level: str
    enrolled_at: datetime.datetime | None
    last_activity_at: datetime.datetime | None
    origin: str
    has_nested_data: bool
    source: str
    tags: list[str]


class EnrollmentPage(BaseModel):
    total: int
    limit: int
    offset: int
    items: list[EnrollmentOut]


class EnrollmentSummary(BaseModel):
    total_count: int
    legacy_count: int
    normalized_count: int
    unique_users: int
    migrated_ratio: float
    by_platform: dict[str, int]
    by_status: dict[str, int]


class CacheStatsOut(BaseModel):
    exists: bool
    state: str
    age_seconds: float | None
    ttl_seconds: float
    is_expired: bool
    is_refreshing: bool
    refresh_count: int
    last_error: str | None
    mapping_version: str
    total_count: int
    legacy_count: int
    normalized_count: int
    unique_users: int
    by_platform: dict[str, int]
    by_status: dict[str, int]


def _unavailable(exc: CacheRefreshError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"unified view unavailable: {exc}",
    )


async def _unified(cache: UnifiedEnrollmentCache) -> tuple[CanonicalEnrollment, ...]:
    try:
        return await cache.get()
    except CacheRefreshError as exc:
        raise _unavailable(exc) from exc


@router.get("", response_model=EnrollmentPage)
async def list_enrollments(
    cache: CacheDep,
    platform: str | None = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    origin: Literal["legacy", "normalized"] | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> EnrollmentPage:
    enrollments = await _unified(cache)

    selected = [
        e
        for e in enrollments
        if (platform is None or e.platform == platform.lower())
        and (status_filter is None or e.status == status_filter.upper())
        and (origin is None or e.origin == origin)
    ]
    page = selected[offset : offset + limit]
    return EnrollmentPage(
        total=len(selected),
        limit=limit,
        offset=offset,
        items=[EnrollmentOut.model_validate(e.to_dict()) for e in page],
    )


@router.get("/summary", response_model=EnrollmentSummary)
async def enrollment_summary(cache: CacheDep) -> EnrollmentSummary:
    # counters computed at refresh time, for the same view the list endpoint serves
    try:
        stats = await cache.get_stats()
    except CacheRefreshError as exc:
        raise _unavailable(exc) from exc
    return EnrollmentSummary(
        total_count=stats.total_count,
        legacy_count=stats.legacy_count,
        normalized_count=stats.normalized_count,
        unique_users=stats.unique_users,
        migrated_ratio=round(stats.migrated_ratio, 4),
        by_platform=dict(stats.by_platform),
        by_status=dict(stats.by_status),
    )


@router.get("/cache", response_model=CacheStatsOut)
async def cache_stats(cache: CacheDep) -> CacheStatsOut:
    return CacheStatsOut(**cache.stats().to_dict())


@router.post("/cache/invalidate", status_code=status.HTTP_202_ACCEPTED)
async def invalidate_cache(cache: CacheDep) -> dict[str, str]:
    cache.invalidate()
    return {"status": "refreshing"}

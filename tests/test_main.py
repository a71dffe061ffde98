from __future__ import annotations

from dataclasses import replace

from fastapi.testclient import TestClient

from enrollment_hub.core.config import SETTINGS
from enrollment_hub.main import build_enrollment_cache, build_enrollment_source, create_app
from enrollment_hub.repos.enrollment_source_repo import InMemoryEnrollmentSourceRepo
from enrollment_hub.services.unified_cache import UnifiedEnrollmentCache
from tests.conftest import ALL_PRODUCTS, make_user


def test_without_database_url_source_is_in_memory() -> None:
    assert isinstance(build_enrollment_source(), InMemoryEnrollmentSourceRepo)


def test_cache_is_built_from_settings() -> None:
    settings = replace(
        SETTINGS,
        unified_cache_ttl_seconds=60.0,
        unified_cache_refresh_threshold_seconds=45.0,
    )
    cache = build_enrollment_cache(InMemoryEnrollmentSourceRepo(), settings)
    assert isinstance(cache, UnifiedEnrollmentCache)
    assert cache.stats().ttl_seconds == 60.0


def test_lifespan_owns_one_cache_per_app() -> None:
    source = InMemoryEnrollmentSourceRepo(
        legacy_users=[make_user("U1", hotmartUserId="h1")], products=ALL_PRODUCTS
    )
    app = create_app(source=source)

    with TestClient(app) as client:
        cache = app.state.enrollment_cache
        assert app.state.enrollment_source is source
        assert cache.has_warmed
        # warm-up already paid for the scan; reads are hits
        assert client.get("/v1/enrollments").json()["total"] == 1
        assert source.read_count == 3

    other = create_app(source=source)
    with TestClient(other):
        assert other.state.enrollment_cache is not cache


def test_warm_up_can_be_disabled() -> None:
    source = InMemoryEnrollmentSourceRepo(products=ALL_PRODUCTS)
    app = create_app(source=source, settings=replace(SETTINGS, warm_up_on_startup=False))

    with TestClient(app) as client:
        assert source.read_count == 0
        assert client.get("/ready").status_code == 503
        assert client.get("/v1/enrollments").status_code == 200
        assert client.get("/ready").status_code == 200

"""HTTP surface over the unified view.

The client fixture runs the app lifespan, so the cache is already warm
(over an empty source) when each test starts.  Tests that add data go
through POST /cache/invalidate, the same way a sync job would.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from enrollment_hub.repos.enrollment_source_repo import InMemoryEnrollmentSourceRepo
from tests.conftest import CURSEDUCA_PRODUCT, HOTMART_PRODUCT, make_user, make_user_product


def _seed(source: InMemoryEnrollmentSourceRepo) -> None:
    source.add_legacy_user(
        make_user(
            "U1",
            hotmart={"hotmartUserId": "h1", "progress": {"completed": 3, "total": 10}},
            discord={"discordIds": ["d1"]},
        )
    )
    source.add_legacy_user(make_user("U2", hotmart={"hotmartUserId": "h2"}))
    source.add_normalized_record(
        make_user_product("up-2", "U2", CURSEDUCA_PRODUCT, "c2", status="INACTIVE")
    )


def _refresh(client: TestClient) -> None:
    resp = client.post("/v1/enrollments/cache/invalidate")
    assert resp.status_code == 202
    assert resp.json() == {"status": "refreshing"}


def test_list_is_empty_for_empty_source(client: TestClient) -> None:
    resp = client.get("/v1/enrollments")
    assert resp.status_code == 200
    assert resp.json() == {"total": 0, "limit": 100, "offset": 0, "items": []}


def test_invalidate_makes_new_data_visible(
    client: TestClient, source: InMemoryEnrollmentSourceRepo
) -> None:
    _seed(source)
    _refresh(client)

    resp = client.get("/v1/enrollments")

    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 3
    ids = [item["id"] for item in body["items"]]
    assert ids == ["up-2", "legacy:hotmart:U1", "legacy:discord:U1"]


def test_enrollment_payload_shape(
    client: TestClient, source: InMemoryEnrollmentSourceRepo
) -> None:
    _seed(source)
    _refresh(client)

    items = client.get("/v1/enrollments", params={"platform": "hotmart"}).json()["items"]

    (item,) = items
    assert item["user_id"] == "U1"
    assert item["platform_external_id"] == "h1"
    assert item["progress_percentage"] == 30.0
    assert item["status"] == "ACTIVE"
    assert item["origin"] == "legacy"
    assert item["source"] == "MIGRATION"
    assert item["product"] == {
        "id": HOTMART_PRODUCT["id"],
        "code": HOTMART_PRODUCT["code"],
        "name": HOTMART_PRODUCT["name"],
        "platform": "hotmart",
    }


def test_filters_and_pagination(
    client: TestClient, source: InMemoryEnrollmentSourceRepo
) -> None:
    _seed(source)
    _refresh(client)

    inactive = client.get("/v1/enrollments", params={"status": "inactive"}).json()
    assert [i["id"] for i in inactive["items"]] == ["up-2"]

    legacy = client.get("/v1/enrollments", params={"origin": "legacy"}).json()
    assert legacy["total"] == 2

    page = client.get("/v1/enrollments", params={"limit": 1, "offset": 1}).json()
    assert page["total"] == 3
    assert [i["id"] for i in page["items"]] == ["legacy:hotmart:U1"]


def test_invalid_query_params_are_rejected(client: TestClient) -> None:
    assert client.get("/v1/enrollments", params={"limit": 0}).status_code == 422
    assert client.get("/v1/enrollments", params={"origin": "both"}).status_code == 422


def test_summary_reports_migration_progress(
    client: TestClient, source: InMemoryEnrollmentSourceRepo
) -> None:
    _seed(source)
    _refresh(client)

    resp = client.get("/v1/enrollments/summary")

    assert resp.status_code == 200
    assert resp.json() == {
        "total_count": 3,
        "legacy_count": 2,
        "normalized_count": 1,
        "unique_users": 2,
        "migrated_ratio": 0.3333,
        "by_platform": {"curseduca": 1, "hotmart": 1, "discord": 1},
        "by_status": {"INACTIVE": 1, "ACTIVE": 2},
    }


def test_cache_stats_endpoint(client: TestClient) -> None:
    resp = client.get("/v1/enrollments/cache")

    assert resp.status_code == 200
    body = resp.json()
    assert body["exists"] is True
    assert body["state"] == "WARM"
    assert body["mapping_version"] == "3.1"
    assert body["last_error"] is None


def test_refresh_failure_is_a_503(
    client: TestClient, source: InMemoryEnrollmentSourceRepo
) -> None:
    async def broken() -> list:
        raise ConnectionError("database unreachable")

    source.list_legacy_users = broken  # type: ignore[method-assign]
    _refresh(client)

    resp = client.get("/v1/enrollments")

    assert resp.status_code == 503
    assert resp.json()["detail"].startswith("unified view unavailable")

from __future__ import annotations

import asyncio
import datetime

from enrollment_hub.db.tables import LegacyUserRow, ProductRow, UserProductRow
from enrollment_hub.repos.enrollment_source_repo import (
    EnrollmentSourceRepo,
    InMemoryEnrollmentSourceRepo,
)
from enrollment_hub.repos.pg_enrollment_source_repo import (
    PgEnrollmentSourceRepo,
    _legacy_user_to_document,
    _product_to_document,
    _user_product_to_document,
)

# ---- in-memory fake ----


def test_in_memory_repo_satisfies_protocol() -> None:
    assert isinstance(InMemoryEnrollmentSourceRepo(), EnrollmentSourceRepo)


def test_in_memory_repo_excludes_deleted_users_but_keeps_inactive_products() -> None:
    repo = InMemoryEnrollmentSourceRepo(
        legacy_users=[{"id": "u1"}, {"id": "u2", "isDeleted": True}],
        products=[
            {"id": "p1", "platform": "hotmart"},
            {"id": "p2", "platform": "discord", "isActive": False},
        ],
    )

    users = asyncio.run(repo.list_legacy_users())
    products = asyncio.run(repo.list_product_definitions())

    assert [u["id"] for u in users] == ["u1"]
    assert [p["id"] for p in products] == ["p1", "p2"]
    assert products[1]["isActive"] is False


def test_in_memory_repo_copies_input_documents() -> None:
    user = {"id": "u1", "name": "Before"}
    repo = InMemoryEnrollmentSourceRepo(legacy_users=[user])
    user["name"] = "After"

    (stored,) = asyncio.run(repo.list_legacy_users())
    assert stored["name"] == "Before"


def test_write_helpers_and_clear() -> None:
    repo = InMemoryEnrollmentSourceRepo()
    repo.add_legacy_user({"id": "u1"})
    repo.add_normalized_record({"id": "up1", "userId": "u1"})
    repo.add_product({"id": "p1", "platform": "hotmart"})

    assert len(asyncio.run(repo.list_normalized_records())) == 1
    assert repo.read_count == 1

    repo.clear()
    assert asyncio.run(repo.list_legacy_users()) == []
    assert asyncio.run(repo.list_product_definitions()) == []


# ---- PostgreSQL adapter ----


def test_pg_repo_satisfies_protocol() -> None:
    assert isinstance(PgEnrollmentSourceRepo(session_factory=None), EnrollmentSourceRepo)  # type: ignore[arg-type]


def test_legacy_user_row_promoted_columns_win_over_document() -> None:
    created = datetime.datetime(2022, 5, 1, tzinfo=datetime.UTC)
    row = LegacyUserRow(
        id="u1",
        name="Ana",
        email="ana@example.com",
        is_deleted=False,
        created_at=created,
        document={
            "id": "stale-id",
            "email": "old@example.com",
            "hotmart": {"hotmartUserId": "h1"},
        },
    )

    doc = _legacy_user_to_document(row)

    assert doc["id"] == "u1"
    assert doc["email"] == "ana@example.com"
    assert doc["createdAt"] == created
    assert doc["isDeleted"] is False
    assert doc["hotmart"] == {"hotmartUserId": "h1"}


def test_user_product_row_to_document() -> None:
    row = UserProductRow(
        id="up1",
        user_id="u1",
        product_id="p1",
        platform="curseduca",
        platform_user_id="c1",
        status="INACTIVE",
        source="MIGRATION",
        progress={"percentage": 12},
        engagement={"engagementScore": 30},
        tags=["OGI_V1"],
        enrolled_at=None,
    )

    doc = _user_product_to_document(row)

    assert doc["userId"] == "u1"
    assert doc["productId"] == "p1"
    assert doc["platformUserId"] == "c1"
    assert doc["status"] == "INACTIVE"
    assert doc["progress"] == {"percentage": 12}
    assert doc["tags"] == ["OGI_V1"]
    assert doc["enrolledAt"] is None


def test_product_row_to_document() -> None:
    row = ProductRow(id="p1", code="CLAREZA", name="Clareza", platform="curseduca", is_active=True)
    assert _product_to_document(row) == {
        "id": "p1",
        "code": "CLAREZA",
        "name": "Clareza",
        "platform": "curseduca",
        "isActive": True,
    }

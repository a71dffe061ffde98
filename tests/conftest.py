from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import enrollment_hub` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from enrollment_hub.main import create_app  # noqa: E402
from enrollment_hub.repos.enrollment_source_repo import (  # noqa: E402
    InMemoryEnrollmentSourceRepo,
)

HOTMART_PRODUCT = {
    "id": "p-hotmart",
    "code": "HOTMART_MAIN",
    "name": "Hotmart course",
    "platform": "hotmart",
}
CURSEDUCA_PRODUCT = {
    "id": "p-curseduca",
    "code": "CURSEDUCA_MAIN",
    "name": "CursEduca course",
    "platform": "curseduca",
}
DISCORD_PRODUCT = {
    "id": "p-discord",
    "code": "DISCORD_COMMUNITY",
    "name": "Discord community",
    "platform": "discord",
}
ALL_PRODUCTS = (HOTMART_PRODUCT, CURSEDUCA_PRODUCT, DISCORD_PRODUCT)


# ---------------------------------------------------------------------------
# Document builders
# ---------------------------------------------------------------------------


def make_user(user_id: str, **platforms: Any) -> dict[str, Any]:
    """A legacy user document; keyword args become top-level fields."""
    doc: dict[str, Any] = {
        "id": user_id,
        "name": f"User {user_id}",
        "email": f"{user_id.lower()}@example.com",
    }
    doc.update(platforms)
    return doc


def make_user_product(
    row_id: str,
    user_id: str,
    product: dict[str, Any],
    platform_user_id: str = "ext-1",
    **fields: Any,
) -> dict[str, Any]:
    """A normalized user_products row pointing at ``product``."""
    row: dict[str, Any] = {
        "id": row_id,
        "userId": user_id,
        "productId": product["id"],
        "platform": product["platform"],
        "platformUserId": platform_user_id,
        "status": "ACTIVE",
        "source": "PURCHASE",
        "progress": {},
        "engagement": {},
    }
    row.update(fields)
    return row


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def source() -> InMemoryEnrollmentSourceRepo:
    return InMemoryEnrollmentSourceRepo(products=ALL_PRODUCTS)


@pytest.fixture
def client(source: InMemoryEnrollmentSourceRepo) -> Iterator[TestClient]:
    # The context manager runs the lifespan: cache built and warmed.
    with TestClient(create_app(source=source)) as c:
        yield c

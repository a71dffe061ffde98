"""Read-only storage port for the unification engine.

Three bulk reads, nothing else.  The engine never issues a per-user query:
that is the whole reason it exists (dashboards used to do N+1 lookups
across tens of thousands of users).

Documents are returned raw, as mappings, because the legacy user shape is
loose by nature (see services/platform_mappings.py).  Conventions:

  legacy user:      {"id", "name", "email", "createdAt", "metadata",
                     "isDeleted", "hotmart": {...}, "curseduca": {...},
                     "discord": {...}, ...}
  normalized row:   {"id", "userId", "productId", "platform",
                     "platformUserId", "status", "source", "progress",
                     "engagement", "enrolledAt", "tags"}
  product:          {"id", "code", "name", "platform", "isActive"}

Implementations exclude deleted users.  Products come back whether or not
they are active: existing user_products rows still point at retired
products, and the engine decides what "isActive" means.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

Document = Mapping[str, Any]


@runtime_checkable
class EnrollmentSourceRepo(Protocol):
    async def list_legacy_users(self) -> Sequence[Document]: ...
    async def list_normalized_records(self) -> Sequence[Document]: ...
    async def list_product_definitions(self) -> Sequence[Document]: ...


class InMemoryEnrollmentSourceRepo:
    """In-memory source for tests and for running without DATABASE_URL.

    Write helpers exist so tests (and the dev seed) can play the role of
    the sync jobs that own this data in production.
    """

    def __init__(
        self,
        *,
        legacy_users: Sequence[Document] = (),
        normalized_records: Sequence[Document] = (),
        products: Sequence[Document] = (),
    ) -> None:
        self._legacy_users: list[dict[str, Any]] = [dict(u) for u in legacy_users]
        self._normalized: list[dict[str, Any]] = [dict(r) for r in normalized_records]
        self._products: list[dict[str, Any]] = [dict(p) for p in products]
        self.read_count = 0

    async def list_legacy_users(self) -> list[Document]:
        self.read_count += 1
        return [u for u in self._legacy_users if u.get("isDeleted") is not True]

    async def list_normalized_records(self) -> list[Document]:
        self.read_count += 1
        return list(self._normalized)

    async def list_product_definitions(self) -> list[Document]:
        self.read_count += 1
        return list(self._products)

    # --- write helpers (sync-job stand-ins) ---

    def add_legacy_user(self, user: Document) -> None:
        self._legacy_users.append(dict(user))

    def add_normalized_record(self, record: Document) -> None:
        self._normalized.append(dict(record))

    def add_product(self, product: Document) -> None:
        self._products.append(dict(product))

    def clear(self) -> None:
        self._legacy_users.clear()
        self._normalized.clear()
        self._products.clear()
        self.read_count = 0

"""PostgreSQL implementation of EnrollmentSourceRepo."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enrollment_hub.db.tables import LegacyUserRow, ProductRow, UserProductRow
from enrollment_hub.repos.enrollment_source_repo import Document


class PgEnrollmentSourceRepo:
    """Satisfies the EnrollmentSourceRepo Protocol using SQLAlchemy.

    Takes the session factory rather than a session: the cache calls it
    from a background task that outlives any request-scoped session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_legacy_users(self) -> list[Document]:
        stmt = (
            select(LegacyUserRow)
            .where(LegacyUserRow.is_deleted.is_(False))
            .order_by(LegacyUserRow.id)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_legacy_user_to_document(row) for row in rows]

    async def list_normalized_records(self) -> list[Document]:
        stmt = select(UserProductRow).order_by(UserProductRow.id)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_user_product_to_document(row) for row in rows]

    async def list_product_definitions(self) -> list[Document]:
        stmt = select(ProductRow).order_by(ProductRow.code)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_product_to_document(row) for row in rows]


def _legacy_user_to_document(row: LegacyUserRow) -> Document:
    # promoted columns win over whatever the JSONB copy says
    doc: dict[str, Any] = dict(row.document or {})
    doc.update(
        id=row.id,
        name=row.name,
        email=row.email,
        isDeleted=row.is_deleted,
    )
    if row.created_at is not None:
        doc["createdAt"] = row.created_at
    return doc


def _user_product_to_document(row: UserProductRow) -> Document:
    return {
        "id": row.id,
        "userId": row.user_id,
        "productId": row.product_id,
        "platform": row.platform,
        "platformUserId": row.platform_user_id,
        "status": row.status,
        "source": row.source,
        "progress": dict(row.progress or {}),
        "engagement": dict(row.engagement or {}),
        "tags": list(row.tags or []),
        "enrolledAt": row.enrolled_at,
    }


def _product_to_document(row: ProductRow) -> Document:
    return {
        "id": row.id,
        "code": row.code,
        "name": row.name,
        "platform": row.platform,
        "isActive": row.is_active,
    }

"""SQLAlchemy table definitions for the enrollment sources.

legacy_users keeps the whole legacy user document in a JSONB column: its
per-platform sub-objects have no fixed schema and the sync jobs that write
them still change shape.  Only the columns the read path filters on are
promoted.
"""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from enrollment_hub.db.engine import Base


class LegacyUserRow(Base):
    __tablename__ = "legacy_users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    document: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)


class ProductRow(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    platform: Mapped[str] = mapped_column(String(32), nullable=False)  # hotmart|curseduca|discord|...
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserProductRow(Base):
    __tablename__ = "user_products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("legacy_users.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id"), nullable=False, index=True
    )
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    platform_user_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="PURCHASE")
    progress: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    engagement: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    tags: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    enrolled_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

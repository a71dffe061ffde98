from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ORIGIN_LEGACY = "legacy"
ORIGIN_NORMALIZED = "normalized"

STATUS_ACTIVE = "ACTIVE"
STATUS_INACTIVE = "INACTIVE"

# Legacy-derived rows are reported with the same source tag the migration
# scripts write onto user_products, so dashboards group them together.
SOURCE_MIGRATION = "MIGRATION"


@dataclass(frozen=True, slots=True)
class ProductRef:
    """The product definition an enrollment points at."""

    id: str
    code: str
    name: str
    platform: str

    @staticmethod
    def from_document(doc: Mapping[str, Any]) -> ProductRef:
        return ProductRef(
            id=str(doc.get("id") or doc.get("_id") or ""),
            code=str(doc.get("code") or ""),
            name=str(doc.get("name") or ""),
            platform=str(doc.get("platform") or "").lower(),
        )


@dataclass(frozen=True, slots=True)
class CanonicalEnrollment:
    """One user's relationship to one product on one platform.

    In-memory only: built by a unification pass, held by the cache,
    never persisted.
    """

    id: str  # user_products row id, or legacy:{platform}:{user_id}
    user_id: str
    user_display_name: str
    user_email: str
    product_ref: ProductRef
    platform: str
    platform_external_id: str
    status: str  # ACTIVE|INACTIVE when synthesized; stored value when normalized
    progress_percentage: float = 0.0
    engagement_score: float = 0.0
    engagement_level: str = "VERY_LOW"
    enrolled_at: datetime | None = None
    last_activity_at: datetime | None = None
    origin: str = ORIGIN_LEGACY  # legacy|normalized
    has_nested_data: bool = False
    source: str = SOURCE_MIGRATION
    tags: tuple[str, ...] = ()

    @property
    def is_legacy_derived(self) -> bool:
        return self.origin == ORIGIN_LEGACY

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_display_name": self.user_display_name,
            "user_email": self.user_email,
            "product": {
                "id": self.product_ref.id,
                "code": self.product_ref.code,
                "name": self.product_ref.name,
                "platform": self.product_ref.platform,
            },
            "platform": self.platform,
            "platform_external_id": self.platform_external_id,
            "status": self.status,
            "progress_percentage": self.progress_percentage,
            "engagement_score": self.engagement_score,
            "engagement_level": self.engagement_level,
            "enrolled_at": self.enrolled_at,
            "last_activity_at": self.last_activity_at,
            "origin": self.origin,
            "has_nested_data": self.has_nested_data,
            "source": self.source,
            "tags": list(self.tags),
        }


@dataclass(frozen=True, slots=True)
class EnrollmentStats:
    """Counters over one unified view.  Recomputed on every refresh."""

    total_count: int = 0
    legacy_count: int = 0
    normalized_count: int = 0
    unique_users: int = 0
    by_platform: Mapping[str, int] = field(default_factory=dict)
    by_status: Mapping[str, int] = field(default_factory=dict)

    @property
    def migrated_ratio(self) -> float:
        """Share of enrollments already served from user_products."""
        if self.total_count == 0:
            return 0.0
        return self.normalized_count / self.total_count

    @staticmethod
    def from_enrollments(enrollments: Iterable[CanonicalEnrollment]) -> EnrollmentStats:
        items = list(enrollments)
        legacy = sum(1 for e in items if e.origin == ORIGIN_LEGACY)
        return EnrollmentStats(
            total_count=len(items),
            legacy_count=legacy,
            normalized_count=len(items) - legacy,
            unique_users=len(unique_user_ids(items)),
            by_platform=dict(Counter(e.platform for e in items)),
            by_status=dict(Counter(e.status for e in items)),
        )


def unique_user_ids(enrollments: Iterable[CanonicalEnrollment]) -> list[str]:
    """Distinct user ids, in first-seen order."""
    return list(dict.fromkeys(e.user_id for e in enrollments if e.user_id))

"""Unification engine: legacy user documents + user_products -> one view.

Two representations of "who is enrolled in what" coexist while the
migration runs:

  legacy (V1)      one document per human with a nested sub-object per
                   platform (user.hotmart, user.curseduca, user.discord)
  normalized (V2)  one user_products row per (user, product)

``unify()`` merges them into CanonicalEnrollment records in three bulk
reads and one in-memory pass.

NO DOUBLE COUNTING
-------------------
Suppression is per USER, not per platform.  As soon as a user has any
user_products row whose user and product exist, that user's rows are the
whole truth and nothing is synthesized from the legacy sub-objects, even
for platforms the rows do not cover, and even when the row itself is too
malformed to emit.  The migration writes all of a user's rows in one go,
so a partial set means "intentionally not enrolled", not "not migrated
yet".  Only rows pointing at a user or product that does not exist are
ignored entirely.

IDEMPOTENCE
------------
Synthesized ids are ``legacy:{platform}:{user_id}`` and no field falls
back to "now", so two passes over unchanged data produce equal records.

FAILURE ISOLATION
------------------
A malformed user or row is logged and skipped; it never aborts the pass.
A platform with no product definition is skipped for everyone with a
single warning.  Storage errors propagate: the caller (the cache) decides
what a failed pass means.
"""

from __future__ import annotations

import datetime
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from enrollment_hub.core.metrics import UNIFICATION_SKIPPED
from enrollment_hub.models.enrollment import (
    ORIGIN_LEGACY,
    ORIGIN_NORMALIZED,
    SOURCE_MIGRATION,
    STATUS_ACTIVE,
    CanonicalEnrollment,
    ProductRef,
)
from enrollment_hub.repos.enrollment_source_repo import Document, EnrollmentSourceRepo
from enrollment_hub.services.platform_mappings import (
    PLATFORM_MAPPINGS,
    PlatformMapping,
    coerce_external_id,
    engagement_level,
    first_datetime,
    get_path,
    to_datetime,
    to_number,
)

logger = logging.getLogger(__name__)

LEGACY_ID_PREFIX = "legacy"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _document_id(doc: Mapping[str, Any]) -> str | None:
    value = doc.get("id") or doc.get("_id")
    return str(value) if value else None


def _reference_id(value: Any) -> str | None:
    """A foreign key that may arrive as a bare id or as a populated document."""
    if isinstance(value, Mapping):
        return _document_id(value)
    if value is None or value == "":
        return None
    return str(value)


def legacy_enrollment_id(platform: str, user_id: str) -> str:
    return f"{LEGACY_ID_PREFIX}:{platform}:{user_id}"


@dataclass
class UnificationReport:
    """What one pass saw and did.  Logged at the end of every pass."""

    legacy_users: int = 0
    normalized_rows: int = 0
    normalized_emitted: int = 0
    synthesized_by_platform: dict[str, int] = field(default_factory=dict)
    skipped_users: list[str] = field(default_factory=list)
    skipped_normalized_rows: int = 0
    missing_platforms: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def legacy_emitted(self) -> int:
        return sum(self.synthesized_by_platform.values())

    @property
    def total_emitted(self) -> int:
        return self.normalized_emitted + self.legacy_emitted


def _index_products(
    products: Sequence[Document],
) -> tuple[dict[str, ProductRef], dict[str, ProductRef]]:
    by_id: dict[str, ProductRef] = {}
    by_platform: dict[str, ProductRef] = {}
    for doc in products:
        ref = ProductRef.from_document(doc)
        if ref.id:
            by_id.setdefault(ref.id, ref)
        # retired products still resolve existing rows but get no new synthesis
        if ref.platform and doc.get("isActive", True) is not False:
            # first match wins when several products share a platform
            by_platform.setdefault(ref.platform, ref)
    return by_id, by_platform


class UnificationEngine:
    def __init__(
        self,
        repo: EnrollmentSourceRepo,
        *,
        mappings: tuple[PlatformMapping, ...] = PLATFORM_MAPPINGS,
        inactivity_days: int = 30,
        now: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._mappings = mappings
        self._inactivity_window = datetime.timedelta(days=inactivity_days)
        self._now = now
        self.last_report: UnificationReport | None = None

    async def unify(self) -> list[CanonicalEnrollment]:
        """Build the unified view from the current contents of storage.

        Order: normalized records first (storage order), then legacy-derived
        records (user order, then mapping-table order).
        """
        started = time.monotonic()
        users = await self._repo.list_legacy_users()
        rows = await self._repo.list_normalized_records()
        products = await self._repo.list_product_definitions()
        now = self._now()

        report = UnificationReport(legacy_users=len(users), normalized_rows=len(rows))
        report.synthesized_by_platform = {m.platform: 0 for m in self._mappings}

        users_by_id: dict[str, Document] = {}
        for user in users:
            user_id = _document_id(user)
            if user_id is not None:
                users_by_id.setdefault(user_id, user)
        products_by_id, products_by_platform = _index_products(products)

        normalized: list[CanonicalEnrollment] = []
        normalized_user_ids: set[str] = set()
        for row in rows:
            user_id = _reference_id(row.get("userId"))
            user = users_by_id.get(user_id or "")
            product = products_by_id.get(_reference_id(row.get("productId")) or "")
            if user_id is None or user is None or product is None:
                logger.warning(
                    "Ignoring user_products row %s: user or product not found",
                    _document_id(row),
                    extra={"user_id": user_id},
                )
                UNIFICATION_SKIPPED.labels(reason="orphan_normalized").inc()
                report.skipped_normalized_rows += 1
                continue

            # A resolved row claims its user even when it cannot be emitted.
            normalized_user_ids.add(user_id)
            enrollment = self._from_normalized(row, user_id, user, product, report)
            if enrollment is not None:
                normalized.append(enrollment)
        report.normalized_emitted = len(normalized)

        legacy: list[CanonicalEnrollment] = []
        for user in users:
            user_id = _document_id(user)
            if user_id is None or user_id in normalized_user_ids:
                continue
            try:
                records = self._synthesize(user, user_id, products_by_platform, now, report)
            except Exception:
                # One bad document must not take the dashboards down
                logger.warning(
                    "Skipping legacy user %s: malformed platform data",
                    user_id,
                    exc_info=True,
                    extra={"user_id": user_id},
                )
                UNIFICATION_SKIPPED.labels(reason="malformed_user").inc()
                report.skipped_users.append(user_id)
                continue
            legacy.extend(records)
            for record in records:
                report.synthesized_by_platform[record.platform] += 1

        report.duration_ms = round((time.monotonic() - started) * 1000, 1)
        self.last_report = report
        self._log_report(report)
        return normalized + legacy

    # ------------------------------------------------------------------
    # normalized path
    # ------------------------------------------------------------------

    def _from_normalized(
        self,
        row: Document,
        user_id: str,
        user: Document,
        product: ProductRef,
        report: UnificationReport,
    ) -> CanonicalEnrollment | None:
        row_id = _document_id(row)
        external_id = coerce_external_id(row.get("platformUserId"))

        if row_id is None or external_id is None:
            logger.warning(
                "Ignoring user_products row %s: missing row id or platform id",
                row_id,
                extra={"user_id": user_id},
            )
            UNIFICATION_SKIPPED.labels(reason="malformed_normalized").inc()
            report.skipped_normalized_rows += 1
            return None

        try:
            progress = to_number(get_path(row, "progress.percentage"), "progress.percentage")
            score = to_number(
                get_path(row, "engagement.engagementScore"), "engagement.engagementScore"
            )
            enrolled_at = to_datetime(row.get("enrolledAt"), "enrolledAt")
            last_activity = first_datetime(
                row, "progress.lastActivity", "engagement.lastLogin", "engagement.lastAction"
            )
        except ValueError:
            logger.warning(
                "Ignoring user_products row %s: malformed progress/engagement",
                row_id,
                exc_info=True,
                extra={"user_id": user_id},
            )
            UNIFICATION_SKIPPED.labels(reason="malformed_normalized").inc()
            report.skipped_normalized_rows += 1
            return None

        score = score or 0.0
        stored_level = get_path(row, "engagement.engagementLevel")
        tags = row.get("tags") or get_path(row, "activeCampaignData.tags") or ()

        return CanonicalEnrollment(
            id=row_id,
            user_id=user_id,
            user_display_name=str(user.get("name") or ""),
            user_email=str(user.get("email") or ""),
            product_ref=product,
            platform=str(row.get("platform") or product.platform).lower(),
            platform_external_id=external_id,
            # stored status is authoritative, including SUSPENDED/CANCELLED
            status=str(row.get("status") or STATUS_ACTIVE),
            progress_percentage=progress or 0.0,
            engagement_score=score,
            engagement_level=(
                stored_level if isinstance(stored_level, str) else engagement_level(score)
            ),
            enrolled_at=enrolled_at,
            last_activity_at=last_activity,
            origin=ORIGIN_NORMALIZED,
            has_nested_data=False,
            source=str(row.get("source") or ""),
            tags=tuple(str(t) for t in tags if isinstance(t, str)),
        )

    # ------------------------------------------------------------------
    # legacy path
    # ------------------------------------------------------------------

    def _synthesize(
        self,
        user: Document,
        user_id: str,
        products_by_platform: Mapping[str, ProductRef],
        now: datetime.datetime,
        report: UnificationReport,
    ) -> list[CanonicalEnrollment]:
        # Built fully before returning: a failure on the second platform
        # must not leave the first platform's record behind.
        records: list[CanonicalEnrollment] = []
        for mapping in self._mappings:
            external_id = mapping.resolve_external_id(user)
            if external_id is None:
                continue

            product = products_by_platform.get(mapping.platform)
            if product is None:
                if mapping.platform not in report.missing_platforms:
                    logger.warning(
                        "No active product for platform %s; skipping its legacy enrollments",
                        mapping.platform,
                        extra={"platform": mapping.platform},
                    )
                    UNIFICATION_SKIPPED.labels(reason="missing_product").inc()
                    report.missing_platforms.append(mapping.platform)
                continue

            data = mapping.sub_object(user)
            derived = mapping.derive_progress_and_engagement(data)
            status = mapping.derive_status(
                data, now=now, inactivity_window=self._inactivity_window
            )
            enrolled_at = mapping.enrolled_at(data) or first_datetime(
                user, "metadata.createdAt", "createdAt"
            )
            stored_level = get_path(data, "engagement.engagementLevel")

            records.append(
                CanonicalEnrollment(
                    id=legacy_enrollment_id(mapping.platform, user_id),
                    user_id=user_id,
                    user_display_name=str(user.get("name") or ""),
                    user_email=str(user.get("email") or ""),
                    product_ref=product,
                    platform=mapping.platform,
                    platform_external_id=external_id,
                    status=status,
                    progress_percentage=derived.progress,
                    engagement_score=derived.engagement,
                    engagement_level=(
                        stored_level
                        if isinstance(stored_level, str) and stored_level
                        else engagement_level(derived.engagement)
                    ),
                    enrolled_at=enrolled_at,
                    last_activity_at=mapping.last_activity(data),
                    origin=ORIGIN_LEGACY,
                    has_nested_data=bool(data),
                    source=SOURCE_MIGRATION,
                )
            )
        return records

    @staticmethod
    def _log_report(report: UnificationReport) -> None:
        logger.info(
            "Unified %d enrollments (normalized=%d legacy=%d) from %d users in %.0fms",
            report.total_emitted,
            report.normalized_emitted,
            report.legacy_emitted,
            report.legacy_users,
            report.duration_ms,
            extra={
                "duration_ms": report.duration_ms,
                "enrollment_count": report.total_emitted,
            },
        )
        logger.info(
            "Legacy synthesis by platform: %s",
            ", ".join(f"{p}={n}" for p, n in report.synthesized_by_platform.items()),
        )
        if report.skipped_users or report.skipped_normalized_rows:
            logger.warning(
                "Skipped %d malformed users and %d unresolved user_products rows",
                len(report.skipped_users),
                report.skipped_normalized_rows,
            )

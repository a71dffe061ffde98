"""In-process cache around the unification engine.

A unification pass scans every user and every user_products row, which
takes seconds.  Dashboards read the unified view on nearly every request,
so the view is memoized here and refreshed in the background.

STATES
-------
  EMPTY          nothing usable: never built, expired, or invalidated
  REFRESHING     a pass is running and nothing usable is cached
  WARM           snapshot younger than the refresh threshold
  STALE_SERVING  snapshot between the refresh threshold and the TTL;
                 a background pass has been (or is being) started and
                 readers keep getting the current snapshot meanwhile

READ POLICY
------------
  fresh snapshot                     -> return it, never touch the engine
  fresh but past the soft threshold  -> return it AND start a background
                                        pass (serve-stale, never block)
  never built, nothing running       -> start a pass and await it (unbounded:
                                        there is nothing else to return)
  expired or invalidated, or a pass  -> await that pass (started here if none
  already running                       is running), bounded by
                                        await_timeout_seconds; on timeout
                                        return the retained old snapshot if
                                        there is one, else raise
                                        CacheRefreshTimeoutError

SINGLE-FLIGHT
--------------
At most one pass runs at a time.  Every caller that needs a pass awaits
the same asyncio.Task, so N concurrent cold reads cost one scan and all N
callers get the identical tuple back.  invalidate() while a pass is
running is coalesced into that pass.

SNAPSHOTS
----------
The served view is an immutable _Snapshot (a tuple of frozen dataclasses
plus its stats), replaced with one attribute assignment by the task that
built it.  Readers can never see a half-applied refresh, and there is
nothing for them to mutate.

FAILURES
---------
A failed pass leaves the previous snapshot in place, is logged, is kept
as ``last_error``, and is raised as CacheRefreshError to whoever awaited
that pass.  Nothing is latched: the next read that needs a pass starts a
new one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from enrollment_hub.core.metrics import (
    CACHE_READS,
    CACHE_REFRESHES,
    REFRESH_DURATION,
    UNIFIED_ENROLLMENTS,
)
from enrollment_hub.models.enrollment import (
    ORIGIN_LEGACY,
    ORIGIN_NORMALIZED,
    CanonicalEnrollment,
    EnrollmentStats,
)
from enrollment_hub.services.platform_mappings import MAPPING_VERSION

logger = logging.getLogger(__name__)

CacheState = Literal["EMPTY", "REFRESHING", "WARM", "STALE_SERVING"]
RefreshTrigger = Literal["miss", "stale", "invalidate", "warm_up"]


class CacheRefreshError(RuntimeError):
    """A unification pass failed; the view could not be (re)built."""


class CacheRefreshTimeoutError(CacheRefreshError):
    """A pass is still running and there is no older snapshot to fall back to."""


class Unifier(Protocol):
    async def unify(self) -> Sequence[CanonicalEnrollment]: ...


@dataclass(frozen=True, slots=True)
class _Snapshot:
    enrollments: tuple[CanonicalEnrollment, ...]
    built_at: float
    stats: EnrollmentStats


@dataclass(frozen=True, slots=True)
class CacheStats:
    exists: bool
    state: CacheState
    age_seconds: float | None
    ttl_seconds: float
    is_expired: bool
    is_refreshing: bool
    refresh_count: int
    last_error: str | None
    mapping_version: str = MAPPING_VERSION
    enrollments: EnrollmentStats = field(default_factory=EnrollmentStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "exists": self.exists,
            "state": self.state,
            "age_seconds": self.age_seconds,
            "ttl_seconds": self.ttl_seconds,
            "is_expired": self.is_expired,
            "is_refreshing": self.is_refreshing,
            "refresh_count": self.refresh_count,
            "last_error": self.last_error,
            "mapping_version": self.mapping_version,
            "total_count": self.enrollments.total_count,
            "legacy_count": self.enrollments.legacy_count,
            "normalized_count": self.enrollments.normalized_count,
            "unique_users": self.enrollments.unique_users,
            "by_platform": dict(self.enrollments.by_platform),
            "by_status": dict(self.enrollments.by_status),
        }


class UnifiedEnrollmentCache:
    """Memoized unified enrollment view with background refresh.

    Owned by the application's composition root (see main.py lifespan);
    bound to the event loop it is used on.
    """

    def __init__(
        self,
        engine: Unifier,
        *,
        ttl_seconds: float = 600.0,
        refresh_threshold_seconds: float = 480.0,
        await_timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not 0 < refresh_threshold_seconds < ttl_seconds:
            raise ValueError("refresh threshold must be positive and below the TTL")
        self._engine = engine
        self._ttl = ttl_seconds
        self._threshold = refresh_threshold_seconds
        self._await_timeout = await_timeout_seconds
        self._clock = clock

        self._snapshot: _Snapshot | None = None
        self._refresh_task: asyncio.Task[tuple[CanonicalEnrollment, ...]] | None = None
        self._invalidated = False
        self._closed = False

        self.last_error: BaseException | None = None
        self.refresh_count = 0

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, wait: bool = True) -> None:
        """Warm up before the first reader arrives.

        A failed warm-up is logged, not raised: the service still starts
        and the first read retries.
        """
        self._closed = False
        task = self._refresh_task or self._spawn_refresh("warm_up")
        if not wait:
            return
        try:
            await asyncio.shield(task)
        except CacheRefreshError:
            logger.warning("Warm-up failed; the first read will retry the unification")

    async def shutdown(self) -> None:
        self._closed = True
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Unified enrollment cache shut down")

    async def wait_for_refresh(self) -> None:
        """Block until the in-flight pass (if any) has finished, success or not."""
        task = self._refresh_task
        if task is not None:
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    @property
    def state(self) -> CacheState:
        refreshing = self._refresh_task is not None
        age = self._age()
        if age is None or self._invalidated or age >= self._ttl:
            return "REFRESHING" if refreshing else "EMPTY"
        if age >= self._threshold:
            return "STALE_SERVING"
        return "WARM"

    @property
    def has_warmed(self) -> bool:
        return self._snapshot is not None

    async def get(self) -> tuple[CanonicalEnrollment, ...]:
        if self._closed:
            raise RuntimeError("unified enrollment cache is shut down")

        snapshot = self._usable_snapshot()
        if snapshot is not None:
            age = self._clock() - snapshot.built_at
            if age >= self._threshold and self._refresh_task is None:
                logger.info(
                    "Unified view is %.0fs old; refreshing in the background",
                    age,
                    extra={"cache_state": "STALE_SERVING", "trigger": "stale"},
                )
                self._spawn_refresh("stale")
                CACHE_READS.labels(result="stale").inc()
            else:
                CACHE_READS.labels(result="hit").inc()
            return snapshot.enrollments

        task = self._refresh_task
        if task is None:
            CACHE_READS.labels(result="miss").inc()
            logger.info(
                "Unified view miss; rebuilding",
                extra={"cache_state": self.state, "trigger": "miss"},
            )
            task = self._spawn_refresh("miss")
            # only a cold cache has nothing to fall back to
            return await self._await(task, bounded=self._snapshot is not None)

        CACHE_READS.labels(result="awaited").inc()
        return await self._await(task, bounded=True)

    async def get_stats(self) -> EnrollmentStats:
        """Counters for the view ``get()`` serves, computed once per refresh.

        Same read policy as ``get()``.  Every tuple ``get()`` hands out is
        the enrollments of some snapshot, so the snapshot's own stats are
        reused; they are recomputed only if a newer pass swapped the
        snapshot between the read and this lookup.
        """
        enrollments = await self.get()
        snapshot = self._snapshot
        if snapshot is not None and snapshot.enrollments is enrollments:
            return snapshot.stats
        return EnrollmentStats.from_enrollments(enrollments)

    def stats(self) -> CacheStats:
        snapshot = self._snapshot
        age = self._age()
        return CacheStats(
            exists=snapshot is not None,
            state=self.state,
            age_seconds=round(age, 3) if age is not None else None,
            ttl_seconds=self._ttl,
            is_expired=age is not None and age >= self._ttl,
            is_refreshing=self._refresh_task is not None,
            refresh_count=self.refresh_count,
            last_error=str(self.last_error) if self.last_error is not None else None,
            enrollments=snapshot.stats if snapshot is not None else EnrollmentStats(),
        )

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def invalidate(self) -> asyncio.Task[tuple[CanonicalEnrollment, ...]] | None:
        """Drop the current view and rebuild it in the background.

        Called by every write path right after it changes legacy users or
        user_products.  Returns the pass that will produce the new view,
        or None when called outside an event loop (the next read rebuilds).
        """
        self._invalidated = True
        if self._refresh_task is not None:
            logger.info(
                "Invalidation coalesced into the running refresh",
                extra={"cache_state": "REFRESHING", "trigger": "invalidate"},
            )
            return self._refresh_task
        if self._closed:
            return None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.info("Invalidated outside an event loop; next read rebuilds")
            return None
        logger.info(
            "Unified view invalidated; pre-warming in the background",
            extra={"cache_state": "EMPTY", "trigger": "invalidate"},
        )
        return self._spawn_refresh("invalidate")

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _age(self) -> float | None:
        if self._snapshot is None:
            return None
        return self._clock() - self._snapshot.built_at

    def _usable_snapshot(self) -> _Snapshot | None:
        snapshot = self._snapshot
        if snapshot is None or self._invalidated:
            return None
        if self._clock() - snapshot.built_at >= self._ttl:
            return None
        return snapshot

    def _spawn_refresh(
        self, trigger: RefreshTrigger
    ) -> asyncio.Task[tuple[CanonicalEnrollment, ...]]:
        task = asyncio.get_running_loop().create_task(
            self._refresh(trigger), name=f"unified-cache-refresh:{trigger}"
        )
        self._refresh_task = task
        task.add_done_callback(_consume_result)
        return task

    async def _refresh(self, trigger: RefreshTrigger) -> tuple[CanonicalEnrollment, ...]:
        started = time.perf_counter()
        try:
            try:
                enrollments = tuple(await self._engine.unify())
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.last_error = exc
                CACHE_REFRESHES.labels(trigger=trigger, result="failure").inc()
                logger.exception(
                    "Unified view refresh failed; keeping the previous snapshot",
                    extra={"trigger": trigger, "cache_state": self.state},
                )
                raise CacheRefreshError(f"unified view refresh failed: {exc}") from exc

            stats = EnrollmentStats.from_enrollments(enrollments)
            self._snapshot = _Snapshot(
                enrollments=enrollments, built_at=self._clock(), stats=stats
            )
            self._invalidated = False
            self.last_error = None
            self.refresh_count += 1
        finally:
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None

        duration = time.perf_counter() - started
        REFRESH_DURATION.observe(duration)
        CACHE_REFRESHES.labels(trigger=trigger, result="success").inc()
        UNIFIED_ENROLLMENTS.labels(origin=ORIGIN_LEGACY).set(stats.legacy_count)
        UNIFIED_ENROLLMENTS.labels(origin=ORIGIN_NORMALIZED).set(stats.normalized_count)
        logger.info(
            "Unified view rebuilt: %d enrollments (legacy=%d normalized=%d)",
            stats.total_count,
            stats.legacy_count,
            stats.normalized_count,
            extra={
                "trigger": trigger,
                "duration_ms": round(duration * 1000, 1),
                "enrollment_count": stats.total_count,
            },
        )
        return enrollments

    async def _await(
        self, task: asyncio.Task[tuple[CanonicalEnrollment, ...]], *, bounded: bool
    ) -> tuple[CanonicalEnrollment, ...]:
        # shield: a reader giving up (client disconnect, timeout) must not
        # cancel the pass every other reader is waiting on
        if not bounded:
            return await asyncio.shield(task)
        try:
            return await asyncio.wait_for(asyncio.shield(task), self._await_timeout)
        except TimeoutError:
            stale = self._snapshot
            if stale is not None:
                CACHE_READS.labels(result="stale_fallback").inc()
                logger.warning(
                    "Refresh still running after %.1fs; serving the previous snapshot",
                    self._await_timeout,
                    extra={"cache_state": "REFRESHING"},
                )
                return stale.enrollments
            CACHE_READS.labels(result="error").inc()
            raise CacheRefreshTimeoutError(
                f"unified view not ready after {self._await_timeout}s"
            ) from None


def _consume_result(task: asyncio.Task[Any]) -> None:
    # Failures were already logged inside the task; retrieving the
    # exception keeps asyncio from reporting it again at GC time.
    if not task.cancelled():
        task.exception()

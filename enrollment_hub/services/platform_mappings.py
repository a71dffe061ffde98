"""Per-platform mapping table for legacy user documents.

A legacy user document carries one loosely shaped sub-object per platform
(``user["hotmart"]``, ``user["curseduca"]``, ``user["discord"]``), each
written by a different sync job at a different point in time.  This module
is the only place that knows those shapes.

Each platform is one mapping class answering four questions:

  resolve_external_id(user)          -> the user's id on that platform
  derive_status(sub_object, ...)     -> ACTIVE / INACTIVE
  derive_progress_and_engagement()   -> (progress %, engagement score)
  enrolled_at() / last_activity()    -> best-effort timestamps

and is registered once in PLATFORM_MAPPINGS.  The unification engine
iterates that tuple and never branches on a platform name, so supporting a
new platform means adding one class and one row.

ID RESOLUTION
--------------
Ids have moved around over the schema's life (top-level ``hotmartUserId``
on old documents, ``hotmart.hotmartUserId`` on current ones, an array of
ids for Discord).  Each mapping lists its candidate paths in priority
order; the first candidate that yields a usable value wins:

  "abc"        -> "abc"
  "  "  / ""   -> absent
  12345        -> "12345"
  ["a", "b"]   -> "a"
  []           -> absent

MALFORMED DATA
---------------
Derivations tolerate missing fields (they fall back to 0 / ACTIVE) but not
wrongly typed ones: a sub-object that is not a mapping, a non-numeric
progress value or an unparseable date raises MalformedRecordError.  The
engine catches that per user, logs it and moves on.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from enrollment_hub.models.enrollment import STATUS_ACTIVE, STATUS_INACTIVE

MAPPING_VERSION = "3.1"


class MalformedRecordError(ValueError):
    """A legacy document has a field of the wrong shape."""


@dataclass(frozen=True, slots=True)
class Derived:
    progress: float = 0.0
    engagement: float = 0.0


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def get_path(document: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings; None when any hop is missing."""
    current = document
    for key in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def coerce_external_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (list, tuple)):
        # array-take-first; nested arrays are not a shape we have seen
        for item in value:
            if isinstance(item, (list, tuple)):
                continue
            resolved = coerce_external_id(item)
            if resolved is not None:
                return resolved
        return None
    return None


def to_number(value: Any, field_name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedRecordError(f"{field_name} is a boolean, expected a number")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        if not value.strip():
            return None
        try:
            number = float(value)
        except ValueError:
            raise MalformedRecordError(
                f"{field_name} is not numeric: {value!r}"
            ) from None
    else:
        raise MalformedRecordError(
            f"{field_name} has type {type(value).__name__}, expected a number"
        )
    if not math.isfinite(number):
        raise MalformedRecordError(f"{field_name} is not finite: {value!r}")
    return number


def to_datetime(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise MalformedRecordError(
                f"{field_name} is not an ISO-8601 date: {value!r}"
            ) from None
    else:
        raise MalformedRecordError(
            f"{field_name} has type {type(value).__name__}, expected a date"
        )
    # Sync jobs wrote naive UTC timestamps for years
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def first_number(data: Mapping[str, Any], *paths: str) -> float | None:
    for path in paths:
        number = to_number(get_path(data, path), path)
        if number is not None:
            return number
    return None


def first_datetime(data: Mapping[str, Any], *paths: str) -> datetime | None:
    for path in paths:
        moment = to_datetime(get_path(data, path), path)
        if moment is not None:
            return moment
    return None


def clamp_percentage(value: float) -> float:
    return min(max(value, 0.0), 100.0)


def engagement_level(score: float) -> str:
    if score >= 80:
        return "VERY_HIGH"
    if score >= 60:
        return "HIGH"
    if score >= 40:
        return "MEDIUM"
    if score >= 25:
        return "LOW"
    return "VERY_LOW"


def _is_stale(moment: datetime | None, now: datetime, window: timedelta) -> bool:
    return moment is not None and now - moment > window


# ---------------------------------------------------------------------------
# Mapping interface
# ---------------------------------------------------------------------------


@runtime_checkable
class PlatformMapping(Protocol):
    platform: str

    def resolve_external_id(self, user: Mapping[str, Any]) -> str | None: ...

    def sub_object(self, user: Mapping[str, Any]) -> Mapping[str, Any]: ...

    def derive_status(
        self, data: Mapping[str, Any], *, now: datetime, inactivity_window: timedelta
    ) -> str: ...

    def derive_progress_and_engagement(self, data: Mapping[str, Any]) -> Derived: ...

    def enrolled_at(self, data: Mapping[str, Any]) -> datetime | None: ...

    def last_activity(self, data: Mapping[str, Any]) -> datetime | None: ...


class NestedPlatformMapping:
    """Shared behavior for platforms stored as ``user[<data_path>]``.

    Subclasses set ``platform``, ``data_path`` and ``id_paths`` and override
    the derivations they have rules for.  The defaults are the
    "no platform-specific rule" outcome: ACTIVE, 0 progress, 0 engagement.
    """

    platform: str = ""
    data_path: str = ""
    id_paths: tuple[str, ...] = ()

    _ENROLLED_AT_FIELDS = ("signupDate", "joinedDate", "purchaseDate", "createdAt")
    _LAST_ACTIVITY_FIELDS = (
        "progress.lastAccessDate",
        "progress.lastActivity",
        "lastLogin",
        "lastAccess",
    )

    def resolve_external_id(self, user: Mapping[str, Any]) -> str | None:
        for path in self.id_paths:
            resolved = coerce_external_id(get_path(user, path))
            if resolved is not None:
                return resolved
        return None

    def sub_object(self, user: Mapping[str, Any]) -> Mapping[str, Any]:
        data = get_path(user, self.data_path)
        if data is None:
            return {}
        if not isinstance(data, Mapping):
            raise MalformedRecordError(
                f"{self.data_path} has type {type(data).__name__}, expected an object"
            )
        return data

    def derive_status(
        self, data: Mapping[str, Any], *, now: datetime, inactivity_window: timedelta
    ) -> str:
        return STATUS_ACTIVE

    def derive_progress_and_engagement(self, data: Mapping[str, Any]) -> Derived:
        return Derived()

    def enrolled_at(self, data: Mapping[str, Any]) -> datetime | None:
        return first_datetime(data, *self._ENROLLED_AT_FIELDS)

    def last_activity(self, data: Mapping[str, Any]) -> datetime | None:
        return first_datetime(data, *self._LAST_ACTIVITY_FIELDS)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(platform={self.platform!r})"


# ---------------------------------------------------------------------------
# Platforms
# ---------------------------------------------------------------------------


class HotmartMapping(NestedPlatformMapping):
    """Login-based course platform.

    Progress precedence: completed/total lessons, then the percentage the
    Hotmart sync stores, then the current module over an assumed module
    count.  Inactive only when the last access is older than the window;
    a missing lastAccessDate means "never reported", not "never logged in".
    """

    platform = "hotmart"
    data_path = "hotmart"
    id_paths = ("hotmart.hotmartUserId", "hotmartUserId")

    ASSUMED_MODULE_COUNT = 10

    def derive_status(
        self, data: Mapping[str, Any], *, now: datetime, inactivity_window: timedelta
    ) -> str:
        last_access = to_datetime(
            get_path(data, "progress.lastAccessDate"), "progress.lastAccessDate"
        )
        if _is_stale(last_access, now, inactivity_window):
            return STATUS_INACTIVE
        return STATUS_ACTIVE

    def derive_progress_and_engagement(self, data: Mapping[str, Any]) -> Derived:
        completed = to_number(get_path(data, "progress.completed"), "progress.completed")
        total = to_number(get_path(data, "progress.total"), "progress.total")

        if completed is not None and total:
            progress = completed * 100 / total
        else:
            percentage = first_number(
                data,
                "progress.totalProgress",
                "progress.percentage",
                "progress.completedPercentage",
            )
            if percentage is not None:
                progress = percentage
            else:
                module = to_number(data.get("currentModule"), "currentModule")
                progress = (
                    module * 100 / self.ASSUMED_MODULE_COUNT if module is not None else 0.0
                )

        engagement = first_number(
            data, "engagement.engagementScore", "engagement.accessCount"
        )
        return Derived(
            progress=clamp_percentage(progress),
            engagement=max(engagement or 0.0, 0.0),
        )


class CurseducaMapping(NestedPlatformMapping):
    """Action-based platform: no engagement field, so it is derived from progress."""

    platform = "curseduca"
    data_path = "curseduca"
    id_paths = ("curseduca.curseducaUserId", "curseducaUserId")

    _INACTIVE_SITUATIONS = ("INACTIVE", "SUSPENDED")

    def derive_status(
        self, data: Mapping[str, Any], *, now: datetime, inactivity_window: timedelta
    ) -> str:
        if not data:
            return STATUS_ACTIVE
        situation = data.get("situation")
        if isinstance(situation, str) and situation.upper() in self._INACTIVE_SITUATIONS:
            return STATUS_INACTIVE
        last_login = to_datetime(data.get("lastLogin"), "lastLogin")
        if last_login is None or _is_stale(last_login, now, inactivity_window):
            return STATUS_INACTIVE
        return STATUS_ACTIVE

    def derive_progress_and_engagement(self, data: Mapping[str, Any]) -> Derived:
        progress = clamp_percentage(
            first_number(data, "progress.estimatedProgress") or 0.0
        )
        # 50% progress saturates engagement
        return Derived(progress=progress, engagement=min(100.0, progress * 2))


class DiscordMapping(NestedPlatformMapping):
    """Community membership: no measurable progress or engagement."""

    platform = "discord"
    data_path = "discord"
    id_paths = ("discord.discordIds", "discordIds", "discord.discordId")

    def derive_status(
        self, data: Mapping[str, Any], *, now: datetime, inactivity_window: timedelta
    ) -> str:
        return STATUS_INACTIVE if data.get("isDeleted") is True else STATUS_ACTIVE


PLATFORM_MAPPINGS: tuple[PlatformMapping, ...] = (
    HotmartMapping(),
    CurseducaMapping(),
    DiscordMapping(),
)


def mapping_for(
    platform: str, mappings: tuple[PlatformMapping, ...] = PLATFORM_MAPPINGS
) -> PlatformMapping | None:
    platform = platform.lower()
    for mapping in mappings:
        if mapping.platform == platform:
            return mapping
    return None

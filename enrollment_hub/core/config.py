from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so type casting and validation live in one place
    return os.environ.get(name, default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    unified_cache_ttl_seconds: float = 600.0
    unified_cache_refresh_threshold_seconds: float = 480.0
    unified_cache_await_timeout_seconds: float = 5.0
    inactivity_days: int = 30
    warm_up_on_startup: bool = True

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    port = _getenv_int("PORT", 8000)
    log_json = _getenv_bool("LOG_JSON", False)
    database_url = _getenv("DATABASE_URL", "") or None

    ttl = _getenv_float("UNIFIED_CACHE_TTL_SECONDS", 600.0)
    threshold = _getenv_float("UNIFIED_CACHE_REFRESH_THRESHOLD_SECONDS", 480.0)
    await_timeout = _getenv_float("UNIFIED_CACHE_AWAIT_TIMEOUT_SECONDS", 5.0)
    inactivity_days = _getenv_int("INACTIVITY_DAYS", 30)
    warm_up = _getenv_bool("WARM_UP_ON_STARTUP", True)

    if ttl <= 0:
        raise ValueError(f"UNIFIED_CACHE_TTL_SECONDS must be positive (got {ttl!r})")
    if not 0 < threshold < ttl:
        raise ValueError(
            "UNIFIED_CACHE_REFRESH_THRESHOLD_SECONDS must be between 0 and the TTL "
            f"(got {threshold!r}, ttl={ttl!r})"
        )
    if await_timeout <= 0:
        raise ValueError(
            f"UNIFIED_CACHE_AWAIT_TIMEOUT_SECONDS must be positive (got {await_timeout!r})"
        )
    if inactivity_days <= 0:
        raise ValueError(f"INACTIVITY_DAYS must be positive (got {inactivity_days!r})")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json,
        port=port,
        database_url=database_url,
        unified_cache_ttl_seconds=ttl,
        unified_cache_refresh_threshold_seconds=threshold,
        unified_cache_await_timeout_seconds=await_timeout,
        inactivity_days=inactivity_days,
        warm_up_on_startup=warm_up,
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()

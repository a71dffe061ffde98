"""Tests for structured (JSON) logging output.

The cache and the unification engine attach context with ``extra=``; a
dashboard filtering on ``trigger`` or ``cache_state`` only works if those
land on top-level JSON keys.
"""

from __future__ import annotations

import json
import logging
import sys

from enrollment_hub.core.logging import _ContainerFormatter, _JsonFormatter


def _record(msg: str, *args: object, level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name="enrollment_hub.services.unified_cache",
        level=level,
        pathname="unified_cache.py",
        lineno=42,
        msg=msg,
        args=args,
        exc_info=None,
    )


def test_json_formatter_produces_valid_json() -> None:
    output = _JsonFormatter().format(_record("Unified view rebuilt: %d enrollments", 12))
    parsed = json.loads(output)
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "enrollment_hub.services.unified_cache"
    assert parsed["message"] == "Unified view rebuilt: 12 enrollments"
    assert "timestamp" in parsed


def test_json_formatter_lifts_cache_context_fields() -> None:
    record = _record("Unified view invalidated")
    record.cache_state = "EMPTY"  # type: ignore[attr-defined]
    record.trigger = "invalidate"  # type: ignore[attr-defined]
    record.duration_ms = 812.4  # type: ignore[attr-defined]
    record.enrollment_count = 30412  # type: ignore[attr-defined]

    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["cache_state"] == "EMPTY"
    assert parsed["trigger"] == "invalidate"
    assert parsed["duration_ms"] == 812.4
    assert parsed["enrollment_count"] == 30412


def test_json_formatter_omits_unset_context_fields() -> None:
    parsed = json.loads(_JsonFormatter().format(_record("plain")))
    assert "trigger" not in parsed
    assert "user_id" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    formatter = _JsonFormatter()
    try:
        raise ConnectionError("database unreachable")
    except ConnectionError:
        record = _record("Unified view refresh failed", level=logging.ERROR)
        record.exc_info = sys.exc_info()
        output = formatter.format(record)

    parsed = json.loads(output)
    assert "ConnectionError: database unreachable" in parsed["exception"]


def test_container_formatter_is_not_json() -> None:
    output = _ContainerFormatter().format(_record("server started"))
    assert "INFO" in output
    assert "enrollment_hub.services.unified_cache" in output
    assert "server started" in output
    try:
        json.loads(output)
        raise AssertionError("Container format should not be valid JSON")
    except json.JSONDecodeError:
        pass

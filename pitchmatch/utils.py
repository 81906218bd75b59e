"""Shared utility functions used across pitchmatch modules."""
from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from typing import Any

_MISSING = object()
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def utc_now() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo so everything is stored naive."""
    return datetime.now(UTC).replace(tzinfo=None)


def slugify(value: Any) -> str:
    """``"Series A"`` -> ``"series-a"``; empty string for blanks."""
    if value is None:
        return ""
    return _SLUG_RE.sub("-", str(value).strip().lower()).strip("-")


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))

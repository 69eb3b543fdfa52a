"""Utility helpers for the Cinemix service."""

from __future__ import annotations

import math
import secrets
from typing import Any

from .errors import InvalidArgument


MEDIA_TYPE_ALIASES = {
    "movie": "movie",
    "movies": "movie",
    "film": "movie",
    "series": "series",
    "tv": "series",
    "show": "series",
    "shows": "series",
}


def clamp(value: float, lower: float, upper: float) -> float:
    """Return ``value`` limited to the closed interval ``[lower, upper]``."""

    return max(lower, min(upper, value))


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def coerce_media_id(value: Any) -> int:
    """Return ``value`` as a catalog identifier or raise ``InvalidArgument``."""

    if isinstance(value, bool):
        raise InvalidArgument(f"Invalid catalog id: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        raise InvalidArgument(f"Invalid catalog id: {value!r}")
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
    raise InvalidArgument(f"Invalid catalog id: {value!r}")


def coerce_media_type(value: Any) -> str:
    """Normalise media type spellings to ``movie`` or ``series``."""

    if isinstance(value, str):
        normalized = MEDIA_TYPE_ALIASES.get(value.strip().lower())
        if normalized:
            return normalized
    raise InvalidArgument(f"Unsupported media type: {value!r}")


def generate_browser_id(now_ms: int) -> str:
    """Generate a local identifier used when no remote identity is available."""

    return f"browser_{now_ms}_{secrets.token_hex(5)[:9]}"

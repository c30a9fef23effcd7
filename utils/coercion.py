"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Type coercion utilities.

Lenient helpers (``safe_*``) are used when reading persisted CSV rows, where
empty cells come back as NaN. Strict helpers (``require_*``) are used on parsed
telemetry, where a non-finite value is an input error and must not be replaced
by a default.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from services.errors import InvalidNumericValue


def safe_float_optional(value: object) -> Optional[float]:
    """Safely convert a value to float, returning None on failure.

    Handles None, empty strings, "NaN", and math.nan by returning None.

    Args:
        value: Value to convert

    Returns:
        Optional[float]: Converted value or None if conversion fails
    """
    try:
        if value in (None, "", "NaN"):
            return None
        result = float(value)
        if math.isnan(result):
            return None
        return result
    except (TypeError, ValueError):
        return None


def safe_int_optional(value: object) -> Optional[int]:
    """Safely convert a value to int, returning None on failure."""
    result = safe_float_optional(value)
    if result is None or math.isinf(result):
        return None
    return int(result)


def safe_str(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value)


def safe_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return False
    return bool(value)


def require_finite(value: Any, field: str) -> float:
    """Return ``value`` as float, raising InvalidNumericValue for NaN/Infinity."""
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidNumericValue(f"{field}: {value!r} is not numeric") from exc
    if not math.isfinite(result):
        raise InvalidNumericValue(f"{field}: {value!r} is not finite")
    return result


def require_in_range(value: Any, field: str, low: float, high: float) -> float:
    """Finite check plus inclusive bounds, never clamping."""
    result = require_finite(value, field)
    if result < low or result > high:
        raise InvalidNumericValue(f"{field}: {result} outside [{low}, {high}]")
    return result

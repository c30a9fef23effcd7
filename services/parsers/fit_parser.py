"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

FIT (binary telemetry) parser built on fitparse.

Plain and gzip-compressed files are accepted. Record positions arrive as
semicircles and are converted to degrees. Sensor fields the device did not
record stay None.
"""

from __future__ import annotations

import datetime as dt
import gzip
import io
import struct
import zlib
from typing import Any, Dict, List, Optional

import fitparse
from streamlit.logger import get_logger

from config import GRADE_LIMIT_PERCENT, SEMICIRCLE_TO_DEGREES, VERTICAL_SPEED_LIMIT_MPS
from services.errors import InsufficientPoints, MalformedFile
from services.models import ParsedTrack, TrackPoint, time_ordered
from utils.coercion import require_finite, require_in_range
from utils.time import to_iso

logger = get_logger(__name__)

GZIP_MAGIC = b"\x1f\x8b"

SESSION_FIELDS = (
    "sport",
    "sub_sport",
    "start_time",
    "total_distance",
    "total_elapsed_time",
    "total_timer_time",
    "avg_heart_rate",
    "max_heart_rate",
    "avg_running_cadence",
    "avg_cadence",
    "max_running_cadence",
    "max_cadence",
    "avg_power",
    "max_power",
    "total_calories",
    "total_ascent",
    "total_descent",
)


def _semicircles_to_degrees(val: Any) -> Optional[float]:
    return val * SEMICIRCLE_TO_DEGREES if val is not None else None


def _as_utc(value: Any) -> Optional[dt.datetime]:
    if not isinstance(value, dt.datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _finite(value: Any, field: str) -> Optional[float]:
    """Non-numeric values are ignored; NaN/Infinity raise InvalidNumericValue."""
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric FIT {field} {value!r}")
        return None
    return require_finite(result, f"FIT {field}")


def _first(values: Dict[str, Any], *names: str) -> Any:
    for name in names:
        if values.get(name) is not None:
            return values[name]
    return None


def _non_negative(value: Any, field: str) -> Optional[float]:
    result = _finite(value, field)
    return result if result is not None and result >= 0 else None


def _grade(value: Any) -> Optional[float]:
    result = _finite(value, "grade")
    if result is None:
        return None
    return max(-GRADE_LIMIT_PERCENT, min(GRADE_LIMIT_PERCENT, result))


def _vertical_speed(value: Any) -> Optional[float]:
    result = _finite(value, "vertical_speed")
    if result is None or abs(result) > VERTICAL_SPEED_LIMIT_MPS:
        return None
    return result


def _json_safe(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        return to_iso(_as_utc(value))
    if isinstance(value, (int, float, str, bool)) or value is None:
        return value
    return str(value)


def decompress_if_needed(data: bytes, compressed: Optional[bool] = None) -> bytes:
    """Strip a gzip wrapper when flagged or detected by magic bytes."""
    if compressed is None:
        compressed = data[:2] == GZIP_MAGIC
    if not compressed:
        return data
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise MalformedFile(f"Invalid gzip stream: {e}") from e


def _record_point(values: Dict[str, Any]) -> Optional[TrackPoint]:
    lat = _semicircles_to_degrees(values.get("position_lat"))
    lon = _semicircles_to_degrees(values.get("position_long"))
    if lat is None or lon is None:
        lat = lon = None
    else:
        lat = require_in_range(lat, "latitude", -90.0, 90.0)
        lon = require_in_range(lon, "longitude", -180.0, 180.0)

    point = TrackPoint(
        latitude=lat,
        longitude=lon,
        timestamp=_as_utc(values.get("timestamp")),
        elevation=_finite(_first(values, "enhanced_altitude", "altitude"), "altitude"),
        heart_rate=_non_negative(values.get("heart_rate"), "heart_rate"),
        cadence=_non_negative(values.get("cadence"), "cadence"),
        power=_non_negative(values.get("power"), "power"),
        temperature=_finite(values.get("temperature"), "temperature"),
        speed=_non_negative(_first(values, "enhanced_speed", "speed"), "speed"),
        grade=_grade(values.get("grade")),
        vertical_speed=_vertical_speed(values.get("vertical_speed")),
        device_distance=_non_negative(values.get("distance"), "distance"),
    )
    if not (point.has_position or point.has_sensor_data or point.elevation is not None):
        return None
    return point


def _summary(fitfile: fitparse.FitFile) -> Dict[str, Any]:
    summary: Dict[str, Any] = {}
    for message in fitfile.get_messages("session"):
        values = message.get_values()
        for name in SESSION_FIELDS:
            if values.get(name) is not None and name not in summary:
                summary[name] = _json_safe(values[name])
    for message in fitfile.get_messages("file_id"):
        values = message.get_values()
        for name in ("manufacturer", "product", "garmin_product", "serial_number"):
            if values.get(name) is not None and f"device_{name}" not in summary:
                summary[f"device_{name}"] = _json_safe(values[name])
    return summary


def parse_fit(data: bytes, compressed: Optional[bool] = None) -> ParsedTrack:
    """Parse FIT content into a ParsedTrack.

    Raises:
        MalformedFile: invalid gzip wrapper or FIT structure
        InsufficientPoints: fewer than two usable records
        InvalidNumericValue: positions outside the valid coordinate range, or
            NaN/Infinity in a numeric field
    """
    payload = decompress_if_needed(data, compressed)
    points: List[TrackPoint] = []
    try:
        fitfile = fitparse.FitFile(io.BytesIO(payload))
        for record in fitfile.get_messages("record"):
            point = _record_point(record.get_values())
            if point is None:
                logger.debug("Skipping FIT record without usable fields")
                continue
            points.append(point)
        metadata = _summary(fitfile)
    except (fitparse.FitParseError, struct.error, EOFError) as e:
        logger.warning(f"Invalid FIT file: {e}")
        raise MalformedFile(f"Invalid FIT file: {e}") from e

    if len(points) < 2:
        logger.warning(f"Insufficient FIT records: {len(points)} < 2")
        raise InsufficientPoints(len(points))

    points = time_ordered(points)
    logger.debug(f"Parsed FIT: {len(points)} records, sport={metadata.get('sport')}")
    return ParsedTrack(points=points, metadata=metadata)

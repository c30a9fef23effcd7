"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

GPX (trackpoint XML) parser.

Handles both timestamped tracks and time-invariant routes. Sensor values found
in per-point extension blocks (Garmin TrackPointExtension and similar vendor
namespaces) are merged into the points.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from lxml import etree
from streamlit.logger import get_logger

from services.errors import InsufficientPoints, MalformedFile
from services.models import ParsedTrack, TrackPoint, time_ordered
from utils.coercion import require_finite, require_in_range
from utils.time import to_iso, to_utc

logger = get_logger(__name__)

GPX_NAMESPACES = (
    "http://www.topografix.com/GPX/1/1",
    "http://www.topografix.com/GPX/1/0",
)

# Extension element local names -> TrackPoint field
EXTENSION_FIELDS = {
    "hr": "heart_rate",
    "heartrate": "heart_rate",
    "cad": "cadence",
    "cadence": "cadence",
    "power": "power",
    "powerinwatts": "power",
    "atemp": "temperature",
    "temp": "temperature",
}

SENSOR_RANGES = {
    "heart_rate": (0.0, 300.0),
    "cadence": (0.0, 300.0),
    "power": (0.0, 3000.0),
    "temperature": (-60.0, 70.0),
}

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)


def _text(parent: Optional[etree._Element], path: str, ns: Dict[str, str]) -> Optional[str]:
    if parent is None:
        return None
    elem = parent.find(path, namespaces=ns)
    if elem is None or elem.text is None:
        return None
    text = elem.text.strip()
    return text or None


def _number(text: Optional[str]) -> Optional[float]:
    """Parse a numeric element; unparsable text is ignored, NaN/Infinity raise."""
    if text is None:
        return None
    try:
        value = float(text)
    except ValueError:
        logger.debug(f"Ignoring non-numeric value {text!r}")
        return None
    return require_finite(value, "GPX value")


def _extension_values(trkpt: etree._Element, ns: Dict[str, str]) -> Dict[str, float]:
    values: Dict[str, float] = {}
    extensions = trkpt.find("gpx:extensions", namespaces=ns)
    if extensions is None:
        return values
    for elem in extensions.iter(tag=etree.Element):
        field = EXTENSION_FIELDS.get(etree.QName(elem).localname.lower())
        if field is None or field in values:
            continue
        value = _number(elem.text.strip() if elem.text else None)
        if value is None:
            continue
        low, high = SENSOR_RANGES[field]
        values[field] = require_in_range(value, field, low, high)
    return values


def _metadata(root: etree._Element, ns: Dict[str, str]) -> Dict[str, Any]:
    # GPX 1.1 nests document info under <metadata>, 1.0 keeps it on the root
    meta = root.find("gpx:metadata", namespaces=ns)
    holder = meta if meta is not None else root
    author = holder.find("gpx:author", namespaces=ns)
    author_name = None
    if author is not None:
        author_name = _text(author, "gpx:name", ns) or (author.text or "").strip() or None
    trk = root.find("gpx:trk", namespaces=ns)
    info = {
        "creator": root.get("creator"),
        "name": _text(holder, "gpx:name", ns),
        "description": _text(holder, "gpx:desc", ns),
        "author": author_name,
        "time": to_iso(to_utc(_text(holder, "gpx:time", ns))) or None,
        "keywords": _text(holder, "gpx:keywords", ns),
        "trackName": _text(trk, "gpx:name", ns),
        "trackDescription": _text(trk, "gpx:desc", ns),
        "trackType": _text(trk, "gpx:type", ns),
    }
    return {k: v for k, v in info.items() if v is not None}


def parse_gpx(gpx_bytes: bytes) -> ParsedTrack:
    """Parse GPX content into a ParsedTrack.

    Raises:
        MalformedFile: invalid XML or not a GPX document
        InsufficientPoints: fewer than two usable track points
        InvalidNumericValue: NaN, Infinity or out-of-range numbers
    """
    try:
        root = etree.fromstring(gpx_bytes, parser=_PARSER)
    except etree.XMLSyntaxError as e:
        logger.warning(f"Invalid GPX XML: {e}")
        raise MalformedFile(f"Invalid GPX XML: {e}") from e

    qname = etree.QName(root)
    if qname.localname != "gpx" or qname.namespace not in GPX_NAMESPACES:
        raise MalformedFile("Not a GPX document: missing GPX namespace")
    ns = {"gpx": qname.namespace}

    points: List[TrackPoint] = []
    for trkpt in root.xpath(".//gpx:trkpt", namespaces=ns):
        lat_raw = trkpt.get("lat")
        lon_raw = trkpt.get("lon")
        try:
            lat_val = float(lat_raw)
            lon_val = float(lon_raw)
        except (TypeError, ValueError) as e:
            logger.debug(f"Skipping invalid track point: {e}")
            continue

        time_text = _text(trkpt, "gpx:time", ns)
        timestamp = to_utc(time_text)
        if time_text and timestamp is None:
            logger.debug(f"Ignoring unparsable timestamp {time_text!r}")

        points.append(
            TrackPoint(
                latitude=require_in_range(lat_val, "latitude", -90.0, 90.0),
                longitude=require_in_range(lon_val, "longitude", -180.0, 180.0),
                timestamp=timestamp,
                elevation=_number(_text(trkpt, "gpx:ele", ns)),
                **_extension_values(trkpt, ns),
            )
        )

    if len(points) < 2:
        logger.warning(f"Insufficient track points: {len(points)} < 2")
        raise InsufficientPoints(len(points))

    points = time_ordered(points)
    logger.debug(f"Parsed GPX: {len(points)} points")
    return ParsedTrack(points=points, metadata=_metadata(root, ns))

"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Track format resolution and parser dispatch.

The format is resolved once from the caller's hint or the file name; each
format variant maps to the adapter that parses it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from services.errors import MalformedFile
from services.models import ParsedTrack, TrackFormat
from services.parsers.fit_parser import GZIP_MAGIC, decompress_if_needed, parse_fit
from services.parsers.gpx_parser import parse_gpx

FORMAT_HINTS = {
    "gpx": (TrackFormat.TRACKPOINT, False),
    "gpx.gz": (TrackFormat.TRACKPOINT, True),
    "fit": (TrackFormat.BINARY_TELEMETRY, False),
    "fit.gz": (TrackFormat.BINARY_TELEMETRY, True),
    "csv": (TrackFormat.TABULAR, False),
}


@dataclass(frozen=True)
class ResolvedFormat:
    format: TrackFormat
    compressed: bool = False


def _parse_tabular(_data: bytes) -> ParsedTrack:
    raise MalformedFile("Tabular exports carry activity metadata only, not a track")


_ADAPTERS: Dict[TrackFormat, Callable[[bytes], ParsedTrack]] = {
    TrackFormat.TRACKPOINT: parse_gpx,
    TrackFormat.BINARY_TELEMETRY: lambda data: parse_fit(data, compressed=False),
    TrackFormat.TABULAR: _parse_tabular,
}


def resolve_format(
    filename: str,
    format_hint: Union[str, TrackFormat, None] = None,
    data: Optional[bytes] = None,
) -> ResolvedFormat:
    """Resolve the format from an explicit hint, else the file extension.

    A gzip wrapper is also detected from the content's magic bytes.
    """
    sniffed_gzip = bool(data) and data[:2] == GZIP_MAGIC
    if isinstance(format_hint, TrackFormat):
        return ResolvedFormat(format_hint, sniffed_gzip)
    if format_hint:
        key = format_hint.strip().lower().lstrip(".")
        if key not in FORMAT_HINTS:
            raise MalformedFile(f"Unsupported format hint: {format_hint}")
        fmt, compressed = FORMAT_HINTS[key]
        return ResolvedFormat(fmt, compressed or sniffed_gzip)

    name = (filename or "").strip().lower()
    for suffix in FORMAT_HINTS:
        if name.endswith(f".{suffix}"):
            fmt, compressed = FORMAT_HINTS[suffix]
            return ResolvedFormat(fmt, compressed or sniffed_gzip)
    raise MalformedFile(f"Unsupported file type: {filename}")


def parse_track(data: bytes, resolved: ResolvedFormat) -> ParsedTrack:
    """Parse ``data`` with the adapter of the resolved format."""
    payload = decompress_if_needed(data, resolved.compressed)
    return _ADAPTERS[resolved.format](payload)


__all__ = [
    "ResolvedFormat",
    "TrackFormat",
    "parse_track",
    "resolve_format",
]

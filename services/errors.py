"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Error taxonomy for track ingestion and session derivation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class TrackError(Exception):
    """Base class for ingestion and derivation failures."""


class ParseError(TrackError):
    pass


class MalformedFile(ParseError):
    """Unparsable structure in an input file."""


class InsufficientPoints(ParseError):
    """Fewer than two usable points."""

    def __init__(self, count: int):
        super().__init__(f"Insufficient track points: {count} < 2")
        self.count = count


class UnsupportedActivityType(ParseError):
    def __init__(self, activity_type: str):
        super().__init__(f"Unsupported activity type: {activity_type}")
        self.activity_type = activity_type


class InvalidNumericValue(TrackError, ValueError):
    """NaN, Infinity or out-of-range numeric input."""


class CropError(TrackError):
    pass


class CropValidationError(CropError, ValueError):
    pass


class NoTrimmableData(CropError):
    pass


class SessionNotFound(TrackError, LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class RecalculationInProgress(TrackError):
    pass


@dataclass(frozen=True)
class DuplicateSession:
    """Report for a skipped import; not an error."""

    filename: str
    existing_session_id: Optional[str]
    reason: str = "Duplicate of an existing session"

    def __str__(self) -> str:
        if self.existing_session_id:
            return f"{self.filename}: {self.reason} ({self.existing_session_id})"
        return f"{self.filename}: {self.reason}"

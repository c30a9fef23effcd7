"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Tolerance-based duplicate detection between sessions.
"""

from __future__ import annotations

import datetime as dt
from typing import Iterable, Optional

from services.models import SessionFingerprint
from utils.time import truncate_to_second

DISTANCE_TOLERANCE_M = 1.0
DURATION_TOLERANCE_S = 1.0
# Absorbs float noise so the tolerances stay inclusive
_FLOAT_SLACK = 1e-9


def _start_key(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return truncate_to_second(value.astimezone(dt.timezone.utc))


def matches(a: SessionFingerprint, b: SessionFingerprint) -> bool:
    """Same start second (UTC) and distance/duration within tolerance.

    Sessions without a start time never match.
    """
    start_a = _start_key(a.started_at)
    if start_a is None or start_a != _start_key(b.started_at):
        return False
    if abs(a.distance_m - b.distance_m) > DISTANCE_TOLERANCE_M + _FLOAT_SLACK:
        return False
    return abs(a.duration_s - b.duration_s) <= DURATION_TOLERANCE_S + _FLOAT_SLACK


def find_duplicate(
    candidate: SessionFingerprint, corpus: Iterable[SessionFingerprint]
) -> Optional[SessionFingerprint]:
    for existing in corpus:
        if matches(candidate, existing):
            return existing
    return None


def is_duplicate(candidate: SessionFingerprint, corpus: Iterable[SessionFingerprint]) -> bool:
    return find_duplicate(candidate, corpus) is not None

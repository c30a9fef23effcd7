"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later
"""

from __future__ import annotations

import datetime as dt

from services.duplicate_service import find_duplicate, is_duplicate, matches
from services.models import SessionFingerprint

START = dt.datetime(2025, 3, 1, 7, 30, 0, tzinfo=dt.timezone.utc)


def _fp(session_id="a", started_at=START, distance=5000.0, duration=1500.0):
    return SessionFingerprint(session_id, started_at, distance, duration)


def test_exact_tolerance_is_duplicate_and_symmetric():
    a = _fp("a")
    b = _fp("b", distance=5001.0, duration=1501.0)
    assert matches(a, b)
    assert matches(b, a)


def test_distance_beyond_tolerance_is_not_duplicate():
    a = _fp("a")
    b = _fp("b", distance=5001.01)
    assert not matches(a, b)
    assert not matches(b, a)


def test_duration_beyond_tolerance_is_not_duplicate():
    assert not matches(_fp("a"), _fp("b", duration=1501.5))


def test_start_compared_at_second_precision_in_utc():
    paris = dt.timezone(dt.timedelta(hours=1))
    same_second = (START + dt.timedelta(milliseconds=700)).astimezone(paris)
    next_second = START + dt.timedelta(seconds=1)
    assert matches(_fp("a"), _fp("b", started_at=same_second))
    assert not matches(_fp("a"), _fp("b", started_at=next_second))


def test_sessions_without_start_never_match():
    assert not matches(_fp("a", started_at=None), _fp("b", started_at=None))


def test_find_duplicate_returns_existing_fingerprint():
    corpus = [_fp("x", started_at=START - dt.timedelta(days=1)), _fp("y")]
    found = find_duplicate(_fp(None, distance=5000.5), corpus)
    assert found is not None and found.session_id == "y"
    assert not is_duplicate(_fp(None, distance=4000.0), corpus)

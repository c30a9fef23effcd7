"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Tests for the FIT parser, using FIT files written in-test.
"""

from __future__ import annotations

import datetime as dt
import gzip

import pytest

from services.errors import InsufficientPoints, InvalidNumericValue, MalformedFile
from services.models import TrackFormat
from services.parsers import parse_track, resolve_format
from services.parsers.fit_parser import _record_point, parse_fit


def test_parse_fit_records_and_summary(make_fit):
    track = parse_fit(make_fit(20))

    assert len(track) == 20
    first = track.points[0]
    assert first.latitude == pytest.approx(45.0, abs=1e-6)
    assert first.longitude == pytest.approx(5.0, abs=1e-6)
    assert first.timestamp == dt.datetime(2025, 3, 1, 7, 30, tzinfo=dt.timezone.utc)
    assert first.elevation == pytest.approx(100.0)
    assert first.heart_rate == 150
    assert first.cadence == 85
    assert track.points[-1].device_distance == pytest.approx(190.0)
    assert track.points[1].speed == pytest.approx(3.333, abs=1e-3)

    assert track.metadata["sport"] == "running"
    assert track.metadata["total_distance"] == pytest.approx(190.0)
    assert track.metadata["total_elapsed_time"] == pytest.approx(57.0)
    assert track.metadata["start_time"] == "2025-03-01T07:30:00Z"
    assert "device_manufacturer" in track.metadata


def test_parse_fit_gzip_detected_from_magic(make_fit):
    track = parse_fit(gzip.compress(make_fit(5)))
    assert len(track) == 5


def test_resolve_and_dispatch_fit_gz(make_fit):
    data = gzip.compress(make_fit(5))
    resolved = resolve_format("activities/123.fit.gz", data=data)
    assert resolved.format is TrackFormat.BINARY_TELEMETRY
    assert resolved.compressed
    assert len(parse_track(data, resolved)) == 5


def test_corrupted_crc_is_malformed(make_fit):
    data = bytearray(make_fit(5))
    data[-1] ^= 0xFF
    with pytest.raises(MalformedFile):
        parse_fit(bytes(data))


def test_not_a_fit_file_is_malformed():
    with pytest.raises(MalformedFile):
        parse_fit(b"definitely not a FIT file")


def test_truncated_gzip_is_malformed(make_fit):
    data = gzip.compress(make_fit(5))[:20]
    with pytest.raises(MalformedFile):
        parse_fit(data)


def test_single_record_raises_insufficient_points(make_fit):
    with pytest.raises(InsufficientPoints):
        parse_fit(make_fit(1))


@pytest.mark.parametrize(
    "field,value",
    [("enhanced_altitude", float("nan")), ("temperature", float("inf")), ("enhanced_speed", float("-inf"))],
)
def test_non_finite_record_value_is_rejected(field, value):
    values = {
        "timestamp": dt.datetime(2025, 3, 1, 7, 30),
        "position_lat": 536870912,
        "position_long": 59652323,
        field: value,
    }
    with pytest.raises(InvalidNumericValue):
        _record_point(values)


def test_non_numeric_record_value_is_ignored():
    point = _record_point({"timestamp": dt.datetime(2025, 3, 1, 7, 30), "heart_rate": "n/a", "cadence": 80})
    assert point.heart_rate is None
    assert point.cadence == 80

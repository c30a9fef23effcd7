"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later
"""

from __future__ import annotations

import datetime as dt
import math

import numpy as np
import pandas as pd
import pytest

from services.errors import InsufficientPoints, InvalidNumericValue
from services.metrics_service import TrackMetricsService
from services.models import ParsedTrack, TrackPoint
from utils.elevation import elevation_gain_loss, grade_percent
from utils.geo import cumulative_distance_m, great_circle_m, odometer_from_device

START = dt.datetime(2025, 3, 1, 7, 30, tzinfo=dt.timezone.utc)


def _reference_haversine(p1, p2, radius=6_371_000.0):
    lat1, lon1, lat2, lon2 = map(math.radians, (*p1, *p2))
    a = math.sin((lat2 - lat1) / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin((lon2 - lon1) / 2) ** 2
    return 2 * radius * math.asin(math.sqrt(a))


def _track(coords, elevations=None, step_s=10.0):
    points = []
    for i, (lat, lon) in enumerate(coords):
        points.append(
            TrackPoint(
                latitude=lat,
                longitude=lon,
                timestamp=START + dt.timedelta(seconds=i * step_s) if step_s else None,
                elevation=elevations[i] if elevations else None,
            )
        )
    return ParsedTrack(points=points)


def test_great_circle_matches_reference():
    p1, p2 = (48.8566, 2.3522), (51.5074, -0.1278)
    assert great_circle_m(p1, p2) == pytest.approx(_reference_haversine(p1, p2), rel=1e-9)


def test_distance_is_sum_of_pairwise_great_circle():
    rng = np.random.default_rng(7)
    lats = 45.0 + np.cumsum(rng.uniform(-1e-3, 1e-3, 50))
    lons = 5.0 + np.cumsum(rng.uniform(-1e-3, 1e-3, 50))
    coords = list(zip(lats, lons))
    expected = sum(_reference_haversine(a, b) for a, b in zip(coords, coords[1:]))

    metrics = TrackMetricsService().compute(_track(coords))
    assert metrics.distance_m == pytest.approx(expected, rel=1e-9)


def test_points_without_coordinates_are_skipped():
    cum = cumulative_distance_m([45.0, None, 45.001, 45.002], [5.0, None, 5.0, 5.0])
    assert cum[1] == 0.0
    assert cum[2] == pytest.approx(_reference_haversine((45.0, 5.0), (45.001, 5.0)))
    assert list(cum) == sorted(cum)


def test_device_odometer_never_decreases():
    assert list(odometer_from_device([5.0, 10.0, None, 8.0, 20.0])) == [0.0, 5.0, 5.0, 5.0, 15.0]


def test_elevation_noise_below_threshold_is_ignored():
    # +1 m / -1 m oscillation, 20 m apart: never reaches the 2 m threshold
    elevations = [100, 101, 100, 101, 100, 101]
    cumulative = [i * 20.0 for i in range(6)]
    gain, loss = elevation_gain_loss(elevations, cumulative)
    assert gain == 0.0
    assert loss == 0.0


def test_elevation_sustained_climb_counts():
    elevations = [100, 101, 102, 103, 104, 103, 102, 101]
    cumulative = [i * 10.0 for i in range(8)]
    gain, loss = elevation_gain_loss(elevations, cumulative)
    assert gain == pytest.approx(4.0)
    assert loss == pytest.approx(3.0)


def test_elevation_short_spike_needs_horizontal_span():
    # 5 m up and down within 4 m of distance is a glitch
    gain, loss = elevation_gain_loss([100, 105, 100], [0.0, 2.0, 4.0])
    assert gain == 0.0
    assert loss == 0.0


def test_elevation_absent_returns_none():
    assert elevation_gain_loss([None, None], [0.0, 10.0]) == (None, None)


def test_grade_is_clamped_and_rejects_nan():
    assert grade_percent(5.0, 100.0) == pytest.approx(5.0)
    assert grade_percent(500.0, 1.0) == 100.0
    assert grade_percent(-500.0, 1.0) == -100.0
    with pytest.raises(InvalidNumericValue):
        grade_percent(float("nan"), 10.0)


def test_compute_duration_pace_and_bounds():
    coords = [(45.0 + i * 0.001, 5.0) for i in range(11)]
    metrics = TrackMetricsService().compute(_track(coords, elevations=[100 + i for i in range(11)]))

    assert metrics.duration_s == 100.0
    assert metrics.avg_pace_s == pytest.approx(100.0 / (metrics.distance_m / 1000.0))
    assert metrics.avg_speed_mps == pytest.approx(metrics.distance_m / 100.0)
    assert metrics.min_lat == pytest.approx(45.0)
    assert metrics.max_lat == pytest.approx(45.01)
    assert metrics.min_elev_m == 100
    assert metrics.max_elev_m == 110
    assert metrics.elev_gain_m == pytest.approx(10.0)


def test_untimed_track_without_override_has_no_pace():
    coords = [(45.0 + i * 0.001, 5.0) for i in range(3)]
    metrics = TrackMetricsService().compute(_track(coords, step_s=None))
    assert metrics.duration_s == 0.0
    assert metrics.avg_pace_s is None


def test_duration_override():
    coords = [(45.0 + i * 0.001, 5.0) for i in range(3)]
    metrics = TrackMetricsService().compute(_track(coords, step_s=None), duration_s=600.0)
    assert metrics.duration_s == 600.0
    assert metrics.avg_pace_s is not None


def test_compute_requires_two_points():
    with pytest.raises(InsufficientPoints):
        TrackMetricsService().compute(_track([(45.0, 5.0)]))


def test_sensor_stats():
    ts = pd.DataFrame(
        {
            "heartRateBpm": [120.0, 140.0, np.nan, 160.0],
            "cadence": [80.0, 90.0, 85.0, np.nan],
            "powerWatts": [np.nan] * 4,
        }
    )
    stats = TrackMetricsService().sensor_stats(ts)
    assert stats.max_heart_rate == 160.0
    assert stats.min_heart_rate == 120.0
    assert stats.avg_heart_rate == pytest.approx(140.0)
    assert stats.max_cadence == 90.0
    assert stats.max_power is None

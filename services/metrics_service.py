"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Geospatial metrics for a parsed track: distance, elevation, grade, speed and pace.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd
from streamlit.logger import get_logger

from services.errors import InsufficientPoints
from services.models import ParsedTrack, SensorStats, TrackMetrics, TrackPoint
from utils.config import Config
from utils.elevation import elevation_gain_loss, segment_grades
from utils.geo import bounds, cumulative_distance_m, odometer_from_device

logger = get_logger(__name__)


def track_odometer(points: List[TrackPoint]) -> np.ndarray:
    """Cumulative distance per point.

    Uses great-circle distance when at least two points carry coordinates,
    otherwise the device-recorded distance (indoor or GPS-less recordings).
    """
    lats = [p.latitude for p in points]
    lons = [p.longitude for p in points]
    positioned = sum(1 for p in points if p.has_position)
    if positioned < 2 and any(p.device_distance is not None for p in points):
        return odometer_from_device([p.device_distance for p in points])
    return cumulative_distance_m(lats, lons)


def elapsed_seconds(points: List[TrackPoint]) -> np.ndarray:
    """Seconds since the first timestamp; NaN where a point has no timestamp."""
    start = next((p.timestamp for p in points if p.timestamp is not None), None)
    if start is None:
        return np.full(len(points), np.nan)
    return np.array(
        [
            (p.timestamp - start).total_seconds() if p.timestamp is not None else np.nan
            for p in points
        ],
        dtype=float,
    )


def _opt(values: List[float], fn) -> Optional[float]:
    return float(fn(values)) if values else None


@dataclass
class TrackMetricsService:
    noise_threshold_m: float = 2.0
    min_distance_m: float = 10.0

    @classmethod
    def from_config(cls, config: Config) -> "TrackMetricsService":
        return cls(
            noise_threshold_m=config.elevation_noise_threshold_m,
            min_distance_m=config.elevation_min_distance_m,
        )

    # ------------------------------------------------------------------
    # Public API
    def compute(self, track: ParsedTrack, duration_s: Optional[float] = None) -> TrackMetrics:
        """Compute metrics for ``track``.

        ``duration_s`` overrides the timestamp span, e.g. after a crop where the
        new duration is fixed by the trim bounds.
        """
        points = track.points
        if len(points) < 2:
            raise InsufficientPoints(len(points))

        odometer = track_odometer(points)
        distance_m = float(odometer[-1])

        elevations = [p.elevation for p in points]
        gain, loss = elevation_gain_loss(
            elevations, odometer, self.noise_threshold_m, self.min_distance_m
        )
        known = [e for e in elevations if e is not None]
        grades = segment_grades(elevations, odometer)

        elapsed = elapsed_seconds(points)
        if duration_s is None:
            valid = elapsed[~np.isnan(elapsed)]
            duration_s = float(valid.max()) if len(valid) else 0.0

        box = bounds([p.latitude for p in points], [p.longitude for p in points])
        metrics = TrackMetrics(
            distance_m=distance_m,
            elev_gain_m=gain,
            elev_loss_m=loss,
            min_elev_m=_opt(known, min),
            max_elev_m=_opt(known, max),
            max_speed_mps=self._max_speed(points, odometer, elapsed),
            avg_grade_percent=_opt(grades, np.mean),
            max_grade_percent=_opt(grades, max),
            min_grade_percent=_opt(grades, min),
            min_lat=box[0] if box else None,
            min_lon=box[1] if box else None,
            max_lat=box[2] if box else None,
            max_lon=box[3] if box else None,
        )
        logger.debug(
            f"Track metrics: {len(points)} points, {distance_m:.1f} m, {duration_s:.0f} s"
        )
        return metrics.with_duration(duration_s)

    def sensor_stats(self, timeseries: Optional[pd.DataFrame]) -> SensorStats:
        if timeseries is None or timeseries.empty:
            return SensorStats()

        def column(name: str) -> pd.Series:
            if name not in timeseries.columns:
                return pd.Series(dtype=float)
            return pd.to_numeric(timeseries[name], errors="coerce").dropna()

        hr = column("heartRateBpm")
        cadence = column("cadence")
        power = column("powerWatts")
        return SensorStats(
            max_heart_rate=float(hr.max()) if not hr.empty else None,
            avg_heart_rate=float(hr.mean()) if not hr.empty else None,
            min_heart_rate=float(hr.min()) if not hr.empty else None,
            max_cadence=float(cadence.max()) if not cadence.empty else None,
            avg_cadence=float(cadence.mean()) if not cadence.empty else None,
            max_power=float(power.max()) if not power.empty else None,
            avg_power=float(power.mean()) if not power.empty else None,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    @staticmethod
    def _max_speed(
        points: List[TrackPoint], odometer: np.ndarray, elapsed: np.ndarray
    ) -> Optional[float]:
        recorded = [p.speed for p in points if p.speed is not None]
        if recorded:
            return float(max(recorded))
        dt = np.diff(elapsed)
        dd = np.diff(odometer)
        mask = ~np.isnan(dt) & (dt > 0)
        if not mask.any():
            return None
        return float((dd[mask] / dt[mask]).max())

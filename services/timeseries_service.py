"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Per-sample time series built from a parsed track, and its CSV persistence.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from services.metrics_service import elapsed_seconds, track_odometer
from services.models import TIMESERIES_COLUMNS, ParsedTrack, Session
from utils.config import Config

# TrackPoint field copied into each time-series column
_SENSOR_COLUMNS = {
    "heartRateBpm": "heart_rate",
    "cadence": "cadence",
    "powerWatts": "power",
    "speedMps": "speed",
    "gradePercent": "grade",
    "elevationM": "elevation",
    "temperatureC": "temperature",
    "verticalSpeedMps": "vertical_speed",
}


def build_timeseries(track: ParsedTrack) -> pd.DataFrame:
    """Walk the track in order, accumulating distance and copying sensor fields.

    ``elapsedSeconds`` is relative to the first timestamp and NaN for untimed
    tracks. ``distanceM`` is an odometer and never decreases.
    """
    points = track.points
    df = pd.DataFrame(
        {
            "elapsedSeconds": elapsed_seconds(points),
            "distanceM": track_odometer(points),
        }
    )
    for column, attr in _SENSOR_COLUMNS.items():
        df[column] = np.array([getattr(p, attr) for p in points], dtype=float)
    return df[TIMESERIES_COLUMNS]


def session_curve(session: Session) -> pd.DataFrame:
    """Distance/time curve of a session.

    The stored time series when there is one, else the same frame built from
    the route points.
    """
    if session.has_timeseries:
        return session.timeseries
    return build_timeseries(session.track)


@dataclass
class TimeseriesService:
    config: Config

    def _path(self, session_id: str) -> Path:
        return self.config.timeseries_dir / f"{session_id}.csv"

    def load(self, session_id: str) -> Optional[pd.DataFrame]:
        """Return the session timeseries DataFrame if available."""
        path = self._path(session_id)
        if not path.exists():
            return None
        df = pd.read_csv(path, float_precision="round_trip")
        if df.empty:
            return None
        for column in TIMESERIES_COLUMNS:
            if column not in df.columns:
                df[column] = float("nan")
        return df[TIMESERIES_COLUMNS]

    def save(self, session_id: str, df: Optional[pd.DataFrame]) -> None:
        if df is None or df.empty:
            self.delete(session_id)
            return
        path = self._path(session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(path, index=False)

    def delete(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)

"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Domain types shared by parsers, calculators and the session store.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd
from streamlit.logger import get_logger

from services.errors import MalformedFile
from utils.coercion import safe_float_optional
from utils.time import to_utc

logger = get_logger(__name__)


class TrackFormat(Enum):
    TRACKPOINT = "gpx"
    BINARY_TELEMETRY = "fit"
    TABULAR = "csv"


class SessionState(Enum):
    IMPORTED = "imported"
    VALIDATING = "validating"
    RECOMPUTING = "recomputing"
    PERSISTED = "persisted"


# Column name for each optional TrackPoint field in track frames
TRACK_COLUMNS = {
    "timestamp": "timestamp",
    "latitude": "lat",
    "longitude": "lon",
    "elevation": "elevationM",
    "heart_rate": "heartRateBpm",
    "cadence": "cadence",
    "power": "powerWatts",
    "temperature": "temperatureC",
    "speed": "speedMps",
    "grade": "gradePercent",
    "vertical_speed": "verticalSpeedMps",
    "device_distance": "deviceDistanceM",
}

TIMESERIES_COLUMNS = [
    "elapsedSeconds",
    "distanceM",
    "heartRateBpm",
    "cadence",
    "powerWatts",
    "speedMps",
    "gradePercent",
    "elevationM",
    "temperatureC",
    "verticalSpeedMps",
]

SENSOR_FIELDS = (
    "heart_rate",
    "cadence",
    "power",
    "temperature",
    "speed",
    "grade",
    "vertical_speed",
    "device_distance",
)


@dataclass(frozen=True)
class TrackPoint:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timestamp: Optional[dt.datetime] = None
    elevation: Optional[float] = None
    heart_rate: Optional[float] = None
    cadence: Optional[float] = None
    power: Optional[float] = None
    temperature: Optional[float] = None
    speed: Optional[float] = None
    grade: Optional[float] = None
    vertical_speed: Optional[float] = None
    device_distance: Optional[float] = None

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def has_sensor_data(self) -> bool:
        return any(getattr(self, name) is not None for name in SENSOR_FIELDS)


@dataclass
class ParsedTrack:
    points: List[TrackPoint]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def has_timestamps(self) -> bool:
        return bool(self.points) and all(p.timestamp is not None for p in self.points)

    @property
    def has_sensor_stream(self) -> bool:
        return any(p.has_sensor_data for p in self.points)

    @property
    def start_time(self) -> Optional[dt.datetime]:
        for point in self.points:
            if point.timestamp is not None:
                return point.timestamp
        return None

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {column: getattr(point, attr) for attr, column in TRACK_COLUMNS.items()}
            for point in self.points
        ]
        df = pd.DataFrame(rows, columns=list(TRACK_COLUMNS.values()))
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        return df

    @classmethod
    def from_frame(cls, df: pd.DataFrame, metadata: Optional[Dict[str, Any]] = None) -> "ParsedTrack":
        points = []
        for record in df.to_dict(orient="records"):
            values: Dict[str, Any] = {}
            for attr, column in TRACK_COLUMNS.items():
                raw = record.get(column)
                if attr == "timestamp":
                    values[attr] = to_utc(raw)
                else:
                    values[attr] = safe_float_optional(raw)
            points.append(TrackPoint(**values))
        return cls(points=points, metadata=dict(metadata or {}))


@dataclass(frozen=True)
class Split:
    index: int
    distance_m: float
    duration_s: float
    pace_s: float
    elevation_delta: Optional[float] = None
    avg_heart_rate: Optional[float] = None


@dataclass(frozen=True)
class BestEffortRecord:
    distance_label: str
    target_distance_m: float
    achieved_time_s: float
    session_id: str
    session_date: str


@dataclass(frozen=True)
class TrackMetrics:
    distance_m: float = 0.0
    duration_s: float = 0.0
    avg_pace_s: Optional[float] = None
    elev_gain_m: Optional[float] = None
    elev_loss_m: Optional[float] = None
    min_elev_m: Optional[float] = None
    max_elev_m: Optional[float] = None
    max_speed_mps: Optional[float] = None
    avg_speed_mps: Optional[float] = None
    avg_grade_percent: Optional[float] = None
    max_grade_percent: Optional[float] = None
    min_grade_percent: Optional[float] = None
    min_lat: Optional[float] = None
    min_lon: Optional[float] = None
    max_lat: Optional[float] = None
    max_lon: Optional[float] = None

    def with_duration(self, duration_s: float) -> "TrackMetrics":
        """Copy with a fixed duration and the pace/speed that follow from it."""
        pace = None
        if self.distance_m > 0 and duration_s > 0:
            pace = duration_s / (self.distance_m / 1000.0)
        speed = self.distance_m / duration_s if duration_s > 0 else None
        return replace(self, duration_s=duration_s, avg_pace_s=pace, avg_speed_mps=speed)


@dataclass(frozen=True)
class SensorStats:
    max_heart_rate: Optional[float] = None
    avg_heart_rate: Optional[float] = None
    min_heart_rate: Optional[float] = None
    max_cadence: Optional[float] = None
    avg_cadence: Optional[float] = None
    max_power: Optional[float] = None
    avg_power: Optional[float] = None


@dataclass(frozen=True)
class RawSource:
    data: bytes
    format: TrackFormat
    filename: str
    compressed: bool = False

    @property
    def extension(self) -> str:
        ext = self.format.value
        return f"{ext}.gz" if self.compressed else ext


@dataclass(frozen=True)
class SessionFingerprint:
    """The fields duplicate detection compares."""

    session_id: Optional[str]
    started_at: Optional[dt.datetime]
    distance_m: float
    duration_s: float


@dataclass
class Session:
    session_id: str
    raw_source: RawSource
    track: ParsedTrack
    started_at: Optional[dt.datetime]
    metrics: TrackMetrics
    sensors: SensorStats = field(default_factory=SensorStats)
    timeseries: Optional[pd.DataFrame] = None
    splits: List[Split] = field(default_factory=list)
    split_length_m: float = 1000.0
    relative_effort: Optional[int] = None
    shoe_id: str = ""
    name: str = ""
    notes: str = ""
    media_paths: List[str] = field(default_factory=list)
    external_id: str = ""
    state: SessionState = SessionState.IMPORTED

    @property
    def distance_m(self) -> float:
        return self.metrics.distance_m

    @property
    def duration_s(self) -> float:
        return self.metrics.duration_s

    @property
    def has_timeseries(self) -> bool:
        return self.timeseries is not None and not self.timeseries.empty

    def fingerprint(self) -> SessionFingerprint:
        return SessionFingerprint(
            session_id=self.session_id,
            started_at=self.started_at,
            distance_m=self.metrics.distance_m,
            duration_s=self.metrics.duration_s,
        )

    def derived_state(self) -> Dict[str, Any]:
        """Flat view of every derived value, used to compare recalculations."""
        state: Dict[str, Any] = {"startedAt": self.started_at, "relativeEffort": self.relative_effort}
        for group in (self.metrics, self.sensors):
            for f in fields(group):
                state[f.name] = getattr(group, f.name)
        state["splits"] = list(self.splits)
        return state


def time_ordered(points: List[TrackPoint]) -> List[TrackPoint]:
    """Return points with non-decreasing timestamps.

    Fully timestamped tracks are stably re-sorted; partially timestamped tracks
    cannot be repaired and raise MalformedFile.
    """
    stamps = [p.timestamp for p in points if p.timestamp is not None]
    if all(a <= b for a, b in zip(stamps, stamps[1:])):
        return points
    if len(stamps) != len(points):
        raise MalformedFile("Track timestamps are out of order")
    logger.warning("Track timestamps out of order, sorting points")
    return sorted(points, key=lambda p: p.timestamp)

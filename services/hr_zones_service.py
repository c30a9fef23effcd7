"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Heart-rate zone configuration: validation, standard builders and the stored
active configuration.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from streamlit.logger import get_logger

from persistence.csv_storage import CsvStorage
from persistence.repositories import SettingsRepo
from utils.coercion import require_finite

logger = get_logger(__name__)

ZONE_COUNT = 5
MIN_BPM = 30.0
MAX_BPM = 250.0
ZONE_PERCENTAGES = [0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
DEFAULT_PROFILE = "default"


@dataclass(frozen=True)
class HeartRateZone:
    min_bpm: float
    max_bpm: float

    def contains(self, bpm: float) -> bool:
        return self.min_bpm <= bpm <= self.max_bpm


@dataclass(frozen=True)
class HeartRateZoneConfig:
    """Five contiguous bpm ranges, zone 1 lowest."""

    zones: Tuple[HeartRateZone, ...]

    def __post_init__(self) -> None:
        validate_zones(self.zones)

    @classmethod
    def from_bounds(cls, bounds: Sequence[Sequence[float]]) -> "HeartRateZoneConfig":
        return cls(tuple(HeartRateZone(float(lo), float(hi)) for lo, hi in bounds))

    def zone_index(self, bpm: float) -> int:
        """0-based zone of a reading; out-of-range readings clamp to the nearest zone."""
        for i, zone in enumerate(self.zones):
            if zone.contains(bpm):
                return i
        if bpm < self.zones[0].min_bpm:
            return 0
        if bpm > self.zones[-1].max_bpm:
            return len(self.zones) - 1
        # between two integer-bounded zones, e.g. 139.5 with [120,139] [140,159]
        for i in range(len(self.zones) - 1):
            if self.zones[i].max_bpm < bpm < self.zones[i + 1].min_bpm:
                return i
        return len(self.zones) - 1

    def to_json(self) -> str:
        return json.dumps([[z.min_bpm, z.max_bpm] for z in self.zones])

    @classmethod
    def from_json(cls, raw: str) -> "HeartRateZoneConfig":
        return cls.from_bounds(json.loads(raw))


def validate_zones(zones: Sequence[HeartRateZone]) -> None:
    """Raise ValueError unless zones are 5 ascending, contiguous bpm ranges."""
    if len(zones) != ZONE_COUNT:
        raise ValueError(f"Expected {ZONE_COUNT} heart rate zones, got {len(zones)}")
    for i, zone in enumerate(zones, start=1):
        lo = require_finite(zone.min_bpm, f"zone {i} min")
        hi = require_finite(zone.max_bpm, f"zone {i} max")
        if lo >= hi:
            raise ValueError(f"Zone {i}: min {lo} must be below max {hi}")
        if lo < MIN_BPM or hi > MAX_BPM:
            raise ValueError(f"Zone {i}: bounds must lie within {MIN_BPM:.0f}-{MAX_BPM:.0f} bpm")
    for i in range(len(zones) - 1):
        gap = zones[i + 1].min_bpm - zones[i].max_bpm
        if gap < 0:
            raise ValueError(f"Zones {i + 1} and {i + 2} overlap")
        if gap > 1:
            raise ValueError(f"Gap between zones {i + 1} and {i + 2}")


def _from_edges(edges: List[float]) -> HeartRateZoneConfig:
    return HeartRateZoneConfig.from_bounds(list(zip(edges[:-1], edges[1:])))


def zones_from_age(age: int) -> HeartRateZoneConfig:
    """Zones at 50-60-70-80-90-100 % of an age-predicted max (220 - age)."""
    if age <= 0 or age > 120:
        raise ValueError("age must be within 1-120")
    max_hr = 220 - age
    return _from_edges([float(round(max_hr * p)) for p in ZONE_PERCENTAGES])


def zones_from_karvonen(max_hr: float, resting_hr: float) -> HeartRateZoneConfig:
    """Zones at 50-100 % of heart-rate reserve above resting heart rate."""
    if not 60 <= max_hr <= 250:
        raise ValueError("max_hr must be within 60-250 bpm")
    if not 30 <= resting_hr <= 120:
        raise ValueError("resting_hr must be within 30-120 bpm")
    if resting_hr >= max_hr:
        raise ValueError("resting_hr must be below max_hr")
    reserve = max_hr - resting_hr
    return _from_edges([float(round(resting_hr + reserve * p)) for p in ZONE_PERCENTAGES])


@dataclass
class HrZonesService:
    storage: CsvStorage
    profile_id: str = DEFAULT_PROFILE

    def __post_init__(self) -> None:
        self.settings = SettingsRepo(self.storage)

    def active_config(self) -> Optional[HeartRateZoneConfig]:
        row = self.settings.get(self.profile_id)
        raw = row.get("hrZonesJson") if row else None
        if not isinstance(raw, str) or not raw:
            return None
        return HeartRateZoneConfig.from_json(raw)

    def save_config(self, config: HeartRateZoneConfig) -> None:
        self.settings.update(self.profile_id, {"hrZonesJson": config.to_json()})
        logger.info(f"Saved heart rate zones for {self.profile_id}")

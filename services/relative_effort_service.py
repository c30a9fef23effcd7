"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Relative effort: heart-rate zone weighted intensity score.

The score is a pure function of the time series and the zone configuration
passed in, so a recalculation with the same inputs reproduces it exactly.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from config import MAX_EFFORT_SAMPLE_GAP_S, ZONE_WEIGHTS
from services.hr_zones_service import HeartRateZoneConfig


def _sample_durations(elapsed: np.ndarray) -> np.ndarray:
    """Seconds credited to each sample: the gap to the next one.

    Negative or long gaps (pauses) count as one second, as does the last sample.
    """
    gaps = np.append(np.diff(elapsed), 1.0)
    invalid = np.isnan(gaps) | (gaps < 0) | (gaps > MAX_EFFORT_SAMPLE_GAP_S)
    gaps[invalid] = 1.0
    return gaps


def time_in_zones(timeseries: Optional[pd.DataFrame], zones: HeartRateZoneConfig) -> Optional[List[float]]:
    """Seconds spent in each zone, or None without a heart-rate stream."""
    if timeseries is None or timeseries.empty or "heartRateBpm" not in timeseries.columns:
        return None
    hr = pd.to_numeric(timeseries["heartRateBpm"], errors="coerce")
    elapsed = pd.to_numeric(timeseries["elapsedSeconds"], errors="coerce")
    mask = hr.notna() & elapsed.notna()
    if not mask.any():
        return None
    hr_values = hr[mask].to_numpy(dtype=float)
    durations = _sample_durations(elapsed[mask].to_numpy(dtype=float))

    seconds = [0.0] * len(zones.zones)
    for bpm, duration in zip(hr_values, durations):
        seconds[zones.zone_index(bpm)] += float(duration)
    return seconds


def score(
    timeseries: Optional[pd.DataFrame],
    zones: HeartRateZoneConfig,
    weights: Sequence[float] = ZONE_WEIGHTS,
) -> Optional[int]:
    """Weighted minutes in zone, rounded to an integer.

    Returns None, not 0, for sessions without heart-rate data.
    """
    seconds = time_in_zones(timeseries, zones)
    if seconds is None:
        return None
    total = 0.0
    for zone_seconds, weight in zip(seconds, weights):
        total += zone_seconds / 60.0 * weight
    return int(round(total))

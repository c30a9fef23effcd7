"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Great-circle distance helpers on the mean Earth sphere.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from haversine import Unit, haversine, haversine_vector

from config import EARTH_RADIUS_M


def great_circle_m(p1: Tuple[float, float], p2: Tuple[float, float]) -> float:
    """Distance in metres between two (lat, lon) pairs."""
    return haversine(p1, p2, unit=Unit.RADIANS) * EARTH_RADIUS_M


def segment_distances_m(lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """Distances between consecutive positions (length n-1)."""
    if len(lats) < 2:
        return np.zeros(0)
    start = np.column_stack([lats[:-1], lons[:-1]])
    end = np.column_stack([lats[1:], lons[1:]])
    return np.asarray(haversine_vector(start, end, unit=Unit.RADIANS)) * EARTH_RADIUS_M


def cumulative_distance_m(
    lats: Sequence[Optional[float]], lons: Sequence[Optional[float]]
) -> np.ndarray:
    """Odometer per point over the coordinate-bearing points.

    Points without coordinates are skipped and carry the previous value, so the
    result is non-decreasing and its last value is the track distance.
    """
    lat = np.array(lats, dtype=float)
    lon = np.array(lons, dtype=float)
    cum = np.zeros(len(lat))
    idx = np.flatnonzero(~(np.isnan(lat) | np.isnan(lon)))
    if len(idx) < 2:
        return cum
    at_positions = np.concatenate([[0.0], np.cumsum(segment_distances_m(lat[idx], lon[idx]))])
    filled = np.full(len(lat), np.nan)
    filled[idx] = at_positions
    return pd.Series(filled).ffill().fillna(0.0).to_numpy()


def odometer_from_device(distances: Sequence[Optional[float]]) -> np.ndarray:
    """Running maximum of device-recorded distance, rebased to start at 0."""
    values = pd.Series(np.array(distances, dtype=float)).ffill().fillna(0.0)
    values = values.cummax()
    return (values - values.iloc[0]).to_numpy() if len(values) else values.to_numpy()


def bounds(lats: Sequence[Optional[float]], lons: Sequence[Optional[float]]) -> Optional[Tuple[float, float, float, float]]:
    """(min_lat, min_lon, max_lat, max_lon) of coordinate-bearing points."""
    lat = np.array(lats, dtype=float)
    lon = np.array(lons, dtype=float)
    mask = ~(np.isnan(lat) | np.isnan(lon))
    if not mask.any():
        return None
    return (
        float(lat[mask].min()),
        float(lon[mask].min()),
        float(lat[mask].max()),
        float(lon[mask].max()),
    )

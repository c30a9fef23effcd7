"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Fixed-distance splits cut from a distance/time curve.
"""

from __future__ import annotations

import math
from typing import List, Optional

import numpy as np
import pandas as pd

from config import SPLIT_LENGTHS_M
from services.models import Split

_EPS_M = 1e-6


def split_length_for(unit_preference: str) -> float:
    try:
        return SPLIT_LENGTHS_M[unit_preference]
    except KeyError:
        raise ValueError(f"Unknown unit preference: {unit_preference}") from None


def interpolate_at(distances: np.ndarray, values: np.ndarray, target: float) -> float:
    """Value at ``target`` distance, linear between the bracketing samples.

    ``distances`` must be non-decreasing. On a plateau the first sample that
    reaches the target wins.
    """
    j = int(np.searchsorted(distances, target, side="left"))
    if j == 0:
        return float(values[0])
    if j >= len(distances):
        return float(values[-1])
    d0, d1 = distances[j - 1], distances[j]
    if d1 == target:
        return float(values[j])
    ratio = (target - d0) / (d1 - d0)
    return float(values[j - 1] + ratio * (values[j] - values[j - 1]))


def _time_axis(curve: pd.DataFrame, duration_s: Optional[float]) -> pd.DataFrame:
    elapsed = pd.to_numeric(curve["elapsedSeconds"], errors="coerce")
    if elapsed.notna().any():
        return curve[elapsed.notna()].assign(elapsedSeconds=elapsed[elapsed.notna()])
    # Untimed track: spread the known duration evenly over point indices
    n = len(curve)
    step = (duration_s or 0.0) / (n - 1) if n > 1 else 0.0
    return curve.assign(elapsedSeconds=np.arange(n, dtype=float) * step)


def build_splits(
    curve: pd.DataFrame, split_length_m: float, duration_s: Optional[float] = None
) -> List[Split]:
    """Cut the accumulated-distance curve into ``split_length_m`` segments.

    Boundary times are interpolated between the samples straddling each
    boundary. The final partial segment is emitted with its own distance, so
    split distances sum to the curve's total distance. The input frame is not
    modified.
    """
    if split_length_m <= 0:
        raise ValueError("split_length_m must be positive")
    if curve is None or curve.empty or "distanceM" not in curve.columns:
        return []

    work = curve[pd.to_numeric(curve["distanceM"], errors="coerce").notna()]
    if len(work) < 2:
        return []
    work = _time_axis(work, duration_s)

    d = work["distanceM"].to_numpy(dtype=float)
    t = work["elapsedSeconds"].to_numpy(dtype=float)
    start, end = d[0], d[-1]
    total = end - start
    if total <= _EPS_M:
        return []

    full = int(math.floor(total / split_length_m + 1e-9))
    edges = [start + k * split_length_m for k in range(full + 1)]
    edges[-1] = min(edges[-1], end)
    if end - edges[-1] > _EPS_M:
        edges.append(end)

    elevation = _series(work, "elevationM")
    heart_rate = _series(work, "heartRateBpm")

    splits: List[Split] = []
    for index, (lo, hi) in enumerate(zip(edges, edges[1:]), start=1):
        distance = hi - lo
        duration = interpolate_at(d, t, hi) - interpolate_at(d, t, lo)
        pace = duration / (distance / 1000.0) if distance > 0 else 0.0
        splits.append(
            Split(
                index=index,
                distance_m=distance,
                duration_s=duration,
                pace_s=pace,
                elevation_delta=_elevation_delta(d, elevation, lo, hi),
                avg_heart_rate=_mean_between(d, heart_rate, lo, hi, last=hi == edges[-1]),
            )
        )
    return splits


def _series(df: pd.DataFrame, column: str) -> Optional[np.ndarray]:
    if column not in df.columns:
        return None
    values = pd.to_numeric(df[column], errors="coerce").to_numpy(dtype=float)
    return values if not np.isnan(values).all() else None


def _elevation_delta(
    d: np.ndarray, elevation: Optional[np.ndarray], lo: float, hi: float
) -> Optional[float]:
    if elevation is None:
        return None
    mask = ~np.isnan(elevation)
    if mask.sum() < 2:
        return None
    return interpolate_at(d[mask], elevation[mask], hi) - interpolate_at(d[mask], elevation[mask], lo)


def _mean_between(
    d: np.ndarray, values: Optional[np.ndarray], lo: float, hi: float, last: bool
) -> Optional[float]:
    if values is None:
        return None
    upper = d <= hi if last else d < hi
    window = values[(d >= lo) & upper]
    window = window[~np.isnan(window)]
    return float(window.mean()) if len(window) else None


def splits_to_frame(splits: List[Split]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "index": s.index,
                "distanceM": s.distance_m,
                "durationS": s.duration_s,
                "paceS": s.pace_s,
                "elevationDelta": s.elevation_delta,
                "avgHeartRate": s.avg_heart_rate,
            }
            for s in splits
        ],
        columns=["index", "distanceM", "durationS", "paceS", "elevationDelta", "avgHeartRate"],
    )


def splits_from_frame(df: pd.DataFrame) -> List[Split]:
    splits: List[Split] = []
    for row in df.sort_values("index").to_dict(orient="records"):
        splits.append(
            Split(
                index=int(row["index"]),
                distance_m=float(row["distanceM"]),
                duration_s=float(row["durationS"]),
                pace_s=float(row["paceS"]),
                elevation_delta=None if pd.isna(row["elevationDelta"]) else float(row["elevationDelta"]),
                avg_heart_rate=None if pd.isna(row["avgHeartRate"]) else float(row["avgHeartRate"]),
            )
        )
    return splits

"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Elevation-related helpers.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

from config import GRADE_LIMIT_PERCENT
from utils.coercion import require_finite


def elevation_gain_loss(
    elevations: Sequence[Optional[float]],
    cumulative_m: Sequence[float],
    noise_threshold_m: float = 2.0,
    min_distance_m: float = 10.0,
) -> Tuple[Optional[float], Optional[float]]:
    """Smoothed elevation gain and loss in metres.

    Consecutive moves in the same direction form a run. A run counts towards
    gain (or loss) only when its total change reaches ``noise_threshold_m`` and
    it spans at least ``min_distance_m`` horizontally. Flat steps and points
    without elevation extend the open run's distance without changing direction.

    Returns (None, None) when no point carries an elevation.
    """
    if not any(e is not None and not math.isnan(e) for e in elevations):
        return None, None

    gain = 0.0
    loss = 0.0
    run_direction = 0
    run_change = 0.0
    run_distance = 0.0
    prev_elevation: Optional[float] = None
    prev_distance: Optional[float] = None

    def commit() -> None:
        nonlocal gain, loss
        if run_change >= noise_threshold_m and run_distance >= min_distance_m:
            if run_direction > 0:
                gain += run_change
            elif run_direction < 0:
                loss += run_change

    for elevation, distance in zip(elevations, cumulative_m):
        step = 0.0 if prev_distance is None else max(0.0, distance - prev_distance)
        prev_distance = distance
        if elevation is None or math.isnan(elevation):
            run_distance += step
            continue
        if prev_elevation is None:
            prev_elevation = elevation
            continue
        delta = elevation - prev_elevation
        prev_elevation = elevation
        direction = (delta > 0) - (delta < 0)
        if direction != 0 and direction != run_direction:
            commit()
            run_direction = direction
            run_change = 0.0
            run_distance = 0.0
        run_change += abs(delta)
        run_distance += step
    commit()
    return gain, loss


def grade_percent(rise_m: float, run_m: float) -> float:
    """Grade between two points, clamped to +/- GRADE_LIMIT_PERCENT.

    Non-finite inputs raise InvalidNumericValue instead of being clamped.
    """
    rise = require_finite(rise_m, "elevation delta")
    run = require_finite(run_m, "horizontal distance")
    if run <= 0:
        raise ValueError("run must be positive")
    grade = rise / run * 100.0
    return max(-GRADE_LIMIT_PERCENT, min(GRADE_LIMIT_PERCENT, grade))


def segment_grades(
    elevations: Sequence[Optional[float]], cumulative_m: Sequence[float]
) -> List[float]:
    """Grades between consecutive points having elevation and a positive run."""
    grades: List[float] = []
    for i in range(1, len(elevations)):
        e0, e1 = elevations[i - 1], elevations[i]
        if e0 is None or e1 is None or math.isnan(e0) or math.isnan(e1):
            continue
        run = cumulative_m[i] - cumulative_m[i - 1]
        if run <= 0:
            continue
        grades.append(grade_percent(e1 - e0, run))
    return grades

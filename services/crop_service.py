"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Session cropping: remove time from the start and/or end of a session and
re-derive every dependent value.

The raw source is never touched, so a crop can be undone by re-importing it.
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, replace
from typing import List, Optional

import numpy as np
import pandas as pd
from streamlit.logger import get_logger

from services.best_effort_service import BestEffortService
from services.errors import CropError, CropValidationError, NoTrimmableData
from services.hr_zones_service import HeartRateZoneConfig
from services.metrics_service import elapsed_seconds
from services.models import ParsedTrack, Session, SessionState, TrackPoint
from services.session_builder import SessionBuilder
from services.session_store import SessionStore

logger = get_logger(__name__)

# Tolerance when comparing float elapsed seconds to the crop window
_WINDOW_EPS_S = 1e-9


def validate_crop(session: Session, start_trim_s: float, end_trim_s: float) -> None:
    for name, value in (("start_trim_s", start_trim_s), ("end_trim_s", end_trim_s)):
        if value is None or not math.isfinite(value):
            raise CropValidationError(f"{name} must be a finite number")
        if value < 0:
            raise CropValidationError(f"{name} must be >= 0")
    if not session.has_timeseries and not session.track.points:
        raise NoTrimmableData(f"Session {session.session_id} has no time series or route data")
    if start_trim_s + end_trim_s >= session.duration_s:
        raise CropValidationError(
            f"Cannot trim {start_trim_s + end_trim_s:.0f} s from a {session.duration_s:.0f} s session"
        )


def _window_indices(n: int, start_trim_s: float, window_end_s: float, duration_s: float) -> range:
    """Proportional index window for samples without usable times.

    The window [start/duration, end/duration] covers indices floor(r0 * n) to
    ceil(r1 * n) - 1, clamped to the sequence.
    """
    first = int(math.floor(start_trim_s / duration_s * n))
    last = int(math.ceil(window_end_s / duration_s * n)) - 1
    first = max(0, min(first, n - 1))
    last = max(first, min(last, n - 1))
    return range(first, last + 1)


def crop_timeseries(
    timeseries: Optional[pd.DataFrame],
    start_trim_s: float,
    window_end_s: float,
    duration_s: float,
) -> Optional[pd.DataFrame]:
    """Samples inside [start, window_end], re-indexed so the first one is at 0 s.

    Distances are rebased on the first retained sample so the odometer starts
    at zero. A window keeping fewer than 2 samples is rejected.
    """
    if timeseries is None or timeseries.empty:
        return None
    elapsed = pd.to_numeric(timeseries["elapsedSeconds"], errors="coerce")
    if elapsed.isna().all():
        window = _window_indices(len(timeseries), start_trim_s, window_end_s, duration_s)
        kept = timeseries.iloc[list(window)].copy().reset_index(drop=True)
    else:
        mask = (elapsed >= start_trim_s - _WINDOW_EPS_S) & (elapsed <= window_end_s + _WINDOW_EPS_S)
        kept = timeseries[mask].copy().reset_index(drop=True)
        if not kept.empty:
            kept["elapsedSeconds"] = elapsed[mask].to_numpy(dtype=float) - float(elapsed[mask].iloc[0])
    if len(kept) < 2:
        raise CropValidationError(f"Crop window keeps {len(kept)} time-series samples, need at least 2")
    distances = pd.to_numeric(kept["distanceM"], errors="coerce")
    if distances.notna().any():
        kept["distanceM"] = (distances - distances.dropna().iloc[0]).clip(lower=0.0)
    return kept


def crop_route(
    points: List[TrackPoint],
    start_trim_s: float,
    window_end_s: float,
    duration_s: float,
) -> List[TrackPoint]:
    """Route points inside the crop window.

    Offsets are measured from the first timestamp, the same clock as the
    time-series ``elapsedSeconds``, so both keep the same samples. Untimed
    points are mapped proportionally by index.
    """
    if not points:
        return []
    offsets = elapsed_seconds(points)
    if np.isnan(offsets).all():
        return [points[i] for i in _window_indices(len(points), start_trim_s, window_end_s, duration_s)]
    return [
        point
        for point, offset in zip(points, offsets)
        if start_trim_s - _WINDOW_EPS_S <= offset <= window_end_s + _WINDOW_EPS_S
    ]


@dataclass
class CropService:
    store: SessionStore
    builder: SessionBuilder
    best_efforts: BestEffortService

    # ------------------------------------------------------------------
    # Public API
    def crop_session(
        self,
        session_id: str,
        start_trim_s: float,
        end_trim_s: float,
        zones: Optional[HeartRateZoneConfig] = None,
    ) -> Session:
        """Validate, recompute and persist a crop of a stored session.

        Nothing is written when validation or recomputation fails.
        """
        session = self.store.load(session_id)
        session.state = SessionState.VALIDATING
        try:
            validate_crop(session, start_trim_s, end_trim_s)
        except CropError as e:
            session.state = SessionState.IMPORTED
            logger.warning(f"Crop rejected for {session_id}: {e}")
            raise

        session.state = SessionState.RECOMPUTING
        cropped = self.recompute(session, start_trim_s, end_trim_s, zones)
        cropped.state = SessionState.PERSISTED
        self.store.save(cropped)
        self.best_efforts.handle_session_changed(cropped, lambda: self.store.iter_sessions())
        logger.info(
            f"Cropped session {session_id}: -{start_trim_s:.0f} s start, -{end_trim_s:.0f} s end, "
            f"{cropped.distance_m:.0f} m over {cropped.duration_s:.0f} s"
        )
        return cropped

    def recompute(
        self,
        session: Session,
        start_trim_s: float,
        end_trim_s: float,
        zones: Optional[HeartRateZoneConfig] = None,
    ) -> Session:
        """Cropped copy of ``session`` with every derived value recomputed."""
        old_duration = session.duration_s
        window_end = old_duration - end_trim_s
        new_duration = old_duration - start_trim_s - end_trim_s

        timeseries = crop_timeseries(session.timeseries, start_trim_s, window_end, old_duration)
        points = crop_route(session.track.points, start_trim_s, window_end, old_duration)
        if len(points) < 2:
            raise CropValidationError("Crop window keeps fewer than 2 route points")

        track = ParsedTrack(points=points, metadata=dict(session.track.metadata))
        metrics = self.builder.metrics.compute(track, duration_s=new_duration)
        # the new start is the first kept sample, where the time series restarts at 0 s
        started_at = track.start_time or session.started_at
        if track.start_time is None and started_at is not None and start_trim_s > 0:
            started_at = started_at + dt.timedelta(seconds=start_trim_s)

        cropped = replace(
            session,
            track=track,
            timeseries=timeseries,
            metrics=metrics,
            started_at=started_at,
        )
        return self.builder.refresh(cropped, zones)

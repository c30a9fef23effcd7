"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Derives a Session from a parsed track: metrics, time series, splits and
relative effort.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from typing import Optional

from streamlit.logger import get_logger

from services.hr_zones_service import HeartRateZoneConfig
from services.metrics_service import TrackMetricsService
from services.models import ParsedTrack, RawSource, Session
from services.parsers.activities_csv import ActivityMetadata
from services.relative_effort_service import score
from services.splits_service import build_splits
from services.timeseries_service import build_timeseries, session_curve
from utils.ids import new_id
from utils.time import to_iso

logger = get_logger(__name__)

ACTIVITY_DATE_KEY = "activityDate"
ACTIVITY_ELAPSED_KEY = "activityElapsedS"


@dataclass
class SessionBuilder:
    metrics: TrackMetricsService
    split_length_m: float = 1000.0

    def build(
        self,
        track: ParsedTrack,
        raw: RawSource,
        zones: Optional[HeartRateZoneConfig] = None,
        activity: Optional[ActivityMetadata] = None,
        session_id: Optional[str] = None,
    ) -> Session:
        """Run the full derivation pipeline over a freshly parsed track.

        Activity metadata supplies the name, notes, media, shoe and, for
        untimed tracks, the start time and duration.
        """
        timed = track.start_time is not None
        duration = None
        started_at: Optional[dt.datetime] = track.start_time
        if not timed and activity is not None:
            duration = activity.elapsed_s
            started_at = activity.activity_date
            # kept so a restore from the raw source can rebuild the same timing
            track = replace(
                track,
                metadata={
                    **track.metadata,
                    ACTIVITY_DATE_KEY: to_iso(started_at),
                    ACTIVITY_ELAPSED_KEY: duration,
                },
            )

        metrics = self.metrics.compute(track, duration_s=duration)
        timeseries = build_timeseries(track) if track.has_sensor_stream else None
        session = Session(
            session_id=session_id or new_id(),
            raw_source=raw,
            track=track,
            started_at=started_at,
            metrics=metrics,
            timeseries=timeseries,
            split_length_m=self.split_length_m,
            name=self._name(track, activity),
            notes=activity.notes if activity else "",
            media_paths=list(activity.media_paths) if activity else [],
            shoe_id=activity.shoe_id if activity else "",
            external_id=activity.activity_id if activity else "",
        )
        session = self.refresh(session, zones)
        logger.debug(
            f"Derived session {session.session_id}: {metrics.distance_m:.0f} m, "
            f"{len(session.splits)} splits, effort={session.relative_effort}"
        )
        return session

    def refresh(
        self,
        session: Session,
        zones: Optional[HeartRateZoneConfig],
        split_length_m: Optional[float] = None,
    ) -> Session:
        """Recompute sensor stats, splits and relative effort of ``session``.

        Returns a new Session; the input is left unchanged.
        """
        length = split_length_m or session.split_length_m or self.split_length_m
        return replace(
            session,
            sensors=self.metrics.sensor_stats(session.timeseries),
            splits=build_splits(session_curve(session), length, session.duration_s),
            split_length_m=length,
            relative_effort=score(session.timeseries, zones) if zones is not None else None,
        )

    @staticmethod
    def _name(track: ParsedTrack, activity: Optional[ActivityMetadata]) -> str:
        if activity is not None and activity.name:
            return activity.name
        return track.metadata.get("trackName") or track.metadata.get("name") or ""

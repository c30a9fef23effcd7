"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Persistence of whole Session aggregates.

A session is one row in ``sessions.csv`` plus per-session files: route points
(``tracks/``), time series (``timeseries/``), splits (``splits/``) and the
untouched raw source (``raw/``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterator, List, Optional

from streamlit.logger import get_logger

from persistence.csv_storage import CsvStorage
from persistence.repositories import SessionsRepo
from services.errors import SessionNotFound, TrackError
from services.models import (
    ParsedTrack,
    RawSource,
    SensorStats,
    Session,
    SessionFingerprint,
    SessionState,
    TrackFormat,
    TrackMetrics,
)
from services.splits_service import splits_from_frame, splits_to_frame
from services.timeseries_service import TimeseriesService
from utils.coercion import safe_bool, safe_float_optional, safe_int_optional, safe_str
from utils.config import Config
from utils.ids import content_digest
from utils.time import to_iso, to_utc

logger = get_logger(__name__)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


METRIC_COLUMNS = {f.name: _camel(f.name) for f in fields(TrackMetrics)}
SENSOR_COLUMNS = {f.name: _camel(f.name) for f in fields(SensorStats)}


@dataclass
class SessionStore:
    storage: CsvStorage
    config: Config

    def __post_init__(self) -> None:
        self.sessions = SessionsRepo(self.storage)
        self.timeseries = TimeseriesService(self.config)

    # ------------------------------------------------------------------
    # Public API
    def save(self, session: Session) -> None:
        self._write_artifacts(session)
        self.sessions.upsert_many([self.to_row(session)])

    def save_many(self, sessions: List[Session]) -> None:
        """Persist a batch with a single write of the sessions table."""
        for session in sessions:
            self._write_artifacts(session)
        self.sessions.upsert_many([self.to_row(s) for s in sessions])
        logger.info(f"Committed {len(sessions)} sessions")

    def update_rows(self, sessions: List[Session]) -> None:
        """Rewrite only the table rows, for changes that leave the artifacts intact."""
        self.sessions.upsert_many([self.to_row(s) for s in sessions])

    def load(self, session_id: str) -> Session:
        row = self.sessions.get(session_id)
        if row is None:
            raise SessionNotFound(session_id)
        return self.from_row(row)

    def exists(self, session_id: str) -> bool:
        return self.sessions.get(session_id) is not None

    def fingerprints(self) -> List[SessionFingerprint]:
        df = self.sessions.list()
        return [
            SessionFingerprint(
                session_id=str(row["sessionId"]),
                started_at=to_utc(row["startedAt"]),
                distance_m=safe_float_optional(row["distanceM"]) or 0.0,
                duration_s=safe_float_optional(row["durationS"]) or 0.0,
            )
            for row in df.to_dict(orient="records")
        ]

    def session_ids(self) -> List[str]:
        """Ids ordered by start time, earliest first."""
        df = self.sessions.list()
        if df.empty:
            return []
        df = df.assign(_start=df["startedAt"].fillna("").astype(str))
        df = df.sort_values(["_start", "sessionId"], kind="mergesort")
        return df["sessionId"].astype(str).tolist()

    def iter_sessions(
        self, errors: Optional[List[str]] = None, exclude: Optional[str] = None
    ) -> Iterator[Session]:
        """Yield stored sessions in start-time order.

        Sessions that fail to load are logged, reported in ``errors`` and
        skipped so one corrupt session does not stop a corpus scan.
        """
        for session_id in self.session_ids():
            if session_id == exclude:
                continue
            try:
                yield self.load(session_id)
            except (OSError, ValueError, KeyError, TrackError) as e:
                logger.warning(f"Could not load session {session_id}: {e}", exc_info=True)
                if errors is not None:
                    errors.append(f"{session_id}: {e}")

    def delete(self, session_id: str) -> None:
        row = self.sessions.get(session_id)
        if row is None:
            raise SessionNotFound(session_id)
        self.sessions.delete(session_id)
        self.storage.delete(f"tracks/{session_id}.csv")
        self.storage.delete(f"splits/{session_id}.csv")
        self.timeseries.delete(session_id)
        raw_path = safe_str(row.get("rawPath"))
        if raw_path:
            self.storage.delete(raw_path)
        logger.info(f"Deleted session {session_id}")

    # ------------------------------------------------------------------
    # Row conversion
    @staticmethod
    def raw_path(session: Session) -> str:
        return f"raw/{session.session_id}.{session.raw_source.extension}"

    def to_row(self, session: Session) -> Dict[str, Any]:
        raw = session.raw_source
        row: Dict[str, Any] = {
            "sessionId": session.session_id,
            "externalId": session.external_id,
            "name": session.name,
            "notes": session.notes,
            "mediaPaths": json.dumps(session.media_paths),
            "shoeId": session.shoe_id,
            "state": session.state.value,
            "startedAt": to_iso(session.started_at),
            "relativeEffort": session.relative_effort,
            "splitLengthM": session.split_length_m,
            "hasTimeseries": session.has_timeseries,
            "rawFileName": raw.filename,
            "rawFormat": raw.format.value,
            "rawCompressed": raw.compressed,
            "rawPath": self.raw_path(session),
            "rawSha256": content_digest(raw.data),
            "metadataJson": json.dumps(session.track.metadata, default=str),
        }
        for attr, column in METRIC_COLUMNS.items():
            row[column] = getattr(session.metrics, attr)
        for attr, column in SENSOR_COLUMNS.items():
            row[column] = getattr(session.sensors, attr)
        return row

    def from_row(self, row: Dict[str, Any]) -> Session:
        session_id = str(row["sessionId"])
        raw = RawSource(
            data=self.storage.read_bytes(safe_str(row["rawPath"])),
            format=TrackFormat(safe_str(row["rawFormat"])),
            filename=safe_str(row["rawFileName"]),
            compressed=safe_bool(row["rawCompressed"]),
        )
        metadata_raw = safe_str(row.get("metadataJson"))
        metadata = json.loads(metadata_raw) if metadata_raw else {}
        track = ParsedTrack.from_frame(self.storage.read_csv(f"tracks/{session_id}.csv"), metadata)

        values = {attr: safe_float_optional(row.get(column)) for attr, column in METRIC_COLUMNS.items()}
        values["distance_m"] = values["distance_m"] or 0.0
        values["duration_s"] = values["duration_s"] or 0.0
        metrics = TrackMetrics(**values)
        sensors = SensorStats(
            **{attr: safe_float_optional(row.get(column)) for attr, column in SENSOR_COLUMNS.items()}
        )
        splits_df = self.storage.read_csv(f"splits/{session_id}.csv")
        media_raw = safe_str(row.get("mediaPaths"))
        return Session(
            session_id=session_id,
            raw_source=raw,
            track=track,
            started_at=to_utc(row.get("startedAt")),
            metrics=metrics,
            sensors=sensors,
            timeseries=self.timeseries.load(session_id),
            splits=splits_from_frame(splits_df) if not splits_df.empty else [],
            split_length_m=safe_float_optional(row.get("splitLengthM")) or self.config.split_length_m,
            relative_effort=safe_int_optional(row.get("relativeEffort")),
            shoe_id=safe_str(row.get("shoeId")),
            name=safe_str(row.get("name")),
            notes=safe_str(row.get("notes")),
            media_paths=json.loads(media_raw) if media_raw else [],
            external_id=safe_str(row.get("externalId")),
            state=SessionState(safe_str(row.get("state")) or SessionState.IMPORTED.value),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    def _write_artifacts(self, session: Session) -> None:
        raw_path = self.raw_path(session)
        if not self.storage.exists(raw_path):
            self.storage.write_bytes(raw_path, session.raw_source.data)
        self.storage.write_csv(f"tracks/{session.session_id}.csv", session.track.to_frame())
        self.storage.write_csv(f"splits/{session.session_id}.csv", splits_to_frame(session.splits))
        self.timeseries.save(session.session_id, session.timeseries)

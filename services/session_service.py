"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Core-facing facade: imports, bulk imports, crops and full-corpus
recalculations over the stored sessions.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import PurePosixPath
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from streamlit.logger import get_logger

from persistence.csv_storage import CsvStorage
from persistence.locks import exclusive_recalculation, require_token
from persistence.repositories import BestEffortsRepo
from services.best_effort_service import RECALC_NAME, BestEffortService
from services.crop_service import CropService
from services.duplicate_service import find_duplicate
from services.errors import DuplicateSession, TrackError, UnsupportedActivityType
from services.hr_zones_service import HeartRateZoneConfig, HrZonesService
from services.metrics_service import TrackMetricsService
from services.models import (
    BestEffortRecord,
    ParsedTrack,
    RawSource,
    Session,
    SessionState,
    TrackFormat,
)
from services.parsers import ResolvedFormat, parse_track, resolve_format
from services.parsers.activities_csv import (
    ActivityMetadata,
    normalize_path,
    parse_activities_csv,
    run_activities,
)
from services.relative_effort_service import score
from services.session_builder import ACTIVITY_DATE_KEY, ACTIVITY_ELAPSED_KEY, SessionBuilder
from services.session_store import SessionStore
from services.splits_service import build_splits, split_length_for
from services.timeseries_service import session_curve
from utils.coercion import safe_float_optional
from utils.config import Config
from utils.time import to_utc

logger = get_logger(__name__)

RELATIVE_EFFORT_RECALC = "relative_effort"
SPLITS_RECALC = "splits"
# FIT sport values accepted as a run; "generic" is what many watches write
RUNNING_SPORTS = {"running", "generic"}

FileBatch = Union[Mapping[str, bytes], Iterable[Tuple[str, bytes]]]


@dataclass
class ImportResult:
    session: Optional[Session]
    warnings: List[str] = field(default_factory=list)
    duplicate: Optional[DuplicateSession] = None


@dataclass
class BulkImportSummary:
    processed: int = 0
    imported: int = 0
    skipped_duplicates: int = 0
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False
    session_ids: List[str] = field(default_factory=list)
    duplicates: List[DuplicateSession] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _check_sport(track: ParsedTrack) -> None:
    sport = track.metadata.get("sport")
    if sport is None:
        return
    if str(sport).strip().lower() not in RUNNING_SPORTS:
        raise UnsupportedActivityType(str(sport))


def _track_warnings(track: ParsedTrack, activity: Optional[ActivityMetadata]) -> List[str]:
    warnings: List[str] = []
    if not track.has_timestamps:
        if activity is not None and activity.elapsed_s:
            warnings.append("Track has no timestamps; duration taken from activity metadata")
        else:
            warnings.append("Track has no timestamps; duration and pace are unavailable")
    if all(p.elevation is None for p in track.points):
        warnings.append("Track has no elevation data")
    if not track.has_sensor_stream:
        warnings.append("Track has no sensor data; no time series stored")
    return warnings


@dataclass
class SessionService:
    config: Config
    storage: Optional[CsvStorage] = None

    def __post_init__(self) -> None:
        self.storage = self.storage or CsvStorage(self.config.data_dir)
        self.store = SessionStore(self.storage, self.config)
        self.metrics = TrackMetricsService.from_config(self.config)
        self.builder = SessionBuilder(self.metrics, self.config.split_length_m)
        self.best_efforts = BestEffortService(BestEffortsRepo(self.storage))
        self.zones = HrZonesService(self.storage)
        settings = self.zones.settings.get(self.zones.profile_id) or {}
        units = settings.get("units")
        if isinstance(units, str) and units:
            self.builder.split_length_m = split_length_for(units)
        self.cropper = CropService(self.store, self.builder, self.best_efforts)

    # --- Queries ----------------------------------------------------
    def get_session(self, session_id: str) -> Session:
        return self.store.load(session_id)

    def leaderboard(self) -> List[BestEffortRecord]:
        return self.best_efforts.leaderboard()

    # --- Imports ----------------------------------------------------
    def import_track(
        self,
        data: bytes,
        filename: str,
        format_hint: Union[str, TrackFormat, None] = None,
        metadata: Optional[ActivityMetadata] = None,
    ) -> ImportResult:
        """Parse, derive and persist one track file.

        A duplicate of a stored session is reported, not imported.

        Raises:
            MalformedFile, InsufficientPoints, UnsupportedActivityType,
            InvalidNumericValue: the file cannot become a session
        """
        resolved = resolve_format(filename, format_hint, data)
        session, warnings = self._derive(data, filename, resolved, metadata, self.zones.active_config())

        existing = find_duplicate(session.fingerprint(), self.store.fingerprints())
        if existing is not None:
            duplicate = DuplicateSession(filename, existing.session_id)
            logger.info(str(duplicate))
            return ImportResult(session=None, warnings=warnings, duplicate=duplicate)

        session.state = SessionState.PERSISTED
        self.store.save(session)
        self.best_efforts.update_for_session(session)
        logger.info(f"Imported {filename} as session {session.session_id}")
        return ImportResult(session=session, warnings=warnings)

    def bulk_import(
        self,
        files: FileBatch,
        metadata_table: Optional[bytes] = None,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> BulkImportSummary:
        """Import a batch of track files with one commit at the end.

        With a metadata table, only files matched to a Run row are imported
        and the row supplies name, notes, media and shoe. Per-file failures are
        collected in ``errors`` and the batch continues. ``should_continue`` is
        checked between files; sessions derived before a stop are committed.
        """
        items = list(files.items()) if isinstance(files, Mapping) else list(files)
        if len(items) > self.config.max_bulk_files:
            raise ValueError(
                f"Batch of {len(items)} files exceeds the limit of {self.config.max_bulk_files}"
            )

        activities: Optional[Dict[str, ActivityMetadata]] = None
        if metadata_table is not None:
            activities = {a.file_key: a for a in run_activities(parse_activities_csv(metadata_table))}

        summary = BulkImportSummary()
        zones = self.zones.active_config()
        corpus = self.store.fingerprints()
        pending: List[Session] = []

        for filename, data in items:
            if should_continue is not None and not should_continue():
                summary.cancelled = True
                logger.info(f"Bulk import stopped after {summary.processed} files")
                break
            activity = None
            if activities is not None:
                activity = self._match_activity(filename, activities)
                if activity is None:
                    logger.debug(f"No run activity for {filename}, skipping")
                    continue

            summary.processed += 1
            try:
                resolved = resolve_format(filename, None, data)
                session, warnings = self._derive(data, filename, resolved, activity, zones)
            except (TrackError, ValueError, OSError) as e:
                logger.warning(f"Import failed for {filename}: {e}", exc_info=True)
                summary.errors.append(f"{filename}: {e}")
                continue

            summary.warnings.extend(f"{filename}: {w}" for w in warnings)
            existing = find_duplicate(session.fingerprint(), corpus)
            if existing is not None:
                summary.skipped_duplicates += 1
                summary.duplicates.append(DuplicateSession(filename, existing.session_id))
                continue
            corpus.append(session.fingerprint())
            pending.append(session)

        for session in pending:
            session.state = SessionState.PERSISTED
        if pending:
            self.store.save_many(pending)
            for session in pending:
                self.best_efforts.update_for_session(session)
        summary.imported = len(pending)
        summary.session_ids = [s.session_id for s in pending]
        logger.info(
            f"Bulk import: {summary.imported} imported, {summary.skipped_duplicates} duplicates, "
            f"{len(summary.errors)} errors out of {summary.processed} files"
        )
        return summary

    # --- Session edits ----------------------------------------------
    def crop_session(self, session_id: str, start_trim_s: float, end_trim_s: float) -> Session:
        return self.cropper.crop_session(
            session_id, start_trim_s, end_trim_s, self.zones.active_config()
        )

    def restore_session(self, session_id: str) -> Session:
        """Rebuild a session from its stored raw source, undoing any crop.

        The id and the user metadata (name, notes, media, shoe) are kept.
        """
        current = self.store.load(session_id)
        raw = current.raw_source
        track = parse_track(raw.data, ResolvedFormat(raw.format, raw.compressed))
        activity = ActivityMetadata(
            activity_id=current.external_id,
            activity_type="Run",
            name=current.name,
            notes=current.notes,
            filename=raw.filename,
            activity_date=to_utc(current.track.metadata.get(ACTIVITY_DATE_KEY)),
            media_paths=list(current.media_paths),
            shoe_id=current.shoe_id,
            elapsed_s=safe_float_optional(current.track.metadata.get(ACTIVITY_ELAPSED_KEY)),
        )
        zones = self.zones.active_config()
        restored = self.builder.build(track, raw, zones, activity, session_id=session_id)
        if restored.split_length_m != current.split_length_m:
            restored = self.builder.refresh(restored, zones, current.split_length_m)
        restored.state = SessionState.PERSISTED
        self.store.save(restored)
        self.best_efforts.handle_session_changed(restored, lambda: self.store.iter_sessions())
        logger.info(f"Restored session {session_id} from {raw.filename}")
        return restored

    def delete_session(self, session_id: str) -> None:
        self.store.delete(session_id)
        self.best_efforts.handle_session_deleted(session_id, lambda: self.store.iter_sessions())

    # --- Full recalculations ----------------------------------------
    def recalculate_best_efforts(self) -> Dict[str, object]:
        """Rebuild the leaderboard from every stored session."""
        errors: List[str] = []
        with exclusive_recalculation(self.storage, RECALC_NAME) as token:
            count = self.best_efforts.recalculate_all(self.store.iter_sessions(errors), token, errors)
        return {"count": count, "errors": errors}

    def recalculate_relative_effort(self, zone_config: HeartRateZoneConfig) -> Dict[str, object]:
        """Store ``zone_config`` as active and rescore every session with it."""
        errors: List[str] = []
        with exclusive_recalculation(self.storage, RELATIVE_EFFORT_RECALC) as token:
            require_token(token, RELATIVE_EFFORT_RECALC)
            self.zones.save_config(zone_config)
            rescored: List[Session] = []
            for session in self.store.iter_sessions(errors):
                session.relative_effort = score(session.timeseries, zone_config)
                rescored.append(session)
            self.store.update_rows(rescored)
        logger.info(f"Relative effort recalculated for {len(rescored)} sessions")
        return {"updatedCount": len(rescored), "errors": errors}

    def recalculate_splits(self, unit_preference: str) -> Dict[str, object]:
        """Rebuild splits of every session for a new unit preference."""
        length = split_length_for(unit_preference)
        errors: List[str] = []
        with exclusive_recalculation(self.storage, SPLITS_RECALC) as token:
            require_token(token, SPLITS_RECALC)
            self.zones.settings.update(self.zones.profile_id, {"units": unit_preference})
            updated: List[Session] = []
            for session in self.store.iter_sessions(errors):
                splits = build_splits(session_curve(session), length, session.duration_s)
                updated.append(replace(session, splits=splits, split_length_m=length))
            self.store.save_many(updated)
        self.builder.split_length_m = length
        logger.info(f"Splits recalculated for {len(updated)} sessions ({unit_preference})")
        return {"updatedCount": len(updated), "errors": errors}

    # --- Internal helpers -------------------------------------------
    def _derive(
        self,
        data: bytes,
        filename: str,
        resolved: ResolvedFormat,
        activity: Optional[ActivityMetadata],
        zones: Optional[HeartRateZoneConfig],
    ) -> Tuple[Session, List[str]]:
        track = parse_track(data, resolved)
        _check_sport(track)
        raw = RawSource(data=data, format=resolved.format, filename=filename, compressed=resolved.compressed)
        session = self.builder.build(track, raw, zones, activity)
        return session, _track_warnings(track, activity)

    @staticmethod
    def _match_activity(
        filename: str, activities: Dict[str, ActivityMetadata]
    ) -> Optional[ActivityMetadata]:
        key = normalize_path(filename)
        if key in activities:
            return activities[key]
        # archive members may be listed relative to another root
        name = PurePosixPath(key).name
        for file_key, activity in activities.items():
            if PurePosixPath(file_key).name == name:
                return activity
        return None

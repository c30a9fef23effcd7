"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later
"""

from __future__ import annotations

import datetime as dt
import gzip

import pytest

from services.errors import InsufficientPoints, MalformedFile, SessionNotFound, UnsupportedActivityType
from services.models import SessionState
from services.session_service import SessionService
from utils.config import build_config

START = dt.datetime(2025, 3, 1, 7, 30, tzinfo=dt.timezone.utc)

METADATA_HEADER = (
    "Activity ID,Activity Date,Activity Name,Activity Type,Activity Description,"
    "Elapsed Time,Filename,Activity Private Note,Activity Gear,Media\n"
)


@pytest.fixture
def service(cfg, storage):
    return SessionService(cfg, storage)


def _hr(n):
    return [140 + (i % 40) for i in range(n)]


def test_import_gpx_persists_session(service, make_gpx):
    result = service.import_track(make_gpx(301, step_m=5.0, step_s=2.0, heart_rates=_hr(301)), "run.gpx")

    session = result.session
    assert result.duplicate is None
    assert session.state is SessionState.PERSISTED
    assert session.distance_m == pytest.approx(1500.0, abs=0.01)
    assert session.duration_s == 600.0
    assert session.has_timeseries
    assert session.sensors.max_heart_rate == 179
    assert len(session.splits) == 2
    # no zone configuration stored yet
    assert session.relative_effort is None
    assert "Track has no elevation data" in result.warnings

    loaded = service.get_session(session.session_id)
    assert loaded.distance_m == session.distance_m
    assert loaded.raw_source.data == session.raw_source.data
    assert loaded.name == "Morning Run"
    assert {r.distance_label for r in service.leaderboard()} == {"400m", "1/2 mile", "1K"}


def test_import_fit_and_fit_gz(service, make_fit):
    fit = service.import_track(make_fit(200), "watch.fit").session
    assert fit.raw_source.extension == "fit"
    assert fit.sensors.avg_cadence == 85

    later = START + dt.timedelta(days=1)
    gz = service.import_track(gzip.compress(make_fit(200, start=later)), "watch.fit.gz").session
    assert gz.raw_source.extension == "fit.gz"
    assert gz.distance_m == pytest.approx(fit.distance_m)


def test_non_running_fit_is_rejected(service, make_fit):
    with pytest.raises(UnsupportedActivityType):
        service.import_track(make_fit(20, sport="cycling"), "ride.fit")


def test_reimport_is_reported_as_duplicate(service, make_gpx):
    data = make_gpx(50)
    first = service.import_track(data, "a.gpx")
    second = service.import_track(data, "copy.gpx")

    assert second.session is None
    assert second.duplicate.existing_session_id == first.session.session_id
    assert second.duplicate.filename == "copy.gpx"
    assert len(service.store.session_ids()) == 1


def test_format_hint_overrides_extension(service, make_gpx):
    result = service.import_track(make_gpx(10), "upload.bin", format_hint="gpx")
    assert result.session is not None


def test_unknown_file_type(service):
    with pytest.raises(MalformedFile):
        service.import_track(b"hello", "notes.txt")


def test_bulk_import_summary(service, make_gpx, make_fit):
    files = {
        "activities/1.gpx": make_gpx(50, start=START),
        "activities/2.fit.gz": gzip.compress(make_fit(50, start=START + dt.timedelta(days=1))),
        "activities/3.gpx": make_gpx(50, start=START),
        "activities/4.gpx": b"<gpx>",
        "activities/5.gpx": make_gpx(1, start=START + dt.timedelta(days=3)),
    }
    summary = service.bulk_import(files)

    assert summary.processed == 5
    assert summary.imported == 2
    assert summary.skipped_duplicates == 1
    assert summary.duplicates[0].filename == "activities/3.gpx"
    assert len(summary.errors) == 2
    assert summary.errors[0].startswith("activities/4.gpx")
    assert not summary.cancelled
    assert sorted(service.store.session_ids()) == sorted(summary.session_ids)


def test_bulk_import_with_metadata_table(service, make_gpx):
    table = (
        METADATA_HEADER
        + '11,"Mar 1, 2025, 7:30:00 AM",Long run,Run,Easy,,activities/11.gpx,private,shoe-9,media/11.jpg\n'
        + '12,"Mar 2, 2025, 7:30:00 AM",Ride,Ride,,,activities/12.gpx,,,\n'
    ).encode()
    files = [
        ("activities/11.gpx", make_gpx(30)),
        ("activities/12.gpx", make_gpx(30, start=START + dt.timedelta(days=1))),
        ("media/11.jpg", b"\xff\xd8"),
    ]
    summary = service.bulk_import(files, metadata_table=table)

    assert summary.processed == 1
    assert summary.imported == 1
    session = service.get_session(summary.session_ids[0])
    assert session.name == "Long run"
    assert session.notes == "Easy\n\nprivate"
    assert session.shoe_id == "shoe-9"
    assert session.media_paths == ["media/11.jpg"]
    assert session.external_id == "11"


def test_bulk_import_can_be_stopped_between_files(service, make_gpx):
    files = [(f"{i}.gpx", make_gpx(20, start=START + dt.timedelta(days=i))) for i in range(5)]
    calls = []

    def should_continue():
        calls.append(1)
        return len(calls) <= 2

    summary = service.bulk_import(files, should_continue=should_continue)
    assert summary.cancelled
    assert summary.imported == 2
    assert len(service.store.session_ids()) == 2


def test_bulk_import_batch_limit(tmp_path, storage, make_gpx):
    service = SessionService(build_config(tmp_path, max_bulk_files=1), storage)
    with pytest.raises(ValueError):
        service.bulk_import([("a.gpx", make_gpx(5)), ("b.gpx", make_gpx(5))])


def test_recalculate_relative_effort_is_deterministic(service, make_gpx, zones):
    for day in range(3):
        service.import_track(
            make_gpx(121, step_s=1.0, start=START + dt.timedelta(days=day), heart_rates=_hr(121)),
            f"{day}.gpx",
        )
    service.import_track(make_gpx(20, start=START + dt.timedelta(days=5)), "nohr.gpx")

    first = service.recalculate_relative_effort(zones)
    scores = {s.session_id: s.relative_effort for s in service.store.iter_sessions()}
    second = service.recalculate_relative_effort(zones)

    assert first["updatedCount"] == second["updatedCount"] == 4
    assert scores == {s.session_id: s.relative_effort for s in service.store.iter_sessions()}
    assert sorted(v is None for v in scores.values()) == [False, False, False, True]
    assert service.zones.active_config() == zones


def test_recalculate_best_efforts(service, make_gpx):
    service.import_track(make_gpx(121, step_s=3.0), "slow.gpx")
    fast = service.import_track(make_gpx(121, step_s=2.0, start=START + dt.timedelta(days=1)), "fast.gpx")
    service.best_efforts.repo.clear()

    result = service.recalculate_best_efforts()
    assert result["count"] == 3
    assert {r.session_id for r in service.leaderboard()} == {fast.session.session_id}


def test_recalculate_splits_for_imperial(service, make_gpx):
    session = service.import_track(make_gpx(401, step_m=5.0), "run.gpx").session
    assert len(session.splits) == 2

    result = service.recalculate_splits("imperial")
    assert result["updatedCount"] == 1
    reloaded = service.get_session(session.session_id)
    assert reloaded.split_length_m == pytest.approx(1609.344)
    assert len(reloaded.splits) == 2
    assert reloaded.splits[0].distance_m == pytest.approx(1609.344)
    assert reloaded.splits[1].distance_m == pytest.approx(390.656, abs=0.01)


def test_unit_preference_survives_restart(service, cfg, storage, make_gpx):
    service.recalculate_splits("imperial")
    fresh = SessionService(cfg, storage)
    session = fresh.import_track(make_gpx(401, step_m=5.0), "run.gpx").session
    assert session.split_length_m == pytest.approx(1609.344)


def test_delete_session_cascades_to_leaderboard(service, make_gpx):
    slow = service.import_track(make_gpx(121, step_s=3.0), "slow.gpx").session
    fast = service.import_track(make_gpx(121, step_s=2.0, start=START + dt.timedelta(days=1)), "fast.gpx").session

    service.delete_session(fast.session_id)

    assert {r.session_id for r in service.leaderboard()} == {slow.session_id}
    with pytest.raises(SessionNotFound):
        service.get_session(fast.session_id)
    assert not service.storage.exists(f"raw/{fast.session_id}.gpx")


def test_insufficient_points(service, make_gpx):
    with pytest.raises(InsufficientPoints):
        service.import_track(make_gpx(1), "one.gpx")

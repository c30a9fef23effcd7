"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Repository layer for CSV-backed storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from persistence.csv_storage import CsvStorage
from services.models import BestEffortRecord
from utils.ids import new_id


def _ensure_headers(df: pd.DataFrame, headers: List[str]) -> pd.DataFrame:
    for h in headers:
        if h not in df.columns:
            df[h] = pd.Series(dtype="object")
    return df[headers]


@dataclass
class BaseRepo:
    storage: CsvStorage
    file_name: str
    headers: List[str]
    id_column: str
    text_columns: List[str] = field(default_factory=list)

    def list(self, **filters: Any) -> pd.DataFrame:
        dtypes = {col: "str" for col in [self.id_column, *self.text_columns]}
        df = self.storage.read_csv(self.file_name, dtypes=dtypes)
        df = _ensure_headers(df, self.headers)
        for k, v in filters.items():
            if k in df.columns:
                df = df[df[k] == v]
        return df.reset_index(drop=True)

    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        df = self.list()
        hit = df[df[self.id_column].astype(str) == str(entity_id)]
        if hit.empty:
            return None
        return hit.iloc[0].to_dict()

    def create(self, row: Dict[str, Any]) -> str:
        if self.id_column not in row or not row[self.id_column]:
            row[self.id_column] = new_id()
        df = _ensure_headers(pd.DataFrame([row]), self.headers)
        self.storage.append_row(self.file_name, df.iloc[0].to_dict(), self.headers)
        return str(row[self.id_column])

    def update(self, entity_id: str, updates: Dict[str, Any]) -> None:
        row = {self.id_column: entity_id}
        row.update(updates)
        self.storage.upsert(self.file_name, [self.id_column], row)

    def upsert_many(self, rows: List[Dict[str, Any]]) -> None:
        """Insert or replace rows by id in a single write."""
        if not rows:
            return
        df = self.list()
        incoming = _ensure_headers(pd.DataFrame(rows), self.headers)
        incoming[self.id_column] = incoming[self.id_column].astype(str)
        kept = df[~df[self.id_column].astype(str).isin(incoming[self.id_column])]
        merged = incoming if kept.empty else pd.concat([kept, incoming], ignore_index=True)
        self.storage.write_csv(self.file_name, merged)

    def replace_all(self, rows: List[Dict[str, Any]]) -> None:
        df = _ensure_headers(pd.DataFrame(rows), self.headers)
        self.storage.write_csv(self.file_name, df)

    def delete(self, entity_id: str) -> None:
        df = self.list()
        if df.empty:
            return
        df = df[df[self.id_column].astype(str) != str(entity_id)]
        self.storage.write_csv(self.file_name, df)


class SessionsRepo(BaseRepo):
    def __init__(self, storage: CsvStorage):
        super().__init__(
            storage,
            "sessions.csv",
            [
                "sessionId",
                "externalId",
                "name",
                "notes",
                "mediaPaths",
                "shoeId",
                "state",
                "startedAt",
                "durationS",
                "distanceM",
                "avgPaceS",
                "elevGainM",
                "elevLossM",
                "minElevM",
                "maxElevM",
                "maxSpeedMps",
                "avgSpeedMps",
                "avgGradePercent",
                "maxGradePercent",
                "minGradePercent",
                "minLat",
                "minLon",
                "maxLat",
                "maxLon",
                "maxHeartRate",
                "avgHeartRate",
                "minHeartRate",
                "maxCadence",
                "avgCadence",
                "maxPower",
                "avgPower",
                "relativeEffort",
                "splitLengthM",
                "hasTimeseries",
                "rawFileName",
                "rawFormat",
                "rawCompressed",
                "rawPath",
                "rawSha256",
                "metadataJson",
            ],
            id_column="sessionId",
            text_columns=["externalId", "name", "notes", "mediaPaths", "shoeId", "startedAt", "metadataJson"],
        )


class BestEffortsRepo(BaseRepo):
    """Leaderboard: at most one record per standard distance label."""

    def __init__(self, storage: CsvStorage):
        super().__init__(
            storage,
            "best_efforts.csv",
            [
                "distanceLabel",
                "targetDistanceM",
                "achievedTimeS",
                "sessionId",
                "sessionDate",
            ],
            id_column="distanceLabel",
            text_columns=["sessionId", "sessionDate"],
        )

    @staticmethod
    def _to_row(record: BestEffortRecord) -> Dict[str, Any]:
        return {
            "distanceLabel": record.distance_label,
            "targetDistanceM": record.target_distance_m,
            "achievedTimeS": record.achieved_time_s,
            "sessionId": record.session_id,
            "sessionDate": record.session_date,
        }

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> BestEffortRecord:
        return BestEffortRecord(
            distance_label=str(row["distanceLabel"]),
            target_distance_m=float(row["targetDistanceM"]),
            achieved_time_s=float(row["achievedTimeS"]),
            session_id=str(row["sessionId"]),
            session_date="" if pd.isna(row["sessionDate"]) else str(row["sessionDate"]),
        )

    def get_record(self, distance_label: str) -> Optional[BestEffortRecord]:
        row = self.get(distance_label)
        return self._from_row(row) if row else None

    def upsert_record(self, distance_label: str, record: BestEffortRecord) -> None:
        self.update(distance_label, self._to_row(record))

    def records(self) -> List[BestEffortRecord]:
        df = self.list()
        return [self._from_row(row) for row in df.to_dict(orient="records")]

    def replace_records(self, records: List[BestEffortRecord]) -> None:
        self.replace_all([self._to_row(r) for r in records])

    def clear(self) -> None:
        self.replace_all([])


class SettingsRepo(BaseRepo):
    def __init__(self, storage: CsvStorage):
        super().__init__(
            storage,
            "settings.csv",
            [
                "profileId",
                "units",
                "hrZonesJson",
            ],
            id_column="profileId",
            text_columns=["units", "hrZonesJson"],
        )

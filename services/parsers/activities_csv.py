"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Parser for the tabular activities export (one metadata row per activity).

Rows carry activity-level metadata and the relative path of the track file;
they never carry point geometry.
"""

from __future__ import annotations

import datetime as dt
import io
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import List, Optional

import pandas as pd
from pandas.errors import EmptyDataError, ParserError
from streamlit.logger import get_logger

from services.errors import MalformedFile
from utils.coercion import safe_float_optional
from utils.time import to_utc

logger = get_logger(__name__)

REQUIRED_COLUMNS = [
    "Activity ID",
    "Activity Date",
    "Activity Name",
    "Activity Type",
    "Activity Description",
    "Filename",
    "Activity Private Note",
]

RUN_TYPE = "run"
_MEDIA_SEPARATORS = re.compile(r"[,|]")


@dataclass(frozen=True)
class ActivityMetadata:
    activity_id: str
    activity_type: str
    name: str = ""
    notes: str = ""
    filename: str = ""
    activity_date: Optional[dt.datetime] = None
    media_paths: List[str] = field(default_factory=list)
    shoe_id: str = ""
    elapsed_s: Optional[float] = None

    @property
    def is_run(self) -> bool:
        return self.activity_type.strip().lower() == RUN_TYPE

    @property
    def file_key(self) -> str:
        """Normalized track path used to match archive members."""
        return normalize_path(self.filename)


def normalize_path(path: str) -> str:
    return str(PurePosixPath(path.strip().replace("\\", "/"))).lstrip("./").lower()


def _notes(description: str, private_note: str) -> str:
    parts = [p.strip() for p in (description, private_note) if p and p.strip()]
    return "\n\n".join(parts)


def _media(raw: str) -> List[str]:
    return [p.strip() for p in _MEDIA_SEPARATORS.split(raw or "") if p.strip()]


def parse_activities_csv(data: bytes) -> List[ActivityMetadata]:
    """Parse every row of an activities export.

    Raises:
        MalformedFile: unreadable CSV or missing required columns
    """
    try:
        df = pd.read_csv(io.BytesIO(data), dtype=str, keep_default_na=False)
    except (EmptyDataError, ParserError, UnicodeDecodeError) as e:
        raise MalformedFile(f"Invalid activities CSV: {e}") from e

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise MalformedFile(f"Activities CSV missing columns: {', '.join(missing)}")

    activities: List[ActivityMetadata] = []
    for row in df.to_dict(orient="records"):
        activities.append(
            ActivityMetadata(
                activity_id=row["Activity ID"].strip(),
                activity_type=row["Activity Type"],
                name=row["Activity Name"].strip(),
                notes=_notes(row["Activity Description"], row["Activity Private Note"]),
                filename=row["Filename"].strip(),
                activity_date=to_utc(row["Activity Date"]),
                media_paths=_media(row.get("Media", "")),
                shoe_id=row.get("Activity Gear", "").strip(),
                elapsed_s=safe_float_optional(row.get("Elapsed Time")),
            )
        )
    logger.debug(f"Parsed activities CSV: {len(activities)} rows")
    return activities


def run_activities(activities: List[ActivityMetadata]) -> List[ActivityMetadata]:
    """Rows of type Run (case-insensitive) that point to a track file."""
    runs = [a for a in activities if a.is_run and a.filename]
    logger.info(f"{len(runs)} run activities out of {len(activities)} rows")
    return runs

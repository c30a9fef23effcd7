"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Time helpers: UTC normalization and formatting.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Optional

import pandas as pd


def to_utc(value: Any) -> Optional[dt.datetime]:
    """Return an aware UTC datetime, or None for empty/unparsable input.

    Naive values are assumed to already be UTC.
    """
    if value is None or (isinstance(value, float) and pd.isna(value)) or value == "":
        return None
    ts = pd.to_datetime(value, errors="coerce", utc=True)
    if ts is None or pd.isna(ts):
        return None
    return ts.to_pydatetime()


def truncate_to_second(value: dt.datetime) -> dt.datetime:
    return value.replace(microsecond=0)


def to_iso(value: Optional[dt.datetime]) -> str:
    if value is None:
        return ""
    return value.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def to_date_str(value: Optional[dt.datetime]) -> str:
    """yyyy-mm-dd of a UTC datetime."""
    if value is None:
        return ""
    return value.astimezone(dt.timezone.utc).strftime("%Y-%m-%d")

"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Configuration loading utilities.

Loads environment variables from `.env`, validates numeric settings and ensures
data directories exist.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv, find_dotenv
from streamlit.logger import get_logger

from config import SPLIT_LENGTHS_M

logger = get_logger(__name__)


@dataclass(frozen=True)
class Config:
    data_dir: Path
    raw_dir: Path
    tracks_dir: Path
    timeseries_dir: Path
    splits_dir: Path
    elevation_noise_threshold_m: float = 2.0
    elevation_min_distance_m: float = 10.0
    unit_preference: str = "metric"
    max_bulk_files: int = 500

    @property
    def split_length_m(self) -> float:
        return SPLIT_LENGTHS_M[self.unit_preference]


def _ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except (ValueError, TypeError):
        logger.warning(f"Invalid {name}={raw!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except (ValueError, TypeError):
        logger.warning(f"Invalid {name}={raw!r}, using {default}")
        return default


def build_config(data_dir: Path, **overrides) -> Config:
    """Build a Config rooted at ``data_dir`` and provision its directories."""
    data_dir = Path(data_dir)
    cfg = Config(
        data_dir=data_dir,
        raw_dir=data_dir / "raw",
        tracks_dir=data_dir / "tracks",
        timeseries_dir=data_dir / "timeseries",
        splits_dir=data_dir / "splits",
        **overrides,
    )
    for path in (cfg.data_dir, cfg.raw_dir, cfg.tracks_dir, cfg.timeseries_dir, cfg.splits_dir):
        _ensure_dir(path)
    return cfg


def load_config() -> Config:
    """Load configuration from environment and provision directories."""
    load_dotenv(find_dotenv(), override=True)

    data_dir_str = os.getenv("DATA_DIR", "./data")
    data_dir = Path(data_dir_str).expanduser().resolve()

    unit_preference = os.getenv("UNIT_PREFERENCE", "metric").strip().lower()
    if unit_preference not in SPLIT_LENGTHS_M:
        logger.warning(f"Unknown UNIT_PREFERENCE={unit_preference!r}, using metric")
        unit_preference = "metric"

    logger.debug(f"DATA_DIR: {data_dir}")
    return build_config(
        data_dir,
        elevation_noise_threshold_m=_env_float("ELEVATION_NOISE_THRESHOLD_M", 2.0),
        elevation_min_distance_m=_env_float("ELEVATION_MIN_DISTANCE_M", 10.0),
        unit_preference=unit_preference,
        max_bulk_files=_env_int("MAX_BULK_FILES", 500),
    )

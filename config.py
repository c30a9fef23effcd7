"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later
"""

from __future__ import annotations

EARTH_RADIUS_M = 6_371_000.0

# FIT positions are 32-bit signed semicircles
SEMICIRCLE_TO_DEGREES = 180.0 / 2**31

# Standard best-effort targets, ordered by distance (label, metres)
STANDARD_DISTANCES = [
    ("400m", 400.0),
    ("1/2 mile", 804.672),
    ("1K", 1000.0),
    ("1 mile", 1609.344),
    ("2 mile", 3218.688),
    ("5K", 5000.0),
    ("10K", 10000.0),
    ("15K", 15000.0),
    ("10 mile", 16093.44),
    ("20K", 20000.0),
    ("Half-Marathon", 21097.5),
    ("30K", 30000.0),
    ("Marathon", 42195.0),
]

SPLIT_LENGTHS_M = {
    "metric": 1000.0,
    "imperial": 1609.344,
}

# Relative effort points per minute spent in zones 1..5
ZONE_WEIGHTS = [1.0, 2.0, 3.0, 4.0, 5.0]
# Larger sample gaps are treated as a pause and count for one second
MAX_EFFORT_SAMPLE_GAP_S = 10.0

GRADE_LIMIT_PERCENT = 100.0
VERTICAL_SPEED_LIMIT_MPS = 50.0

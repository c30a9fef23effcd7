"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from services.relative_effort_service import score, time_in_zones


def _ts(hr, step_s=1.0):
    return pd.DataFrame(
        {"elapsedSeconds": np.arange(len(hr)) * step_s, "heartRateBpm": np.array(hr, dtype=float)}
    )


def test_one_minute_in_each_zone(zones):
    hr = [110] * 60 + [130] * 60 + [150] * 60 + [170] * 60 + [190] * 60
    assert time_in_zones(_ts(hr), zones) == [60.0, 60.0, 60.0, 60.0, 60.0]
    # 1 + 2 + 3 + 4 + 5 points
    assert score(_ts(hr), zones) == 15


def test_score_is_deterministic(zones):
    rng = np.random.default_rng(3)
    ts = _ts(rng.uniform(90, 210, 1800))
    assert score(ts, zones) == score(ts.copy(), zones)


def test_no_heart_rate_gives_none(zones):
    ts = pd.DataFrame({"elapsedSeconds": [0.0, 1.0], "heartRateBpm": [np.nan, np.nan]})
    assert score(ts, zones) is None
    assert score(None, zones) is None
    assert score(pd.DataFrame({"elapsedSeconds": [0.0, 1.0]}), zones) is None


def test_pauses_count_as_one_second(zones):
    # samples 5 s apart count fully; the 600 s pause counts as 1 s
    ts = pd.DataFrame(
        {"elapsedSeconds": [0.0, 5.0, 10.0, 610.0], "heartRateBpm": [150.0, 150.0, 150.0, 150.0]}
    )
    assert time_in_zones(ts, zones)[2] == 5.0 + 5.0 + 1.0 + 1.0


def test_out_of_range_heart_rate_clamps_to_edge_zones(zones):
    ts = _ts([60] * 60 + [220] * 60)
    seconds = time_in_zones(ts, zones)
    assert seconds[0] == 60.0
    assert seconds[4] == 60.0

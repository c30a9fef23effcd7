"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Best efforts: fastest contiguous window per standard distance, and the
leaderboard that keeps one record per distance across all sessions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from streamlit.logger import get_logger

from config import STANDARD_DISTANCES
from persistence.locks import RecalculationToken, require_token
from persistence.repositories import BestEffortsRepo
from services.models import BestEffortRecord, Session
from services.timeseries_service import session_curve
from utils.time import to_date_str

logger = get_logger(__name__)

RECALC_NAME = "best_efforts"
LEADERBOARD_LOCK = "best_efforts"


def _curve_arrays(curve: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray]:
    if curve is None or curve.empty:
        return np.zeros(0), np.zeros(0)
    d = pd.to_numeric(curve.get("distanceM"), errors="coerce")
    t = pd.to_numeric(curve.get("elapsedSeconds"), errors="coerce")
    mask = d.notna() & t.notna()
    return d[mask].to_numpy(dtype=float), t[mask].to_numpy(dtype=float)


def best_times(
    distances: np.ndarray,
    times: np.ndarray,
    targets: Sequence[Tuple[str, float]] = STANDARD_DISTANCES,
) -> Dict[str, float]:
    """Minimum time to cover each target distance over a monotonic curve.

    Windows start at a sample and end at the exact target distance, with the
    end time interpolated between the bracketing samples. One right pointer per
    target only moves forward as the left pointer advances. Targets longer than
    the curve yield no entry.
    """
    n = len(distances)
    if n < 2:
        return {}
    total = distances[-1] - distances[0]
    active = [(label, target) for label, target in targets if target <= total]
    right = [1] * len(active)
    best: Dict[str, float] = {}

    for i in range(n - 1):
        start_d = distances[i]
        start_t = times[i]
        for k, (label, target) in enumerate(active):
            goal = start_d + target
            j = max(right[k], i + 1)
            while j < n and distances[j] < goal:
                j += 1
            right[k] = j
            if j >= n:
                continue
            d0, d1 = distances[j - 1], distances[j]
            t0, t1 = times[j - 1], times[j]
            if d1 == goal or d1 == d0:
                end_t = t1
            else:
                end_t = t0 + (goal - d0) / (d1 - d0) * (t1 - t0)
            elapsed = end_t - start_t
            if elapsed > 0 and (label not in best or elapsed < best[label]):
                best[label] = float(elapsed)
    return best


def session_candidates(
    session: Session, targets: Sequence[Tuple[str, float]] = STANDARD_DISTANCES
) -> List[BestEffortRecord]:
    """Best-effort candidates of one session.

    Uses the time series, or the timestamped route points when the session has
    no sensor stream.
    """
    distances, times = _curve_arrays(session_curve(session))
    found = best_times(distances, times, targets)
    lengths = dict(targets)
    date = to_date_str(session.started_at)
    return [
        BestEffortRecord(
            distance_label=label,
            target_distance_m=lengths[label],
            achieved_time_s=time_s,
            session_id=session.session_id,
            session_date=date,
        )
        for label, time_s in found.items()
    ]


def _merge(board: Dict[str, BestEffortRecord], candidates: Iterable[BestEffortRecord]) -> List[str]:
    """Apply strictly-faster candidates to ``board``; return updated labels."""
    updated = []
    for candidate in candidates:
        current = board.get(candidate.distance_label)
        if current is None or candidate.achieved_time_s < current.achieved_time_s:
            board[candidate.distance_label] = candidate
            updated.append(candidate.distance_label)
    return updated


def _ordered_board(board: Dict[str, BestEffortRecord]) -> List[BestEffortRecord]:
    order = {label: i for i, (label, _) in enumerate(STANDARD_DISTANCES)}
    return sorted(board.values(), key=lambda r: order.get(r.distance_label, len(order)))


@dataclass
class BestEffortService:
    repo: BestEffortsRepo
    targets: Sequence[Tuple[str, float]] = field(default_factory=lambda: list(STANDARD_DISTANCES))

    # ------------------------------------------------------------------
    # Public API
    def leaderboard(self) -> List[BestEffortRecord]:
        return _ordered_board({r.distance_label: r for r in self.repo.records()})

    def update_for_session(self, session: Session) -> List[str]:
        """Offer one session's candidates to the leaderboard.

        Each entry is replaced only by a strictly faster time. Updates are
        serialized on the leaderboard lock.
        """
        candidates = session_candidates(session, self.targets)
        if not candidates:
            return []
        updated: List[str] = []
        with self.repo.storage.exclusive(LEADERBOARD_LOCK):
            for candidate in candidates:
                current = self.repo.get_record(candidate.distance_label)
                if current is None or candidate.achieved_time_s < current.achieved_time_s:
                    self.repo.upsert_record(candidate.distance_label, candidate)
                    updated.append(candidate.distance_label)
        if updated:
            logger.info(f"Session {session.session_id} set best efforts: {', '.join(updated)}")
        return updated

    def recalculate_all(
        self,
        sessions: Iterable[Session],
        token: RecalculationToken,
        errors: Optional[List[str]] = None,
    ) -> int:
        """Discard the leaderboard and rebuild it from ``sessions``.

        Sessions should come in start-time order so ties keep the earlier
        session. A failing session is logged and skipped. Returns the number of
        records written.

        The leaderboard lock is held from the scan to the write, so updates
        from concurrent imports land after the rebuild.
        """
        require_token(token, RECALC_NAME)
        with self.repo.storage.exclusive(LEADERBOARD_LOCK):
            board = self._scan(sessions, errors)
            self.repo.replace_records(_ordered_board(board))
        logger.info(f"Best efforts recalculated: {len(board)} records")
        return len(board)

    def handle_session_deleted(
        self, session_id: str, remaining: Callable[[], Iterable[Session]]
    ) -> List[str]:
        """Recompute the entries that pointed at a deleted session."""
        with self.repo.storage.exclusive(LEADERBOARD_LOCK):
            records = self.repo.records()
            orphaned = {r.distance_label for r in records if r.session_id == str(session_id)}
            if not orphaned:
                return []
            board = {r.distance_label: r for r in records if r.distance_label not in orphaned}
            targets = [(label, d) for label, d in self.targets if label in orphaned]
            replacement = self._scan(remaining(), None, targets)
            board.update(replacement)
            self.repo.replace_records(_ordered_board(board))
        logger.info(f"Recomputed best efforts after deleting {session_id}: {sorted(orphaned)}")
        return sorted(orphaned)

    def handle_session_changed(
        self, session: Session, all_sessions: Callable[[], Iterable[Session]]
    ) -> List[str]:
        """Refresh the leaderboard after a session's samples changed.

        Entries held by the session may now be slower or gone, so they are
        rebuilt from every stored session; the session's new candidates are
        then offered like a fresh import.
        """
        with self.repo.storage.exclusive(LEADERBOARD_LOCK):
            records = self.repo.records()
            held = {r.distance_label for r in records if r.session_id == session.session_id}
            if held:
                board = {r.distance_label: r for r in records if r.distance_label not in held}
                targets = [(label, d) for label, d in self.targets if label in held]
                board.update(self._scan(all_sessions(), None, targets))
                self.repo.replace_records(_ordered_board(board))
                logger.info(f"Rebuilt best efforts held by {session.session_id}: {sorted(held)}")
        return sorted(held | set(self.update_for_session(session)))

    # ------------------------------------------------------------------
    # Internal helpers
    def _scan(
        self,
        sessions: Iterable[Session],
        errors: Optional[List[str]],
        targets: Optional[Sequence[Tuple[str, float]]] = None,
    ) -> Dict[str, BestEffortRecord]:
        board: Dict[str, BestEffortRecord] = {}
        for session in sessions:
            try:
                _merge(board, session_candidates(session, targets or self.targets))
            except (ValueError, TypeError, KeyError) as e:
                logger.warning(f"Best efforts skipped session {session.session_id}: {e}", exc_info=True)
                if errors is not None:
                    errors.append(f"{session.session_id}: {e}")
        return board

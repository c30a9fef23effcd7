"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Exclusive-access tokens for full-corpus recalculations.

Only one full recalculation of a given kind may run at a time, across
processes sharing the data directory. The caller acquires a token and passes it
to the recalculation, which refuses to run without a live token.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

import portalocker
from streamlit.logger import get_logger

from persistence.csv_storage import CsvStorage
from services.errors import RecalculationInProgress
from utils.ids import new_id

logger = get_logger(__name__)


class RecalculationToken:
    def __init__(self, name: str):
        self.name = name
        self.token_id = new_id()
        self.active = True

    def __repr__(self) -> str:
        state = "active" if self.active else "released"
        return f"RecalculationToken({self.name!r}, {state})"


def require_token(token: Optional[RecalculationToken], name: str) -> None:
    if token is None or not token.active or token.name != name:
        raise ValueError(f"A live '{name}' recalculation token is required")


@contextmanager
def exclusive_recalculation(storage: CsvStorage, name: str) -> Iterator[RecalculationToken]:
    """Acquire the ``name`` recalculation token or raise RecalculationInProgress."""
    lock_path = storage.base_dir / f"{name}.recalc.lock"
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock = portalocker.Lock(str(lock_path), mode="a", timeout=0, fail_when_locked=True)
    try:
        lock.acquire()
    except portalocker.AlreadyLocked as e:
        raise RecalculationInProgress(f"A '{name}' recalculation is already running") from e
    token = RecalculationToken(name)
    logger.info(f"Acquired {token}")
    try:
        yield token
    finally:
        token.active = False
        lock.release()
        logger.info(f"Released {token}")

"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

CSV storage abstraction using pandas with basic file locking.

Notes:
- Always write CSV with '.' decimal.
- Ensure headers exist for empty file creation.
- Raw source files are stored as bytes next to the CSV tables.
"""

from __future__ import annotations

import io
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

import pandas as pd
from pandas.errors import EmptyDataError
import portalocker


@dataclass
class CsvStorage:
    base_dir: Path

    def _path(self, relative: str | Path) -> Path:
        p = self.base_dir / Path(relative)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p

    def exists(self, relative: str | Path) -> bool:
        return (self.base_dir / Path(relative)).exists()

    def read_csv(
        self, relative: str | Path, dtypes: Optional[Dict[str, str]] = None
    ) -> pd.DataFrame:
        path = self._path(relative)
        if not path.exists():
            if dtypes:
                return pd.DataFrame(columns=list(dtypes.keys())).astype(dtypes)
            return pd.DataFrame()
        with portalocker.Lock(str(path), mode="r", timeout=10, flags=portalocker.LOCK_SH):
            try:
                df = pd.read_csv(path, dtype=dtypes, float_precision="round_trip")
            except EmptyDataError:
                if dtypes:
                    return pd.DataFrame(columns=list(dtypes.keys())).astype(dtypes)
                return pd.DataFrame()
        if dtypes:
            for col, typ in dtypes.items():
                if col not in df.columns:
                    df[col] = pd.Series(dtype=typ)
        return df

    def write_csv(self, relative: str | Path, df: pd.DataFrame) -> None:
        path = self._path(relative)
        # Use a temp buffer then write under exclusive lock
        csv_buf = io.StringIO()
        df.to_csv(csv_buf, index=False)
        data = csv_buf.getvalue()
        with portalocker.Lock(str(path), mode="a", timeout=10, flags=portalocker.LOCK_EX):
            path.write_text(data)

    def append_row(
        self, relative: str | Path, row: Dict[str, object], columns: Iterable[str]
    ) -> None:
        path = self._path(relative)
        with portalocker.Lock(str(path), mode="a", timeout=10, flags=portalocker.LOCK_EX):
            empty = path.stat().st_size == 0
            df = pd.DataFrame([row], columns=list(columns))
            df.to_csv(path, mode="a", index=False, header=empty)

    def upsert(self, relative: str | Path, key_cols: List[str], row: Dict[str, object]) -> None:
        df = self.read_csv(relative, dtypes={k: "str" for k in key_cols})
        if df.empty:
            self.write_csv(relative, pd.DataFrame([row]))
            return
        mask = pd.Series([True] * len(df))
        for key in key_cols:
            mask &= df[key].astype(str) == str(row[key])
        if mask.any():
            idx = df.index[mask][0]
            for k, v in row.items():
                if k not in df.columns:
                    df[k] = None
                df[k] = df[k].astype(object)
                df.at[idx, k] = v
        else:
            df = pd.concat([df, pd.DataFrame([row])], ignore_index=True)
        self.write_csv(relative, df)

    def delete(self, relative: str | Path) -> None:
        (self.base_dir / Path(relative)).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Raw files
    def write_bytes(self, relative: str | Path, data: bytes) -> None:
        path = self._path(relative)
        with portalocker.Lock(str(path), mode="ab", timeout=10, flags=portalocker.LOCK_EX):
            path.write_bytes(data)

    def read_bytes(self, relative: str | Path) -> bytes:
        path = self.base_dir / Path(relative)
        with portalocker.Lock(str(path), mode="rb", timeout=10, flags=portalocker.LOCK_SH):
            return path.read_bytes()

    @contextmanager
    def exclusive(self, name: str) -> Iterator[None]:
        """Hold an exclusive lock file for a read-modify-write sequence."""
        lock_path = self._path(f"{name}.lock")
        with portalocker.Lock(str(lock_path), mode="a", timeout=10, flags=portalocker.LOCK_EX):
            yield

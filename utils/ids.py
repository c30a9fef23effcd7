"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

ID helpers.
"""

from __future__ import annotations

import hashlib
import uuid


def new_id() -> str:
    return str(uuid.uuid4())


def content_digest(data: bytes) -> str:
    """Hex SHA-256 of raw file content, stored alongside the raw source."""
    return hashlib.sha256(data).hexdigest()

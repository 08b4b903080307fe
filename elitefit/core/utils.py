"""
Ids and time.

Everything that needs "now" takes a Clock so tests can move time by hand
instead of sleeping.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable


Clock = Callable[[], datetime]


def generate_id(prefix: str = "") -> str:
    """
    Short random id, e.g. "cli_3f9a0c1be27d".

    Prefixes in use: "cli" (members), "oauth" (CSRF state).
    """
    uid = uuid.uuid4().hex[:12]
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Timezone-aware current time; the default Clock."""
    return datetime.now(timezone.utc)

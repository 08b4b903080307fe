"""
Failed-login lockout.

Counts consecutive failed password checks per principal. At the threshold
the account is locked for a fixed window. The lock does not reset the
counter: once the window passes, the next failure locks again straight
away. Only a successful login clears the record.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from elitefit.config import Settings, get_settings
from elitefit.core.utils import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutRecord:
    """Failure counter and lock for one principal."""
    principal_id: str
    failed_attempts: int = 0
    locked_until: datetime | None = None
    last_failure_at: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now


class LockoutTracker:
    """Thread-safe per-principal failure table."""

    def __init__(
        self,
        max_attempts: int = 5,
        lock_duration: timedelta = timedelta(minutes=30),
        clock: Clock = utc_now,
    ):
        self.max_attempts = max_attempts
        self.lock_duration = lock_duration
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, LockoutRecord] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None, clock: Clock = utc_now) -> LockoutTracker:
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.lockout_max_attempts,
            lock_duration=timedelta(minutes=settings.lockout_duration_minutes),
            clock=clock,
        )

    async def get(self, principal_id: str) -> LockoutRecord:
        with self._lock:
            return self._records.get(principal_id) or LockoutRecord(principal_id)

    async def record_failure(self, principal_id: str) -> LockoutRecord:
        """Count a failed attempt; lock once the threshold is reached."""
        now = self._clock()
        with self._lock:
            record = self._records.get(principal_id) or LockoutRecord(principal_id)
            attempts = record.failed_attempts + 1
            locked_until = record.locked_until
            if attempts >= self.max_attempts:
                locked_until = now + self.lock_duration
            record = replace(
                record,
                failed_attempts=attempts,
                locked_until=locked_until,
                last_failure_at=now,
            )
            self._records[principal_id] = record

        if attempts >= self.max_attempts:
            logger.warning(
                f"Principal {principal_id} locked until {locked_until.isoformat()} "
                f"after {attempts} failed attempts"
            )
        return record

    async def record_success(self, principal_id: str) -> LockoutRecord:
        """Clear the counter and any lock."""
        with self._lock:
            self._records.pop(principal_id, None)
        return LockoutRecord(principal_id)

    async def is_locked(self, principal_id: str, now: datetime | None = None) -> bool:
        now = now or self._clock()
        with self._lock:
            record = self._records.get(principal_id)
        return record is not None and record.is_locked(now)

    async def purge_stale(self, now: datetime | None = None) -> int:
        """
        Drop records that are not locked and have been quiet for a full
        lock window. Returns how many were dropped.
        """
        now = now or self._clock()
        cutoff = now - self.lock_duration
        with self._lock:
            stale = [
                pid for pid, record in self._records.items()
                if not record.is_locked(now)
                and max(filter(None, (record.last_failure_at, record.locked_until))) < cutoff
            ]
            for pid in stale:
                del self._records[pid]
        if stale:
            logger.info(f"Purged {len(stale)} stale lockout records")
        return len(stale)

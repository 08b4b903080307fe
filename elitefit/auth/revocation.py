"""
Revoked-token registry.

A denylist of token ids (jti) that were invalidated before their natural
expiry. Entries are kept until the token itself would have expired, and
never a moment less: dropping an entry early would make a revoked token
valid again.

Two implementations share one interface so the registry can live in
process memory or in a shared cache without touching call sites.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from elitefit.core.utils import Clock, utc_now
from elitefit.storage.base import CacheStorage

logger = logging.getLogger(__name__)


class RevocationRegistry(ABC):
    """Tracks revoked token ids until their expiry."""

    @abstractmethod
    async def revoke(self, jti: str, expires_at: datetime) -> None:
        """Revoke a token id. Idempotent."""
        pass

    @abstractmethod
    async def is_revoked(self, jti: str) -> bool:
        """Is this token id revoked?"""
        pass

    @abstractmethod
    async def purge_expired(self, now: datetime | None = None) -> int:
        """Drop entries whose expiry has passed. Returns how many were dropped."""
        pass


class InMemoryRevocationRegistry(RevocationRegistry):
    """Process-local registry. Thread-safe."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, datetime] = {}  # jti -> expires_at

    async def revoke(self, jti: str, expires_at: datetime) -> None:
        with self._lock:
            current = self._entries.get(jti)
            if current is None or expires_at > current:
                self._entries[jti] = expires_at
        logger.info(f"Token {jti} revoked until {expires_at.isoformat()}")

    async def is_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self._entries

    async def purge_expired(self, now: datetime | None = None) -> int:
        now = now or self._clock()
        with self._lock:
            expired = [jti for jti, expires_at in self._entries.items() if expires_at < now]
            for jti in expired:
                del self._entries[jti]
        if expired:
            logger.info(f"Purged {len(expired)} expired revocation entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheRevocationRegistry(RevocationRegistry):
    """
    Registry stored in a CacheStorage (Redis in production).

    Each entry is written with a TTL equal to the token's remaining
    lifetime, so the cache expires it on its own; purge_expired has
    nothing to do.
    """

    KEY_PREFIX = "revoked:"

    def __init__(self, cache: CacheStorage, clock: Clock = utc_now):
        self.cache = cache
        self._clock = clock

    async def revoke(self, jti: str, expires_at: datetime) -> None:
        remaining = int((expires_at - self._clock()).total_seconds()) + 1
        if remaining <= 0:
            return  # Token already expired; nothing to deny
        await self.cache.set(self.KEY_PREFIX + jti, expires_at.isoformat(), ttl=remaining)
        logger.info(f"Token {jti} revoked until {expires_at.isoformat()}")

    async def is_revoked(self, jti: str) -> bool:
        return await self.cache.exists(self.KEY_PREFIX + jti)

    async def purge_expired(self, now: datetime | None = None) -> int:
        return 0

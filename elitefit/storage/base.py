"""
Storage abstraction layer.

The auth core never touches a database directly. Principal records come
from a PrincipalStore and shared short-lived state can sit in a
CacheStorage, so production backends (PostgreSQL, Redis) can be swapped in
without changing the service code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from elitefit.core.models import Principal, PrincipalKind


class StorageError(Exception):
    """A storage backend failed."""
    pass


class DuplicatePrincipalError(StorageError):
    """A create or update would break an email or identity uniqueness rule."""
    pass


# =============================================================================
# Storage Interfaces
# =============================================================================


class PrincipalStore(ABC):
    """
    Storage for principal records.
    
    All methods work by value: callers get copies and hand back the full
    record to update. Implementations must enforce two uniqueness rules
    atomically, raising DuplicatePrincipalError on conflict:
    - email (case-insensitive) per principal kind
    - (provider, external_id) across all principals
    """
    
    @abstractmethod
    async def find_by_id(self, principal_id: str) -> Principal | None:
        """Get a principal by ID."""
        pass
    
    @abstractmethod
    async def find_by_email(self, email: str, kind: PrincipalKind) -> Principal | None:
        """Get a principal of the given kind by email."""
        pass
    
    @abstractmethod
    async def find_by_external_id(self, provider: str, external_id: str) -> Principal | None:
        """Get the principal bound to an external identity."""
        pass
    
    @abstractmethod
    async def create(self, principal: Principal) -> Principal:
        """Insert a new principal, return the stored record."""
        pass
    
    @abstractmethod
    async def update(self, principal: Principal) -> Principal:
        """Replace a principal record, return the stored record."""
        pass


class CacheStorage(ABC):
    """
    Fast key-value cache for short-lived shared state.
    
    Production Implementation: Redis
    Local Implementation: In-memory dict
    """
    
    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set a value with optional TTL in seconds."""
        pass
    
    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a value."""
        pass
    
    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key."""
        pass
    
    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if key exists."""
        pass
    
    async def purge_expired(self) -> int:
        """Drop expired keys. Backends with native expiry (Redis) have nothing to do."""
        return 0

"""
Local storage implementations for development.

These are in-memory implementations that work without any external
services. Both are safe to share between threads.
"""

from __future__ import annotations

import threading
from typing import Any

from elitefit.core.models import Principal, PrincipalKind
from elitefit.core.utils import Clock, utc_now
from elitefit.storage.base import (
    CacheStorage,
    DuplicatePrincipalError,
    PrincipalStore,
    StorageError,
)


# =============================================================================
# In-Memory Principal Storage
# =============================================================================


class InMemoryPrincipalStore(PrincipalStore):
    """In-memory principal storage with unique email and identity indexes."""
    
    def __init__(self):
        self._lock = threading.RLock()
        self._principals: dict[str, Principal] = {}
        self._by_email: dict[tuple[PrincipalKind, str], str] = {}  # (kind, email) -> id
        self._by_identity: dict[tuple[str, str], str] = {}  # (provider, external_id) -> id
    
    async def find_by_id(self, principal_id: str) -> Principal | None:
        with self._lock:
            principal = self._principals.get(principal_id)
            return principal.model_copy(deep=True) if principal else None
    
    async def find_by_email(self, email: str, kind: PrincipalKind) -> Principal | None:
        with self._lock:
            principal_id = self._by_email.get((kind, email.strip().lower()))
            return await self.find_by_id(principal_id) if principal_id else None
    
    async def find_by_external_id(self, provider: str, external_id: str) -> Principal | None:
        with self._lock:
            principal_id = self._by_identity.get((provider, external_id))
            return await self.find_by_id(principal_id) if principal_id else None
    
    async def create(self, principal: Principal) -> Principal:
        with self._lock:
            if principal.id in self._principals:
                raise DuplicatePrincipalError(f"Principal {principal.id} already exists")
            self._check_unique(principal)
            self._store(principal)
            return principal.model_copy(deep=True)
    
    async def update(self, principal: Principal) -> Principal:
        with self._lock:
            if principal.id not in self._principals:
                raise StorageError(f"Principal {principal.id} not found")
            self._check_unique(principal)
            self._unindex(self._principals[principal.id])
            principal = principal.model_copy(update={"updated_at": utc_now()})
            self._store(principal)
            return principal.model_copy(deep=True)
    
    def _check_unique(self, principal: Principal) -> None:
        owner = self._by_email.get((principal.kind, principal.email))
        if owner and owner != principal.id:
            raise DuplicatePrincipalError(f"Email already registered: {principal.email}")
        for binding in principal.identities:
            owner = self._by_identity.get((binding.provider, binding.external_id))
            if owner and owner != principal.id:
                raise DuplicatePrincipalError(
                    f"{binding.provider} identity already linked to another account"
                )
    
    def _store(self, principal: Principal) -> None:
        stored = principal.model_copy(deep=True)
        self._principals[stored.id] = stored
        self._by_email[(stored.kind, stored.email)] = stored.id
        for binding in stored.identities:
            self._by_identity[(binding.provider, binding.external_id)] = stored.id
    
    def _unindex(self, principal: Principal) -> None:
        self._by_email.pop((principal.kind, principal.email), None)
        for binding in principal.identities:
            self._by_identity.pop((binding.provider, binding.external_id), None)


# =============================================================================
# In-Memory Cache Storage
# =============================================================================


class InMemoryCacheStorage(CacheStorage):
    """In-memory cache for development."""
    
    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[Any, float | None]] = {}
    
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        expires_at = None
        if ttl:
            expires_at = self._clock().timestamp() + ttl
        with self._lock:
            self._cache[key] = (value, expires_at)
    
    async def get(self, key: str) -> Any | None:
        with self._lock:
            if key not in self._cache:
                return None
            
            value, expires_at = self._cache[key]
            if expires_at and self._clock().timestamp() > expires_at:
                del self._cache[key]
                return None
            
            return value
    
    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None
    
    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None
    
    async def purge_expired(self) -> int:
        now = self._clock().timestamp()
        with self._lock:
            expired = [
                key for key, (_, expires_at) in self._cache.items()
                if expires_at and now > expires_at
            ]
            for key in expired:
                del self._cache[key]
        return len(expired)

"""
Storage abstractions.

Production Integration Points:
- PrincipalStore → PostgreSQL (users and clients tables)
- CacheStorage → Redis (revoked token ids)
"""

from elitefit.storage.base import (
    CacheStorage,
    DuplicatePrincipalError,
    PrincipalStore,
    StorageError,
)
from elitefit.storage.local import InMemoryCacheStorage, InMemoryPrincipalStore

__all__ = [
    "CacheStorage",
    "DuplicatePrincipalError",
    "PrincipalStore",
    "StorageError",
    "InMemoryCacheStorage",
    "InMemoryPrincipalStore",
]

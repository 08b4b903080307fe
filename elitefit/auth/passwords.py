"""Password hashing (PBKDF2-SHA256, stored as "salt:hexdigest")."""

from __future__ import annotations

import hashlib
import secrets
from functools import lru_cache

ITERATIONS = 100_000


def _derive(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        iterations=ITERATIONS,
    ).hex()


def hash_password(password: str) -> str:
    salt = secrets.token_hex(32)
    return f"{salt}:{_derive(password, salt)}"


def verify_password(password: str, password_hash: str | None) -> bool:
    """Constant-time check. Identity-only accounts (no hash) never match."""
    if not password_hash:
        # Same work as a real check so the response time gives nothing away
        dummy_verify(password)
        return False

    salt, sep, expected = password_hash.partition(":")
    if not sep or not expected:
        return False
    return secrets.compare_digest(_derive(password, salt), expected)


@lru_cache
def _dummy_salt() -> str:
    return secrets.token_hex(32)


def dummy_verify(password: str) -> None:
    """Burn one verification's worth of time for an unknown account."""
    _derive(password, _dummy_salt())

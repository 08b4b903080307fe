"""
Core module - fundamental data models and helpers.

This module contains:
- models: Principal, identity bindings, and the enums they use
- utils: id generation and UTC clock
"""

from elitefit.core.models import (
    Audience,
    AuthProvider,
    ExternalProfile,
    IdentityBinding,
    Principal,
    PrincipalKind,
    Role,
    TokenType,
)
from elitefit.core.utils import generate_id, utc_now

__all__ = [
    "Audience",
    "AuthProvider",
    "ExternalProfile",
    "IdentityBinding",
    "Principal",
    "PrincipalKind",
    "Role",
    "TokenType",
    "generate_id",
    "utc_now",
]

"""
Auth error taxonomy.

Every error carries the HTTP status the API layer should answer with and a
stable machine-readable code. Callers react to the class, clients to the code.
"""


class AuthError(Exception):
    """Base exception for auth errors."""
    status_code = 401
    code = "AUTH_ERROR"
    default_message = "Authentication failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


# =============================================================================
# Token errors
# =============================================================================


class TokenError(AuthError):
    """Base exception for token errors."""
    code = "INVALID_TOKEN"
    default_message = "Invalid token"


class TokenMalformedError(TokenError):
    """Token cannot be parsed, or carries the wrong claims."""
    code = "TOKEN_MALFORMED"
    default_message = "Token is malformed"


class TokenSignatureError(TokenError):
    """Token was tampered with or signed with another key."""
    code = "TOKEN_SIGNATURE_INVALID"
    default_message = "Token signature is invalid"


class TokenExpiredError(TokenError):
    """Token has expired."""
    code = "TOKEN_EXPIRED"
    default_message = "Token has expired"


class TokenRevokedError(TokenError):
    """Token is valid and unexpired but was explicitly revoked."""
    code = "TOKEN_REVOKED"
    default_message = "Token has been revoked"


class SigningKeyError(Exception):
    """Signing key or algorithm is misconfigured. Fatal at startup."""


# =============================================================================
# Login errors
# =============================================================================


class InvalidCredentialsError(AuthError):
    """Wrong password or unknown email. Deliberately indistinguishable."""
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


class AccountLockedError(AuthError):
    status_code = 423
    code = "ACCOUNT_LOCKED"
    default_message = "Account temporarily locked after repeated failed logins"


class AccountInactiveError(AuthError):
    code = "ACCOUNT_INACTIVE"
    default_message = "Account not found or inactive"


class IdentityProfileIncompleteError(AuthError):
    status_code = 400
    code = "IDENTITY_PROFILE_INCOMPLETE"
    default_message = "Identity provider did not return a usable email"


class ProviderUnavailableError(AuthError):
    status_code = 503
    code = "PROVIDER_UNAVAILABLE"
    default_message = "Identity provider is not available"


# =============================================================================
# Request errors
# =============================================================================


class UnauthenticatedError(AuthError):
    code = "AUTHENTICATION_REQUIRED"
    default_message = "Authentication required"


class ForbiddenError(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Permission denied"


class PrincipalKindMismatchError(ForbiddenError):
    code = "USER_TYPE_MISMATCH"
    default_message = "This endpoint is not available to your account type"

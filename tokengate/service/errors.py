from __future__ import annotations

from typing import Optional


class TokenError(Exception):
    """Base class for credential codec failures.

    Codec errors are local to the service layer: the token service and the
    verification middleware translate them into :class:`ServiceError`
    subclasses before anything reaches an HTTP response.
    """

    reason: str = "token_invalid"


class MalformedTokenError(TokenError):
    """Token cannot be parsed into header, claims and signature."""

    reason = "token_malformed"


class InvalidSignatureError(TokenError):
    """Token signature does not match the verifying secret."""

    reason = "token_invalid"


class ExpiredTokenError(TokenError):
    """Token is well formed and authentic but past its expiry."""

    reason = "token_expired"


class EncodingError(TokenError):
    """Signing secret or token lifetime is misconfigured."""

    reason = "token_encoding_failed"


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP status_code and a stable error_code that
    clients can branch on without parsing the message.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentialsError(AuthenticationError):
    """Username/password pair rejected at login."""
    error_code = "invalid_credentials"


class RefreshTokenMissingError(AuthenticationError):
    """Refresh was requested without a renewal cookie."""
    error_code = "refresh_token_missing"


class AccessTokenError(AuthenticationError):
    """Bearer access token missing, malformed, expired or forged.

    ``error_code`` is one of ``token_missing``, ``token_malformed``,
    ``token_expired`` or ``token_invalid``; only ``token_expired`` is worth a
    refresh round-trip.
    """

    error_code = "token_invalid"

    @classmethod
    def from_token_error(cls, exc: TokenError) -> "AccessTokenError":
        messages = {
            "token_expired": "Access token expired",
            "token_malformed": "Malformed access token",
        }
        return cls(
            messages.get(exc.reason, "Invalid access token"),
            error_code=exc.reason,
        )

    @property
    def refreshable(self) -> bool:
        return self.error_code == "token_expired"


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class UnauthenticatedError(ForbiddenError):
    """Renewal token failed verification; the holder must log in again."""
    error_code = "invalid_refresh_token"


class SessionRevokedError(ForbiddenError):
    """The session behind a renewal token has been revoked."""
    error_code = "session_revoked"


__all__ = [
    "TokenError",
    "MalformedTokenError",
    "InvalidSignatureError",
    "ExpiredTokenError",
    "EncodingError",
    "ServiceError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "UnauthenticatedError",
    "RefreshTokenMissingError",
    "AccessTokenError",
    "ForbiddenError",
    "SessionRevokedError",
]

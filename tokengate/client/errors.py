from __future__ import annotations

from typing import Optional


class AuthClientError(Exception):
    """Base class for failures surfaced by :class:`AuthClient`."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class UnauthenticatedError(AuthClientError):
    """The client holds no usable credentials; the user must log in again.

    Raised to every request waiting on a refresh that failed or was aborted,
    and by :meth:`AuthClient.login` when the server rejects the credentials.
    """


__all__ = ["AuthClientError", "UnauthenticatedError"]

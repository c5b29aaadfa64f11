from __future__ import annotations

import hmac
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from tokengate.config import Settings
from tokengate.logging import get_logger
from tokengate.service import codec
from tokengate.service.errors import (
    AccessTokenError,
    InvalidCredentialsError,
    SessionRevokedError,
    TokenError,
    UnauthenticatedError,
)
from tokengate.storage.models import Principal, Session, UserRecord

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"

# Compared against when the username is unknown so both failure paths do the same work
_DUMMY_PASSWORD = "tokengate-dummy-password"


class AuthStore(Protocol):
    def get_user(self, principal_id: str) -> Optional[Principal]: ...

    def get_user_by_username(self, username: str) -> Optional[UserRecord]: ...

    def create_session(self, principal_id: str) -> Session: ...

    def get_session(self, session_id: str) -> Optional[Session]: ...

    def is_revoked(self, session_id: str) -> bool: ...

    def revoke_session(self, session_id: str, *, reason: str = "logout") -> bool: ...

    def set_refresh_jti(self, session_id: str, jti: str) -> None: ...

    def rotate_refresh_jti(
        self, session_id: str, expected_jti: str, new_jti: str
    ) -> bool: ...


@dataclass
class AuthContext:
    principal: Principal
    session_id: Optional[str]
    expires_at: datetime


@dataclass
class IssuedTokens:
    access_token: str
    refresh_token: str
    principal: Principal
    session: Session


@dataclass
class RefreshResult:
    access_token: str
    principal: Principal
    session_id: str
    # Set only when rotation replaced the renewal token
    refresh_token: Optional[str] = None


class TokenService:
    """Issues, verifies, refreshes and revokes access/renewal token pairs."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store: AuthStore = store
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger

    def _now(self) -> datetime:
        return self._clock()

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_ttl_minutes)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.refresh_token_ttl_minutes)

    def _mint_access(self, principal: Principal, session_id: str) -> str:
        return codec.encode(
            principal.id,
            self.access_ttl,
            self.settings.access_token_secret,
            claims={"token_type": ACCESS, "sid": session_id},
            now=self._now(),
        )

    def _mint_refresh(self, principal: Principal, session_id: str) -> tuple[str, str]:
        jti = str(uuid.uuid4())
        token = codec.encode(
            principal.id,
            self.refresh_ttl,
            self.settings.refresh_token_secret,
            claims={"token_type": REFRESH, "sid": session_id, "jti": jti},
            now=self._now(),
        )
        return token, jti

    def login(self, username: str, password: str) -> IssuedTokens:
        record = self.store.get_user_by_username(username)
        expected = record.password if record else _DUMMY_PASSWORD
        password_ok = hmac.compare_digest(
            expected.encode("utf-8"), (password or "").encode("utf-8")
        )
        if not record or not password_ok:
            self.logger.info("login_failed", username=username)
            raise InvalidCredentialsError("Invalid credentials")

        principal = record.principal
        session = self.store.create_session(principal.id)
        access_token = self._mint_access(principal, session.id)
        refresh_token, jti = self._mint_refresh(principal, session.id)
        self.store.set_refresh_jti(session.id, jti)
        session.refresh_jti = jti
        self.logger.info(
            "login_succeeded", principal_id=principal.id, session_id=session.id
        )
        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            principal=principal,
            session=session,
        )

    def refresh(self, refresh_token: str) -> RefreshResult:
        try:
            claims = codec.decode(
                refresh_token, self.settings.refresh_token_secret, now=self._now()
            )
        except TokenError as exc:
            self.logger.info("refresh_rejected", reason=exc.reason)
            raise UnauthenticatedError("Invalid refresh token") from exc
        if claims.token_type != REFRESH or not claims.session_id:
            self.logger.info("refresh_rejected", reason="wrong_token_kind")
            raise UnauthenticatedError("Invalid refresh token")

        session = self.store.get_session(claims.session_id)
        if session is None or session.revoked:
            self.logger.info(
                "refresh_rejected", reason="session_revoked", session_id=claims.session_id
            )
            raise SessionRevokedError("Invalid refresh token")
        if session.principal_id != claims.principal_id:
            raise UnauthenticatedError("Invalid refresh token")
        principal = self.store.get_user(claims.principal_id)
        if principal is None:
            raise UnauthenticatedError("Invalid refresh token")

        new_refresh: Optional[str] = None
        if self.settings.rotate_refresh_tokens:
            new_refresh, new_jti = self._mint_refresh(principal, session.id)
            rotated = self.store.rotate_refresh_jti(
                session.id, claims.token_id, new_jti
            )
            if not rotated:
                self._handle_reuse(session.id, claims.token_id)
        elif session.refresh_jti and session.refresh_jti != claims.token_id:
            self._handle_reuse(session.id, claims.token_id)

        access_token = self._mint_access(principal, session.id)
        self.logger.info(
            "refresh_succeeded",
            principal_id=principal.id,
            session_id=session.id,
            rotated=new_refresh is not None,
        )
        return RefreshResult(
            access_token=access_token,
            principal=principal,
            session_id=session.id,
            refresh_token=new_refresh,
        )

    def _handle_reuse(self, session_id: str, jti: str) -> None:
        """A consumed renewal token came back: assume it was stolen."""
        if self.store.is_revoked(session_id):
            raise SessionRevokedError("Invalid refresh token")
        self.store.revoke_session(session_id, reason="refresh_token_reuse")
        self.logger.warning(
            "refresh_token_reuse_detected", session_id=session_id, jti=jti
        )
        raise SessionRevokedError("Invalid refresh token")

    def logout(self, session_id: Optional[str]) -> None:
        """Revoke ``session_id``; unknown or already revoked sessions are fine."""
        if not session_id:
            return
        if self.store.revoke_session(session_id, reason="logout"):
            self.logger.info("session_revoked", session_id=session_id)

    def logout_with_refresh_token(self, refresh_token: Optional[str]) -> Optional[str]:
        """Revoke the session named by a renewal token, even an expired one.

        Returns the revoked session id, or None when the token does not carry
        a verifiable session.
        """
        if not refresh_token:
            return None
        try:
            payload = codec.decode_ignoring_expiry(
                refresh_token, self.settings.refresh_token_secret
            )
        except TokenError as exc:
            self.logger.info("logout_token_ignored", reason=exc.reason)
            return None
        session_id = payload.get("sid")
        if not isinstance(session_id, str) or not session_id:
            return None
        self.logout(session_id)
        return session_id

    def verify_access_token(self, token: str) -> AuthContext:
        try:
            claims = codec.decode(
                token, self.settings.access_token_secret, now=self._now()
            )
        except TokenError as exc:
            raise AccessTokenError.from_token_error(exc) from exc
        if claims.token_type != ACCESS:
            raise AccessTokenError("Invalid access token", error_code="token_invalid")
        principal = self.store.get_user(claims.principal_id)
        if principal is None:
            raise AccessTokenError("Invalid access token", error_code="token_invalid")
        return AuthContext(
            principal=principal,
            session_id=claims.session_id,
            expires_at=claims.expires_at,
        )

    def authenticate(self, authorization: Optional[str]) -> AuthContext:
        token = self._extract_bearer(authorization)
        if not token:
            raise AccessTokenError("Access token missing", error_code="token_missing")
        return self.verify_access_token(token)

    def _extract_bearer(self, header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        lower = header.lower()
        if not lower.startswith("bearer "):
            return None
        token = header.split(" ", 1)[1].strip()
        return token or None

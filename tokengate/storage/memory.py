from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from tokengate.storage.errors import DuplicateUsernameError, UnknownPrincipalError
from tokengate.storage.models import Principal, Session, UserRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore:
    """In-memory user directory and session/revocation store.

    Sessions are never deleted: a revoked session stays behind so that a
    later presentation of one of its renewal tokens is still recognised as
    revoked rather than unknown.
    """

    def __init__(
        self,
        users: Iterable[UserRecord] = (),
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._clock = clock or _utcnow
        self.users: Dict[str, UserRecord] = {}
        self.usernames: Dict[str, str] = {}
        self.sessions: Dict[str, Session] = {}
        # RLock for all data operations to ensure thread safety
        self._data_lock = threading.RLock()
        for record in users:
            self.add_user(record)

    def add_user(self, record: UserRecord) -> Principal:
        principal = record.principal
        with self._data_lock:
            existing = self.usernames.get(principal.username)
            if existing is not None and existing != principal.id:
                raise DuplicateUsernameError(principal.username)
            self.users[principal.id] = record
            self.usernames[principal.username] = principal.id
        return principal

    def get_user(self, principal_id: str) -> Optional[Principal]:
        with self._data_lock:
            record = self.users.get(principal_id)
            return record.principal if record else None

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self._data_lock:
            principal_id = self.usernames.get(username)
            return self.users.get(principal_id) if principal_id else None

    def create_session(self, principal_id: str) -> Session:
        with self._data_lock:
            if principal_id not in self.users:
                raise UnknownPrincipalError(principal_id)
            sess = Session.new(principal_id, now=self._clock())
            self.sessions[sess.id] = sess
            return sess

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._data_lock:
            return self.sessions.get(session_id)

    def is_revoked(self, session_id: str) -> bool:
        """Unknown sessions count as revoked."""
        with self._data_lock:
            sess = self.sessions.get(session_id)
            return sess is None or sess.revoked

    def revoke_session(self, session_id: str, *, reason: str = "logout") -> bool:
        """Mark a session revoked; returns True only on the first revocation."""
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if sess is None or sess.revoked:
                return False
            sess.revoked = True
            sess.revoked_at = self._clock()
            sess.revoke_reason = reason
            return True

    def set_refresh_jti(self, session_id: str, jti: str) -> None:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if not sess:
                return
            sess.refresh_jti = jti

    def rotate_refresh_jti(
        self, session_id: str, expected_jti: str, new_jti: str
    ) -> bool:
        """Swap the accepted renewal token id if it is still ``expected_jti``.

        The check and the swap happen under one lock acquisition, so of two
        concurrent refreshes presenting the same token only one succeeds.
        """
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if sess is None or sess.revoked or sess.refresh_jti != expected_jti:
                return False
            sess.refresh_jti = new_jti
            return True

    def list_sessions(self, principal_id: Optional[str] = None) -> List[Session]:
        with self._data_lock:
            sessions = list(self.sessions.values())
        if principal_id is not None:
            sessions = [s for s in sessions if s.principal_id == principal_id]
        return sorted(sessions, key=lambda s: s.created_at)

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from tokengate.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthState:
    access_token: Optional[str] = None
    # Username the session was opened for
    principal: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.access_token is not None


Listener = Callable[[AuthState], None]


class AuthStateCell:
    """Observable holder of the client's current access credential.

    Only login/logout and the refresh coordinator write to it. Listeners are
    called after every change with the new state, outside the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._state = AuthState()
        self._listeners: List[Listener] = []

    def current(self) -> AuthState:
        with self._lock:
            return self._state

    def set(self, access_token: str, principal: Optional[str]) -> AuthState:
        return self._replace(AuthState(access_token=access_token, principal=principal))

    def clear(self) -> AuthState:
        return self._replace(AuthState())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _replace(self, new_state: AuthState) -> AuthState:
        with self._lock:
            changed = new_state != self._state
            self._state = new_state
            listeners = list(self._listeners)
        if changed:
            for listener in listeners:
                try:
                    listener(new_state)
                except Exception:
                    # Observer failures are logged, never propagated
                    logger.exception("auth_state_listener_failed")
        return new_state

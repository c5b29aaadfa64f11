from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from tokengate.config import Settings, get_settings
from tokengate.logging import get_logger
from tokengate.service.auth import TokenService
from tokengate.storage.memory import MemoryStore
from tokengate.storage.models import Principal, UserRecord

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Runtime:
    """Holds the service instances one app instance works with.

    Built explicitly and handed to ``create_app`` so that every test (and
    every app) owns an isolated store and clock.
    """

    def __init__(
        self,
        settings: Settings,
        store: MemoryStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings
        self.clock = clock or _utcnow
        self.store = store
        self.auth = TokenService(store, settings, clock=self.clock)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "Runtime":
        settings = settings or get_settings()
        clock = clock or _utcnow
        user = UserRecord(
            principal=Principal(
                id=settings.auth_user_id,
                username=settings.auth_username,
                display_name=settings.auth_display_name,
            ),
            password=settings.auth_password,
        )
        store = MemoryStore([user], clock=clock)
        logger.info(
            "runtime_initialized",
            store_type="memory",
            rotate_refresh_tokens=settings.rotate_refresh_tokens,
            access_ttl_minutes=settings.access_token_ttl_minutes,
            refresh_ttl_minutes=settings.refresh_token_ttl_minutes,
        )
        return cls(settings, store, clock=clock)

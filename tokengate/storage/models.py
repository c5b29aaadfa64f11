from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Principal:
    id: str
    username: str
    display_name: str


@dataclass
class UserRecord:
    principal: Principal
    password: str


@dataclass
class Session:
    id: str
    principal_id: str
    created_at: datetime
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    # jti of the only renewal token currently accepted for this session
    refresh_jti: Optional[str] = None
    revoke_reason: Optional[str] = None

    @classmethod
    def new(cls, principal_id: str, *, now: Optional[datetime] = None) -> "Session":
        return cls(
            id=str(uuid.uuid4()),
            principal_id=principal_id,
            created_at=now or _utcnow(),
        )


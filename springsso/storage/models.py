from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: int
    username: str
    password: str
    scalekit_id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    token_expires_at: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class Session:
    """Server-held session referenced by the signed session cookie.

    ``user_id`` is ``None`` for an anonymous session that only carries a
    pending ``scalekit_state`` between the SSO redirect and its callback.
    """

    id: str
    created_at: datetime
    expires_at: datetime
    user_id: Optional[int] = None
    scalekit_state: Optional[str] = None

    @classmethod
    def new(cls, user_id: Optional[int] = None, ttl_minutes: int = 60) -> "Session":
        now = _utcnow()
        return cls(
            id=secrets.token_urlsafe(32),
            created_at=now,
            expires_at=now + timedelta(minutes=ttl_minutes),
            user_id=user_id,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or _utcnow())

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

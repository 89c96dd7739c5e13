from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from springsso.logging import get_logger
from springsso.service.passwords import make_unusable_password
from springsso.storage.errors import DuplicateIdentity, DuplicateUsername, UserNotFound
from springsso.storage.models import Session, User


class MemoryStore:
    """In-memory credential and session store.

    Every unique field (username, email, scalekit_id) is checked and written
    under the same lock, so two concurrent creates for the same value cannot
    both succeed; the loser receives ``DuplicateUsername`` or
    ``DuplicateIdentity``. Records are handed out as copies so callers never
    mutate shared state outside a store method.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.sessions: Dict[str, Session] = {}
        self._user_id_seq: int = 1
        self._data_lock = threading.RLock()

    def _next_user_id(self) -> int:
        next_id = self._user_id_seq
        self._user_id_seq += 1
        return next_id

    def _find(self, attr: str, value: object) -> Optional[User]:
        return next(
            (u for u in self.users.values() if getattr(u, attr) == value), None
        )

    def _ensure_unique(
        self,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        scalekit_id: Optional[str] = None,
        exclude_id: Optional[int] = None,
    ) -> None:
        # Subject id is checked first so a second create for the same subject
        # reports DuplicateIdentity rather than a username clash
        checks: Iterable[tuple[str, Optional[str]]] = (
            ("scalekit_id", scalekit_id),
            ("email", email),
            ("username", username),
        )
        for attr, value in checks:
            if value is None:
                continue
            existing = self._find(attr, value)
            if existing is None or existing.id == exclude_id:
                continue
            if attr == "username":
                raise DuplicateUsername(value)
            raise DuplicateIdentity(attr)

    # users
    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            user = self._find("username", username)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = self._find("email", email)
            return replace(user) if user else None

    def get_user_by_scalekit_id(self, scalekit_id: str) -> Optional[User]:
        with self._data_lock:
            user = self._find("scalekit_id", scalekit_id)
            return replace(user) if user else None

    def create_user(self, username: str, password: str) -> User:
        with self._data_lock:
            self._ensure_unique(username=username)
            user = User(id=self._next_user_id(), username=username, password=password)
            self.users[user.id] = user
            return replace(user)

    def create_scalekit_user(
        self,
        username: str,
        *,
        scalekit_id: str,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        id_token: Optional[str] = None,
        token_expires_at: Optional[int] = None,
    ) -> User:
        with self._data_lock:
            self._ensure_unique(username=username, email=email, scalekit_id=scalekit_id)
            user = User(
                id=self._next_user_id(),
                username=username,
                password=make_unusable_password(),
                scalekit_id=scalekit_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
                access_token=access_token,
                refresh_token=refresh_token,
                id_token=id_token,
                token_expires_at=token_expires_at,
            )
            self.users[user.id] = user
            return replace(user)

    def link_scalekit_id(
        self,
        user_id: int,
        scalekit_id: str,
        *,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        id_token: Optional[str] = None,
        token_expires_at: Optional[int] = None,
    ) -> User:
        """Bind a provider subject to an existing user.

        Provider tokens passed alongside are written in the same step, so the
        link never appears without them.
        """
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                raise UserNotFound(user_id)
            self._ensure_unique(scalekit_id=scalekit_id, exclude_id=user_id)
            changes: Dict[str, object] = {"scalekit_id": scalekit_id}
            if access_token is not None:
                changes.update(
                    access_token=access_token,
                    refresh_token=refresh_token,
                    id_token=id_token,
                    token_expires_at=token_expires_at,
                )
            updated = replace(user, **changes)
            self.users[user_id] = updated
            return replace(updated)

    def update_user_tokens(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str,
        id_token: str,
        expires_at: int,
    ) -> User:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                raise UserNotFound(user_id)
            updated = replace(
                user,
                access_token=access_token,
                refresh_token=refresh_token,
                id_token=id_token,
                token_expires_at=expires_at,
            )
            self.users[user_id] = updated
            return replace(updated)

    def count_users(self) -> int:
        with self._data_lock:
            return len(self.users)

    # sessions
    def create_session(
        self, user_id: Optional[int] = None, *, ttl_minutes: int = 60
    ) -> Session:
        with self._data_lock:
            if user_id is not None and user_id not in self.users:
                raise UserNotFound(user_id)
            sess = Session.new(user_id=user_id, ttl_minutes=ttl_minutes)
            self.sessions[sess.id] = sess
            return replace(sess)

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if not sess or sess.is_expired():
                return None
            return replace(sess)

    def set_session_state(self, session_id: str, state: str) -> None:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if not sess:
                return
            self.sessions[session_id] = replace(sess, scalekit_state=state)

    def pop_session_state(self, session_id: str) -> Optional[str]:
        """Return and clear the pending SSO state so it can be used only once."""
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if not sess:
                return None
            state = sess.scalekit_state
            self.sessions[session_id] = replace(sess, scalekit_state=None)
            return state

    def revoke_session(self, session_id: str) -> None:
        with self._data_lock:
            self.sessions.pop(session_id, None)

    def sweep_expired_sessions(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._data_lock:
            stale = [sid for sid, sess in self.sessions.items() if sess.is_expired(now)]
            for sid in stale:
                self.sessions.pop(sid, None)
        if stale:
            self.logger.debug("sessions_swept", removed=len(stale))
        return len(stale)

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from springsso.config import Settings
from springsso.logging import get_logger
from springsso.service.errors import (
    AuthenticationError,
    InvalidStateError,
    MissingCodeError,
    ValidationError,
)
from springsso.service.passwords import InvalidStoredFormat, PasswordHasher
from springsso.service.scalekit import ScalekitClient, ScalekitProfile, TokenResponse
from springsso.service.tokens import TokenIssuer
from springsso.storage.errors import DuplicateIdentity
from springsso.storage.models import Session, User

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"


class AuthStore(Protocol):
    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user_by_scalekit_id(self, scalekit_id: str) -> Optional[User]: ...

    def create_user(self, username: str, password: str) -> User: ...

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
    ) -> User: ...

    def link_scalekit_id(
        self,
        user_id: int,
        scalekit_id: str,
        *,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        id_token: Optional[str] = None,
        token_expires_at: Optional[int] = None,
    ) -> User: ...

    def update_user_tokens(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str,
        id_token: str,
        expires_at: int,
    ) -> User: ...

    def create_session(
        self, user_id: Optional[int] = None, *, ttl_minutes: int = 60
    ) -> Session: ...

    def get_session(self, session_id: str) -> Optional[Session]: ...

    def set_session_state(self, session_id: str, state: str) -> None: ...

    def pop_session_state(self, session_id: str) -> Optional[str]: ...

    def revoke_session(self, session_id: str) -> None: ...

    def sweep_expired_sessions(self, now: Optional[datetime] = None) -> int: ...


@dataclass
class AuthResult:
    user: User
    session: Session
    token: str


class AuthService:
    """Local and Scalekit sign-in on top of server-held sessions."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        hasher: Optional[PasswordHasher] = None,
        tokens: Optional[TokenIssuer] = None,
        scalekit: Optional[ScalekitClient] = None,
    ) -> None:
        self.store: AuthStore = store
        self.settings = settings
        self.hasher = hasher or PasswordHasher()
        self.tokens = tokens or TokenIssuer(settings)
        self.scalekit = scalekit or ScalekitClient(settings)
        self.logger = logger

    def _now(self) -> datetime:
        """Timezone-aware UTC helper to avoid naive datetime usage."""

        return datetime.now(timezone.utc)

    # sessions
    def resolve_session(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self.store.get_session(session_id)

    def _establish_session(
        self, user: User, previous_session_id: Optional[str] = None
    ) -> Session:
        # Fresh id on every login so a pre-login session id cannot be fixated
        if previous_session_id:
            self.store.revoke_session(previous_session_id)
        return self.store.create_session(
            user.id, ttl_minutes=self.settings.session_ttl_minutes
        )

    def sweep_sessions(self) -> int:
        removed = self.store.sweep_expired_sessions(self._now())
        self.logger.info("session_sweep_complete", removed=removed)
        return removed

    # local auth
    async def register(
        self,
        username: Optional[str],
        password: Optional[str],
        *,
        current_session_id: Optional[str] = None,
    ) -> AuthResult:
        if not username or not password:
            raise ValidationError("Username and password are required")
        # Key derivation runs in a worker thread, off the event loop
        stored = await asyncio.to_thread(self.hasher.hash, password)
        user = self.store.create_user(username, stored)
        session = self._establish_session(user, current_session_id)
        self.logger.info("user_registered", user_id=user.id)
        return AuthResult(user=user, session=session, token=self.tokens.issue(user))

    def _verify_password(self, user: User, password: str) -> bool:
        try:
            return self.hasher.verify(password, user.password)
        except InvalidStoredFormat:
            self.logger.warning("password_record_invalid", user_id=user.id)
            return self.hasher.verify_dummy(password)

    async def login(
        self,
        username: Optional[str],
        password: Optional[str],
        *,
        current_session_id: Optional[str] = None,
    ) -> AuthResult:
        user = self.store.get_user_by_username(username) if username else None
        # Unknown users still pay for one derivation so timing does not reveal them
        if user is None:
            verified = await asyncio.to_thread(self.hasher.verify_dummy, password or "")
        else:
            verified = await asyncio.to_thread(self._verify_password, user, password or "")
        if user is None or not password or not verified:
            self.logger.info("login_failed")
            raise AuthenticationError(INVALID_CREDENTIALS)
        session = self._establish_session(user, current_session_id)
        self.logger.info("login_succeeded", user_id=user.id)
        return AuthResult(user=user, session=session, token=self.tokens.issue(user))

    async def logout(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        self.store.revoke_session(session_id)
        self.logger.info("session_revoked")

    async def current_user(self, session: Optional[Session]) -> tuple[User, str]:
        """Return the session's user with a freshly minted token."""
        if not session or not session.is_authenticated:
            raise AuthenticationError("Unauthorized")
        user = self.store.get_user(session.user_id)
        if not user:
            self.logger.warning("session_user_missing", user_id=session.user_id)
            raise AuthenticationError("Unauthorized")
        return user, self.tokens.issue(user)

    # scalekit sso
    async def start_scalekit(self, session_id: Optional[str]) -> tuple[str, Session]:
        """Store a fresh CSRF state on the session and build the provider URL.

        An anonymous session is created when the browser has none yet.
        """
        session = self.resolve_session(session_id)
        if session is None:
            session = self.store.create_session(
                ttl_minutes=self.settings.session_ttl_minutes
            )
        state = secrets.token_hex(16)
        url = self.scalekit.authorization_url(state)
        self.store.set_session_state(session.id, state)
        return url, session

    async def complete_scalekit(
        self,
        session_id: Optional[str],
        code: Optional[str],
        state: Optional[str],
    ) -> AuthResult:
        expected = self.store.pop_session_state(session_id) if session_id else None
        matches = bool(state and expected) and secrets.compare_digest(
            state.encode(), expected.encode()
        )
        if not matches:
            self.logger.warning("scalekit_state_mismatch", has_state=bool(state))
            raise InvalidStateError("Invalid state parameter")
        if not code:
            raise MissingCodeError("Authorization code missing")

        token_response = await self.scalekit.exchange_code(code)
        profile = await self.scalekit.get_user_info(token_response.access_token)
        user = self.reconcile_scalekit_user(profile, token_response)

        session = self._establish_session(user, session_id)
        self.logger.info("scalekit_login_succeeded", user_id=user.id)
        return AuthResult(user=user, session=session, token=self.tokens.issue(user))

    def reconcile_scalekit_user(
        self, profile: ScalekitProfile, token_response: TokenResponse
    ) -> User:
        """Find or create the local user for a provider profile.

        Order: existing link by subject id, then link by email, then create.
        """
        expires_at = token_response.expires_at()

        def _refresh(user: User) -> User:
            return self.store.update_user_tokens(
                user.id,
                token_response.access_token,
                token_response.refresh_token,
                token_response.id_token,
                expires_at,
            )

        linked = self.store.get_user_by_scalekit_id(profile.id)
        if linked:
            return _refresh(linked)

        if profile.email:
            by_email = self.store.get_user_by_email(profile.email)
            if by_email:
                if by_email.scalekit_id and by_email.scalekit_id != profile.id:
                    self.logger.warning(
                        "scalekit_email_linked_elsewhere", user_id=by_email.id
                    )
                    raise DuplicateIdentity("email")
                linked_user = self.store.link_scalekit_id(
                    by_email.id,
                    profile.id,
                    access_token=token_response.access_token,
                    refresh_token=token_response.refresh_token,
                    id_token=token_response.id_token,
                    token_expires_at=expires_at,
                )
                self.logger.info("scalekit_account_linked", user_id=by_email.id)
                return linked_user

        try:
            user = self.store.create_scalekit_user(
                profile.preferred_username(),
                scalekit_id=profile.id,
                email=profile.email,
                first_name=profile.first_name,
                last_name=profile.last_name,
                access_token=token_response.access_token,
                refresh_token=token_response.refresh_token,
                id_token=token_response.id_token,
                token_expires_at=expires_at,
            )
        except DuplicateIdentity as exc:
            # A concurrent callback for the same subject won the insert
            if exc.field != "scalekit_id":
                raise
            winner = self.store.get_user_by_scalekit_id(profile.id)
            if not winner:
                raise
            return _refresh(winner)
        self.logger.info("scalekit_user_created", user_id=user.id)
        return user

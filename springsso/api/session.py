from __future__ import annotations

from typing import Optional

from fastapi import Request, Response
from itsdangerous import BadData, URLSafeTimedSerializer

from springsso.config import Settings
from springsso.logging import get_logger
from springsso.service.errors import AuthenticationError
from springsso.service.runtime import get_runtime
from springsso.storage.models import Session

logger = get_logger(__name__)

SESSION_SALT = "springsso.session.v1"


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=settings.session_secret, salt=SESSION_SALT)


def sign_session_id(session_id: str, settings: Settings) -> str:
    return _serializer(settings).dumps({"sid": session_id})


def unsign_session_id(cookie: Optional[str], settings: Settings) -> Optional[str]:
    if not cookie:
        return None
    try:
        data = _serializer(settings).loads(
            cookie, max_age=settings.session_ttl_minutes * 60
        )
    except BadData:
        logger.info("session_cookie_rejected")
        return None
    sid = data.get("sid") if isinstance(data, dict) else None
    return str(sid) if sid else None


def apply_session_cookie(response: Response, session: Session, settings: Settings) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        sign_session_id(session.id, settings),
        max_age=settings.session_ttl_minutes * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


async def attach_session(request: Request, call_next):
    """Resolve the signed session cookie and expose it as ``request.state.session``."""
    runtime = get_runtime()
    session_id = unsign_session_id(
        request.cookies.get(runtime.settings.session_cookie_name), runtime.settings
    )
    request.state.session = runtime.auth.resolve_session(session_id)
    return await call_next(request)


def current_session(request: Request) -> Optional[Session]:
    return getattr(request.state, "session", None)


def require_session(request: Request) -> Session:
    session = current_session(request)
    if session is None or not session.is_authenticated:
        raise AuthenticationError("Unauthorized")
    return session

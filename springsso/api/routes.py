from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse

from springsso.api.schemas import (
    AuthResponse,
    AuthUrlResponse,
    CredentialsRequest,
    HealthResponse,
    UserSummary,
)
from springsso.api.session import (
    apply_session_cookie,
    clear_session_cookie,
    current_session,
    require_session,
)
from springsso.service.auth import AuthResult
from springsso.service.runtime import get_runtime
from springsso.storage.models import Session, User

router = APIRouter(prefix="/api")


def _session_id(session: Optional[Session]) -> Optional[str]:
    return session.id if session else None


def _auth_response(user: User, token: str) -> AuthResponse:
    return AuthResponse(user=UserSummary(id=user.id, username=user.username), token=token)


def _finish_login(result: AuthResult, response: Response) -> AuthResponse:
    apply_session_cookie(response, result.session, get_runtime().settings)
    return _auth_response(result.user, result.token)


@router.post("/register", response_model=AuthResponse, status_code=201, tags=["auth"])
async def register(
    body: CredentialsRequest,
    response: Response,
    session: Optional[Session] = Depends(current_session),
):
    """Create a local account and sign it in.

    Raises:
        400: If username or password is missing, or the username is taken
    """
    result = await get_runtime().auth.register(
        body.username, body.password, current_session_id=_session_id(session)
    )
    return _finish_login(result, response)


@router.post("/login", response_model=AuthResponse, tags=["auth"])
async def login(
    body: CredentialsRequest,
    response: Response,
    session: Optional[Session] = Depends(current_session),
):
    """Authenticate with username and password.

    Raises:
        401: If the credentials are invalid
    """
    result = await get_runtime().auth.login(
        body.username, body.password, current_session_id=_session_id(session)
    )
    return _finish_login(result, response)


@router.post("/logout", tags=["auth"])
async def logout(session: Optional[Session] = Depends(current_session)):
    runtime = get_runtime()
    await runtime.auth.logout(_session_id(session))
    response = Response(status_code=200)
    clear_session_cookie(response, runtime.settings)
    return response


@router.get("/user", response_model=AuthResponse, tags=["auth"])
async def whoami(session: Session = Depends(require_session)):
    """Return the signed-in user with a freshly issued token."""
    user, token = await get_runtime().auth.current_user(session)
    return _auth_response(user, token)


@router.get("/auth/scalekit", response_model=AuthUrlResponse, tags=["sso"])
async def scalekit_start(
    response: Response,
    session: Optional[Session] = Depends(current_session),
):
    """Return the Scalekit authorization URL for the client to navigate to.

    The CSRF state is kept on the server-held session; the browser is not
    redirected here.
    """
    runtime = get_runtime()
    url, sso_session = await runtime.auth.start_scalekit(_session_id(session))
    apply_session_cookie(response, sso_session, runtime.settings)
    return AuthUrlResponse(url=url)


@router.get("/auth/callback", tags=["sso"])
async def scalekit_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
):
    """Complete the Scalekit login and hand the token to the front end.

    Raises:
        400: If the state does not match the session or the code is missing
        500: If the identity provider fails
    """
    runtime = get_runtime()
    result = await runtime.auth.complete_scalekit(
        _session_id(current_session(request)), code, state
    )
    redirect = RedirectResponse(
        url="/?" + urlencode({"token": result.token}), status_code=302
    )
    apply_session_cookie(redirect, result.session, runtime.settings)
    return redirect


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health():
    return HealthResponse(status="ok")

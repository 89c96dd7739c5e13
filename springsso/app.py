from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI

from springsso.api.error_handling import register_exception_handlers
from springsso.api.routes import router
from springsso.api.session import attach_session
from springsso.logging import get_logger, set_correlation_id
from springsso.service.auth import AuthService
from springsso.service.runtime import get_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

_sweep_task: asyncio.Task | None = None


async def _run_session_sweep(auth: AuthService, interval_hours: int) -> None:
    """Background loop that prunes expired sessions from the store."""

    interval = interval_hours * 3600
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(auth.sweep_sessions)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - best-effort cleanup
                logger.warning("session_sweep_failed", error=str(exc))
    except asyncio.CancelledError:
        logger.info("session_sweep_task_cancelled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global _sweep_task
    runtime = get_runtime()
    _sweep_task = asyncio.create_task(
        _run_session_sweep(runtime.auth, runtime.settings.session_sweep_interval_hours)
    )
    logger.info(
        "session_sweep_scheduled",
        interval_hours=runtime.settings.session_sweep_interval_hours,
    )

    yield

    if _sweep_task:
        _sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _sweep_task
        _sweep_task = None
    logger.info("shutdown_complete")


app = FastAPI(title="SpringSSO Auth", version=__version__, lifespan=lifespan)

# Registered innermost first: the session is resolved inside the correlation scope
app.middleware("http")(attach_session)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/api/"):
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    return response


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation id for log tracing.

    A client-supplied ``X-Request-ID`` is reused; otherwise a new UUID is
    generated. Either way it is echoed back in the response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)

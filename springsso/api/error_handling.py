from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from springsso.api.schemas import ErrorBody
from springsso.logging import get_logger
from springsso.service.errors import ServiceError
from springsso.storage.errors import ConstraintViolation

logger = get_logger(__name__)

GENERIC_SERVER_MESSAGE = "internal server error"

_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    500: "server_error",
}


def _error_code_for_status(status_code: int) -> str:
    if status_code in _STATUS_TO_CODE:
        return _STATUS_TO_CODE[status_code]
    return "validation_error" if status_code < 500 else "server_error"


def _error_response(status_code: int, message: str, code: str | None = None) -> JSONResponse:
    error_code = code or _error_code_for_status(status_code)
    body = ErrorBody(code=error_code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Map storage, service and framework errors onto the ``{code, message}`` body.

    5xx responses always carry a generic message; the real cause is logged.
    """

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(400, exc.message, code="conflict")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(
                "service_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                error_code=exc.error_code,
                error_type=type(exc).__name__,
                message=exc.message,
                detail=exc.detail,
            )
            return _error_response(exc.status_code, GENERIC_SERVER_MESSAGE, code=exc.error_code)
        logger.warning(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _error_response(exc.status_code, exc.message, code=exc.error_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            fields=[".".join(str(p) for p in err.get("loc", ())) for err in errors],
        )
        return _error_response(400, "Invalid request body", code="validation_error")

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
            message = GENERIC_SERVER_MESSAGE
        response = _error_response(exc.status_code, message)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, GENERIC_SERVER_MESSAGE, code="server_error")

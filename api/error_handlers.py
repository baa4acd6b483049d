"""
Centralized error handlers for the AccessHub API

- Every error response carries a correlation id (body and X-Error-ID header)
- One response shape: {"error": {"id", "code", "message", "status_code"}}
- Unexpected exceptions are logged with their traceback but never exposed
"""
import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.exceptions import AccessHubError, AuthorizationError

logger = logging.getLogger(__name__)


def _error_response(error_id: str, status_code: int, code: str, message: str, **extra) -> JSONResponse:
    body = {
        "id": error_id,
        "code": code,
        "message": message,
        "status_code": status_code,
    }
    body.update(extra)
    return JSONResponse(
        status_code=status_code,
        content={"error": body},
        headers={"X-Error-ID": error_id}
    )


async def accesshub_exception_handler(request: Request, exc: AccessHubError) -> JSONResponse:
    """Domain errors raised by the services"""
    error_id = str(uuid.uuid4())

    # the client only ever sees "Not permitted"; the reason stays in the log
    detail = exc.reason if isinstance(exc, AuthorizationError) and exc.reason else exc.detail
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"[{error_id}] {exc.error_code} on {request.method} {request.url.path}: {detail}",
        extra={"error_id": error_id, "error_code": exc.error_code, "status_code": exc.status_code}
    )

    return _error_response(error_id, exc.status_code, exc.error_code, exc.detail)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_id = str(uuid.uuid4())
    logger.warning(f"[{error_id}] HTTP {exc.status_code} on {request.method} {request.url.path}: {exc.detail}")
    return _error_response(error_id, exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed payloads: unknown, missing or mistyped fields"""
    error_id = str(uuid.uuid4())

    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    logger.warning(f"[{error_id}] Validation error on {request.method} {request.url.path}: {errors}")

    return _error_response(
        error_id,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "REQUEST_VALIDATION_ERROR",
        "Request validation failed",
        details=errors
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last resort for unexpected exceptions.

    The stack trace is logged; the client gets a generic message and the
    error id to report.
    """
    error_id = str(uuid.uuid4())
    logger.error(
        f"[{error_id}] Unexpected error on {request.method} {request.url.path}: "
        f"{type(exc).__name__}: {exc}",
        exc_info=True
    )
    return _error_response(
        error_id,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred. Please contact support with the error ID."
    )


def register_error_handlers(app: FastAPI):
    """Register all error handlers, most specific first"""
    app.add_exception_handler(AccessHubError, accesshub_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

"""Typed error kinds raised by the core and their HTTP mapping.

Services raise these; routers never catch them. The handlers registered in
``install_error_handlers`` turn them into a stable envelope::

    {"error": {"kind": "state_error", "message": "...", "details": {...}}}
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CoreError(Exception):
    kind = "core_error"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthenticationError(CoreError):
    kind = "authentication_error"
    status_code = 401


class AuthorizationError(CoreError):
    """Wrong role, or not the owning party of the resource."""
    kind = "authorization_error"
    status_code = 403


class NotFoundError(CoreError):
    kind = "not_found"
    status_code = 404


class StateError(CoreError):
    """Illegal transition or an operation invoked from the wrong state."""
    kind = "state_error"
    status_code = 409

    def __init__(self, current: str, attempted: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Cannot {attempted} while in state {current}",
            {"current": current, "attempted": attempted},
        )
        self.current = current
        self.attempted = attempted


class ValidationError(CoreError):
    kind = "validation_error"
    status_code = 422


class ConflictError(CoreError):
    """Duplicate payment split, or lost a concurrent acceptance race."""
    kind = "conflict"
    status_code = 409


class DependencyError(CoreError):
    """A best-effort collaborator (notifications, scheduler) failed."""
    kind = "dependency_error"
    status_code = 502


class RateLimitError(CoreError):
    kind = "rate_limited"
    status_code = 429


def error_body(kind: str, message: str, details: dict[str, Any] | None = None) -> dict:
    body: dict[str, Any] = {"kind": kind, "message": message}
    if details:
        body["details"] = details
    return {"error": body}


async def _core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitError) and "retry_after" in exc.details:
        headers = {"Retry-After": str(exc.details["retry_after"])}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.kind, exc.message, exc.details),
        headers=headers,
    )


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=error_body(ValidationError.kind, "Invalid request", {"fields": fields}),
    )


async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    kind = "not_found" if exc.status_code == 404 else "http_error"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(kind, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body("internal_error", "Internal server error"),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CoreError, _core_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)

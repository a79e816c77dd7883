"""HTTP middleware: request ids and access log, body size limit, response headers."""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from jobbroker.errors import error_body

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/health"})

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # Job, payment and ledger payloads are per-actor; never cache them
    "Cache-Control": "no-store",
}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log one access line when it finishes.

    A caller-supplied X-Request-Id is kept so ids line up across services.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-Id"] = request_id
        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s -> %d in %.1fms [%s]",
                request.method, request.url.path, response.status_code, elapsed_ms, request_id,
            )
        return response


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Refuse write requests whose declared Content-Length exceeds max_bytes."""

    def __init__(self, app, max_bytes: int = 1_048_576) -> None:  # type: ignore[no-untyped-def]
        super().__init__(app)
        self.max_bytes = max_bytes

    def _too_large(self, request: Request) -> bool:
        declared = request.headers.get("content-length", "")
        return declared.isdigit() and int(declared) > self.max_bytes

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        if request.method in ("POST", "PATCH", "PUT") and self._too_large(request):
            logger.warning("Rejected %s %s: body over %d bytes", request.method, request.url.path, self.max_bytes)
            return JSONResponse(
                status_code=413,
                content=error_body(
                    "payload_too_large",
                    f"Request body too large (max {self.max_bytes} bytes)",
                ),
            )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp SECURITY_HEADERS onto every response, error envelopes included."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response

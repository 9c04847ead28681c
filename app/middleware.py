import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("moneyflow")

REQUESTER_HEADER = "X-Requester-Id"
MAX_REQUESTER_ID_LENGTH = 128

SKIP_LOG_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


class RequesterMiddleware(BaseHTTPMiddleware):
    """Exposes the caller id set by the authenticating gateway as request.state.requester_id."""

    async def dispatch(self, request: Request, call_next) -> Response:
        requester_id = (request.headers.get(REQUESTER_HEADER) or "").strip()
        request.state.requester_id = requester_id[:MAX_REQUESTER_ID_LENGTH] or None
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status code, duration, and requester id for each request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.time()
        response = await call_next(request)
        duration_ms = round((time.time() - start) * 1000)

        path = request.url.path
        if path in SKIP_LOG_PATHS:
            return response

        requester_id = getattr(request.state, "requester_id", None)
        logger.info(
            f"{request.method} {path} {response.status_code}",
            extra={"extra_data": {
                "method": request.method,
                "path": path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "requester_id": requester_id,
            }},
        )
        return response

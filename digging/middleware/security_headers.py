"""Response hardening headers; credential responses are marked uncacheable."""

from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

BASE_HEADERS: dict[str, str] = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
}
NO_STORE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security headers to every response, plus no-store on /auth routes."""

    def __init__(self, app, no_store_prefix: str = "/auth") -> None:
        super().__init__(app)
        self._no_store_prefix = no_store_prefix

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers.update(BASE_HEADERS)
        # Token pairs and profiles must never land in a shared cache.
        if request.url.path.startswith(self._no_store_prefix):
            response.headers.update(NO_STORE_HEADERS)
        return response

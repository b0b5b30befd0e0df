"""Redis-backed sliding-window rate limiting for the credential endpoints."""

from __future__ import annotations

import time
from typing import Protocol
from uuid import uuid4

import structlog
from fastapi import Request
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from digging.config import RateLimitSettings

logger = structlog.get_logger(__name__)
_WINDOW_SECONDS = 60


class SlidingWindowRedis(Protocol):
    """Redis operations used by the rate limiter."""

    async def zremrangebyscore(self, key: str, min: str | int, max: int) -> int: ...

    async def zcard(self, key: str) -> int: ...

    async def zadd(self, key: str, mapping: dict[str, int]) -> int: ...

    async def expire(self, key: str, ttl_seconds: int) -> bool: ...


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply per-client, per-path request limits over a one-minute window."""

    def __init__(self, app, redis_client: SlidingWindowRedis, limits: RateLimitSettings) -> None:
        super().__init__(app)
        self._redis = redis_client
        self._default_limit = limits.default_requests_per_minute
        self._path_limits = {
            "/auth/login": limits.login_requests_per_minute,
            "/auth/reissue": limits.reissue_requests_per_minute,
        }

    async def dispatch(self, request: Request, call_next) -> Response:
        """Reject requests exceeding the threshold; fail open when Redis is down."""
        path = request.url.path
        limit = self._path_limits.get(path, self._default_limit)
        bucket_key = f"rate_limit:{path}:{self._client_id(request)}"
        now_ms = int(time.time() * 1000)

        try:
            await self._redis.zremrangebyscore(bucket_key, "-inf", now_ms - _WINDOW_SECONDS * 1000)
            if await self._redis.zcard(bucket_key) >= limit:
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded.", "code": "rate_limited"},
                )
            await self._redis.zadd(bucket_key, {f"{now_ms}:{uuid4()}": now_ms})
            await self._redis.expire(bucket_key, _WINDOW_SECONDS + 1)
        except RedisError:
            logger.warning("rate_limit_backend_unavailable", path=path, method=request.method)

        return await call_next(request)

    @staticmethod
    def _client_id(request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for", "").strip()
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        client = request.client
        return client.host if client else "unknown"

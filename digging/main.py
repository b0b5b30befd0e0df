"""FastAPI application factory."""

from fastapi import FastAPI

from digging.config import configure_structlog, get_settings
from digging.core.sessions import get_redis_client
from digging.error_handlers import register_exception_handlers
from digging.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from digging.routers import auth, health


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_structlog(settings)

    app = FastAPI(title=settings.app.service)
    register_exception_handlers(app, environment=settings.app.environment)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        redis_client=get_redis_client(),
        limits=settings.rate_limit,
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(auth.router)
    app.include_router(health.router)
    return app


app = create_app()

"""Liveness and readiness of the session backends."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from digging.core.sessions import get_redis_client
from digging.db.session import get_engine
from digging.models.session import RefreshSession

router = APIRouter(prefix="/health", tags=["health"])
logger = structlog.get_logger(__name__)


async def check_postgres_ready() -> bool:
    """True when the refresh session table is migrated and queryable."""
    statement = select(RefreshSession.username).limit(1)
    try:
        async with get_engine().connect() as connection:
            await connection.execute(statement)
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("health.session_table_unavailable", error=str(exc))
        return False
    return True


async def check_redis_ready() -> bool:
    """True when the access token blocklist backend answers PING."""
    try:
        return bool(await get_redis_client().ping())
    except (RedisError, OSError) as exc:
        logger.warning("health.blocklist_unavailable", error=str(exc))
        return False


@router.get("/live")
async def live() -> dict[str, str]:
    return {"status": "live"}


@router.get("/ready")
async def ready(
    postgres_ready: Annotated[bool, Depends(check_postgres_ready)],
    redis_ready: Annotated[bool, Depends(check_redis_ready)],
) -> dict[str, str]:
    """Ready only when both the session table and the blocklist can be reached."""
    if not (postgres_ready and redis_ready):
        raise HTTPException(
            status_code=503,
            detail={"detail": "Service not ready.", "code": "session_backend_unavailable"},
        )
    return {"status": "ready"}

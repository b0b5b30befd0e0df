"""Refresh session persistence and Redis-backed access token blocklist."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from hashlib import sha256

from redis import asyncio as redis_async
from redis.asyncio.client import Redis
from redis.exceptions import RedisError
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from digging.config import get_settings
from digging.core.errors import SessionBackendError
from digging.core.jwt import Clock, utc_now
from digging.models.session import RefreshSession


def hash_refresh_token(raw_token: str) -> str:
    """Hash token with SHA-256 for persistent storage."""
    return sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SessionRecord:
    """Snapshot of the stored refresh session of one user."""

    username: str
    hashed_refresh_token: str
    created_at: datetime
    updated_at: datetime
    access_token_expires_at: datetime | None

    def matches(self, raw_refresh_token: str) -> bool:
        """Return True when the raw token is the one currently stored."""
        return hmac.compare_digest(
            self.hashed_refresh_token, hash_refresh_token(raw_refresh_token)
        )

    @classmethod
    def from_row(cls, row: RefreshSession) -> SessionRecord:
        return cls(
            username=row.username,
            hashed_refresh_token=row.hashed_refresh_token,
            created_at=row.created_at,
            updated_at=row.updated_at,
            access_token_expires_at=row.access_token_expires_at,
        )


class RefreshSessionStore:
    """One refresh session per username, plus revoked access token JTIs in Redis."""

    def __init__(self, redis_client: Redis, clock: Clock = utc_now) -> None:
        self._redis = redis_client
        self._clock = clock

    async def save(
        self,
        db_session: AsyncSession,
        username: str,
        refresh_token: str,
        access_token_expires_at: datetime | None,
    ) -> SessionRecord:
        """Insert or overwrite the session row of a user in a single statement."""
        now = self._clock()
        hashed = hash_refresh_token(refresh_token)
        statement = (
            pg_insert(RefreshSession)
            .values(
                username=username,
                hashed_refresh_token=hashed,
                created_at=now,
                updated_at=now,
                access_token_expires_at=access_token_expires_at,
            )
            .on_conflict_do_update(
                index_elements=[RefreshSession.username],
                set_={
                    "hashed_refresh_token": hashed,
                    "created_at": now,
                    "updated_at": now,
                    "access_token_expires_at": access_token_expires_at,
                },
            )
        )
        try:
            await db_session.execute(statement)
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return SessionRecord(
            username=username,
            hashed_refresh_token=hashed,
            created_at=now,
            updated_at=now,
            access_token_expires_at=access_token_expires_at,
        )

    async def find_by_username(
        self, db_session: AsyncSession, username: str
    ) -> SessionRecord | None:
        """Return the stored session, or None when the user is logged out."""
        statement = select(RefreshSession).where(RefreshSession.username == username)
        result = await db_session.execute(statement)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return SessionRecord.from_row(row)

    async def compare_and_swap(
        self,
        db_session: AsyncSession,
        username: str,
        expected_refresh_token: str,
        new_refresh_token: str,
        access_token_expires_at: datetime | None,
    ) -> bool:
        """Replace the stored token only if it still equals the expected one."""
        statement = (
            update(RefreshSession)
            .where(
                RefreshSession.username == username,
                RefreshSession.hashed_refresh_token == hash_refresh_token(expected_refresh_token),
            )
            .values(
                hashed_refresh_token=hash_refresh_token(new_refresh_token),
                updated_at=self._clock(),
                access_token_expires_at=access_token_expires_at,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await db_session.execute(statement)
        except Exception:
            await db_session.rollback()
            raise
        if result.rowcount != 1:
            await db_session.rollback()
            return False
        await db_session.commit()
        return True

    async def delete_by_username(self, db_session: AsyncSession, username: str) -> bool:
        """Remove the session row; returns False when none existed."""
        try:
            result = await db_session.execute(self._delete_statement(username))
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return result.rowcount > 0

    async def revoke_session(
        self,
        db_session: AsyncSession,
        username: str,
        access_jti: str,
        access_expiration_epoch: int,
    ) -> bool:
        """Delete the session row and blocklist the access token in one unit.

        The delete is committed only after the blocklist write succeeds. Returns False,
        with nothing written, when the user has no session.
        """
        try:
            result = await db_session.execute(self._delete_statement(username))
            if result.rowcount == 0:
                await db_session.rollback()
                return False
            await self.revoke_access_token(
                access_jti=access_jti, access_expiration_epoch=access_expiration_epoch
            )
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return True

    async def revoke_access_token(self, access_jti: str, access_expiration_epoch: int) -> None:
        """Blocklist an access token JTI until the token would have expired anyway."""
        key = self._blocklist_key(access_jti)
        ttl_seconds = self._remaining_lifetime_seconds(access_expiration_epoch)
        try:
            await self._redis.setex(key, ttl_seconds, "1")
        except RedisError as exc:
            raise SessionBackendError() from exc

    async def is_access_token_revoked(self, access_jti: str) -> bool:
        """Return True for blocklisted JTIs; fail closed when Redis is down."""
        try:
            value = await self._redis.get(self._blocklist_key(access_jti))
        except RedisError as exc:
            raise SessionBackendError() from exc
        return value is not None

    @staticmethod
    def _delete_statement(username: str):
        return (
            delete(RefreshSession)
            .where(RefreshSession.username == username)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _blocklist_key(access_jti: str) -> str:
        return f"blocklist:jti:{access_jti}"

    def _remaining_lifetime_seconds(self, expiration_epoch: int) -> int:
        """Compute remaining lifetime for blocklist TTL."""
        now_epoch = int(self._clock().timestamp())
        return max(expiration_epoch - now_epoch, 1)


@lru_cache
def get_redis_client() -> Redis:
    """Create and cache Redis client for async session operations."""
    settings = get_settings()
    return redis_async.from_url(settings.redis.url, decode_responses=True)


@lru_cache
def get_session_store() -> RefreshSessionStore:
    """Create and cache the refresh session store."""
    return RefreshSessionStore(redis_client=get_redis_client())

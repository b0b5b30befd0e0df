"""Unit tests for refresh session persistence and the access token blocklist."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from hashlib import sha256
from typing import Any

import pytest
from redis.exceptions import RedisError
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from digging.core.errors import SessionBackendError
from digging.core.sessions import RefreshSessionStore, SessionRecord, hash_refresh_token
from digging.models.session import RefreshSession

NOW = datetime(2026, 5, 4, 10, 0, tzinfo=UTC)


class _FakeRedis:
    """Minimal async Redis stub used for blocklist tests."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail_get = False
        self.fail_setex = False

    async def get(self, key: str) -> str | None:
        """Return stored value for key."""
        if self.fail_get:
            raise RedisError("redis unavailable")
        return self.values.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        """Store value with TTL."""
        if self.fail_setex:
            raise RedisError("redis unavailable")
        self.values[key] = value
        self.ttls[key] = ttl
        return True


@dataclass
class _FakeResult:
    """Result stub exposing both rowcount and scalar access."""

    rowcount: int = 0
    row: RefreshSession | None = None

    def scalar_one_or_none(self) -> RefreshSession | None:
        return self.row


class _FakeDBSession:
    """Async DB session stub that records statements and replays queued results."""

    def __init__(self, results: list[_FakeResult] | None = None) -> None:
        self.statements: list[Any] = []
        self._results = list(results or [])
        self.fail_execute = False
        self.commit_count = 0
        self.rollback_count = 0

    async def execute(self, statement: Any) -> _FakeResult:
        """Capture the statement and return the next queued result."""
        self.statements.append(statement)
        if self.fail_execute:
            raise OperationalError("UPDATE", {}, Exception("connection lost"))
        if self._results:
            return self._results.pop(0)
        return _FakeResult()

    async def commit(self) -> None:
        """Count commits."""
        self.commit_count += 1

    async def rollback(self) -> None:
        """Count rollbacks."""
        self.rollback_count += 1


def _compiled_sql(statement: Any) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def _build_store(redis: _FakeRedis | None = None) -> RefreshSessionStore:
    return RefreshSessionStore(redis_client=redis or _FakeRedis(), clock=lambda: NOW)  # type: ignore[arg-type]


def test_hash_refresh_token_is_sha256_hex() -> None:
    assert hash_refresh_token("r1") == sha256(b"r1").hexdigest()


def test_session_record_matches_only_the_stored_token() -> None:
    record = SessionRecord(
        username="alice",
        hashed_refresh_token=hash_refresh_token("r1"),
        created_at=NOW,
        updated_at=NOW,
        access_token_expires_at=None,
    )

    assert record.matches("r1") is True
    assert record.matches("r2") is False


@pytest.mark.asyncio
async def test_save_upserts_hashed_token_and_commits() -> None:
    """Save issues a single INSERT .. ON CONFLICT and never stores the raw token."""
    db_session = _FakeDBSession()
    store = _build_store()
    expires_at = NOW + timedelta(minutes=30)

    record = await store.save(
        db_session=db_session,  # type: ignore[arg-type]
        username="alice",
        refresh_token="raw-refresh",
        access_token_expires_at=expires_at,
    )

    assert record.username == "alice"
    assert record.hashed_refresh_token == hash_refresh_token("raw-refresh")
    assert record.created_at == NOW
    assert record.updated_at == NOW
    assert record.access_token_expires_at == expires_at
    assert db_session.commit_count == 1
    assert len(db_session.statements) == 1
    sql = _compiled_sql(db_session.statements[0])
    assert "INSERT INTO refresh_sessions" in sql
    assert "ON CONFLICT (username) DO UPDATE" in sql


@pytest.mark.asyncio
async def test_save_rolls_back_when_execute_fails() -> None:
    db_session = _FakeDBSession()
    db_session.fail_execute = True
    store = _build_store()

    with pytest.raises(OperationalError):
        await store.save(
            db_session=db_session,  # type: ignore[arg-type]
            username="alice",
            refresh_token="raw-refresh",
            access_token_expires_at=None,
        )

    assert db_session.rollback_count == 1
    assert db_session.commit_count == 0


@pytest.mark.asyncio
async def test_find_by_username_returns_record_snapshot() -> None:
    row = RefreshSession(
        username="alice",
        hashed_refresh_token=hash_refresh_token("r1"),
        created_at=NOW,
        updated_at=NOW,
        access_token_expires_at=NOW + timedelta(minutes=30),
    )
    db_session = _FakeDBSession(results=[_FakeResult(row=row)])

    record = await _build_store().find_by_username(
        db_session=db_session,  # type: ignore[arg-type]
        username="alice",
    )

    assert record is not None
    assert record.username == "alice"
    assert record.matches("r1")


@pytest.mark.asyncio
async def test_find_by_username_returns_none_when_logged_out() -> None:
    db_session = _FakeDBSession(results=[_FakeResult(row=None)])

    record = await _build_store().find_by_username(
        db_session=db_session,  # type: ignore[arg-type]
        username="alice",
    )

    assert record is None


@pytest.mark.asyncio
async def test_compare_and_swap_commits_when_one_row_matches() -> None:
    db_session = _FakeDBSession(results=[_FakeResult(rowcount=1)])

    swapped = await _build_store().compare_and_swap(
        db_session=db_session,  # type: ignore[arg-type]
        username="alice",
        expected_refresh_token="r1",
        new_refresh_token="r2",
        access_token_expires_at=None,
    )

    assert swapped is True
    assert db_session.commit_count == 1
    assert db_session.rollback_count == 0
    statement = db_session.statements[0]
    params = statement.compile(dialect=postgresql.dialect()).params
    assert hash_refresh_token("r1") in params.values()
    assert hash_refresh_token("r2") in params.values()
    assert "r1" not in params.values()


@pytest.mark.asyncio
async def test_compare_and_swap_rolls_back_when_token_already_rotated() -> None:
    """A stale expected token updates nothing and reports failure."""
    db_session = _FakeDBSession(results=[_FakeResult(rowcount=0)])

    swapped = await _build_store().compare_and_swap(
        db_session=db_session,  # type: ignore[arg-type]
        username="alice",
        expected_refresh_token="stale",
        new_refresh_token="r3",
        access_token_expires_at=None,
    )

    assert swapped is False
    assert db_session.commit_count == 0
    assert db_session.rollback_count == 1


@pytest.mark.asyncio
async def test_delete_by_username_reports_whether_a_row_existed() -> None:
    db_session = _FakeDBSession(results=[_FakeResult(rowcount=1), _FakeResult(rowcount=0)])
    store = _build_store()

    first = await store.delete_by_username(db_session=db_session, username="alice")  # type: ignore[arg-type]
    second = await store.delete_by_username(db_session=db_session, username="alice")  # type: ignore[arg-type]

    assert first is True
    assert second is False
    assert db_session.commit_count == 2
    assert "DELETE FROM refresh_sessions" in _compiled_sql(db_session.statements[0])


@pytest.mark.asyncio
async def test_revoke_session_commits_delete_after_blocklisting() -> None:
    redis = _FakeRedis()
    db_session = _FakeDBSession(results=[_FakeResult(rowcount=1)])

    revoked = await _build_store(redis).revoke_session(
        db_session=db_session,  # type: ignore[arg-type]
        username="alice",
        access_jti="jti-1",
        access_expiration_epoch=int(NOW.timestamp()) + 60,
    )

    assert revoked is True
    assert redis.values["blocklist:jti:jti-1"] == "1"
    assert db_session.commit_count == 1
    assert db_session.rollback_count == 0
    assert "DELETE FROM refresh_sessions" in _compiled_sql(db_session.statements[0])


@pytest.mark.asyncio
async def test_revoke_session_rolls_back_delete_when_redis_fails() -> None:
    """A failed blocklist write leaves the session row in place."""
    redis = _FakeRedis()
    redis.fail_setex = True
    db_session = _FakeDBSession(results=[_FakeResult(rowcount=1)])

    with pytest.raises(SessionBackendError):
        await _build_store(redis).revoke_session(
            db_session=db_session,  # type: ignore[arg-type]
            username="alice",
            access_jti="jti-1",
            access_expiration_epoch=int(NOW.timestamp()) + 60,
        )

    assert db_session.commit_count == 0
    assert db_session.rollback_count == 1
    assert redis.values == {}


@pytest.mark.asyncio
async def test_revoke_session_without_row_writes_nothing() -> None:
    redis = _FakeRedis()
    db_session = _FakeDBSession(results=[_FakeResult(rowcount=0)])

    revoked = await _build_store(redis).revoke_session(
        db_session=db_session,  # type: ignore[arg-type]
        username="alice",
        access_jti="jti-1",
        access_expiration_epoch=int(NOW.timestamp()) + 60,
    )

    assert revoked is False
    assert db_session.commit_count == 0
    assert db_session.rollback_count == 1
    assert redis.values == {}


@pytest.mark.asyncio
async def test_revoke_access_token_sets_blocklist_entry_with_remaining_ttl() -> None:
    redis = _FakeRedis()
    store = _build_store(redis)
    expiration_epoch = int(NOW.timestamp()) + 120

    await store.revoke_access_token(access_jti="jti-1", access_expiration_epoch=expiration_epoch)

    assert redis.values["blocklist:jti:jti-1"] == "1"
    assert redis.ttls["blocklist:jti:jti-1"] == 120
    assert await store.is_access_token_revoked("jti-1") is True
    assert await store.is_access_token_revoked("jti-2") is False


@pytest.mark.asyncio
async def test_revoke_access_token_keeps_minimum_ttl_for_expired_tokens() -> None:
    redis = _FakeRedis()
    store = _build_store(redis)

    await store.revoke_access_token(
        access_jti="jti-1", access_expiration_epoch=int(NOW.timestamp()) - 30
    )

    assert redis.ttls["blocklist:jti:jti-1"] == 1


@pytest.mark.asyncio
async def test_revoke_access_token_raises_backend_error_when_redis_fails() -> None:
    redis = _FakeRedis()
    redis.fail_setex = True

    with pytest.raises(SessionBackendError):
        await _build_store(redis).revoke_access_token(
            access_jti="jti-1", access_expiration_epoch=int(NOW.timestamp()) + 60
        )


@pytest.mark.asyncio
async def test_is_access_token_revoked_fails_closed_when_redis_fails() -> None:
    redis = _FakeRedis()
    redis.fail_get = True

    with pytest.raises(SessionBackendError):
        await _build_store(redis).is_access_token_revoked("jti-1")

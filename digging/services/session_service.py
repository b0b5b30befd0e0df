"""Login, token reissue, session lookup and logout orchestration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from digging.core.errors import (
    AuthenticationError,
    InvalidTokenError,
    SessionNotFoundError,
    TokenMismatchError,
)
from digging.core.sessions import RefreshSessionStore, SessionRecord, get_session_store
from digging.models.user import User
from digging.services.token_service import (
    AuthenticatedIdentity,
    TokenPair,
    TokenService,
    get_token_service,
)
from digging.services.user_service import UserService

logger = structlog.get_logger(__name__)


class CredentialStore(Protocol):
    """User lookups and password verification needed by the coordinator."""

    async def authenticate_user(
        self, db_session: AsyncSession, username: str, password: str
    ) -> User | None: ...

    async def get_user_by_username(
        self, db_session: AsyncSession, username: str
    ) -> User | None: ...


@dataclass(frozen=True)
class SessionInfo:
    """User profile overlaid with the timestamps of its refresh session."""

    user_id: int
    username: str
    email: str | None
    oauth_id: str | None
    provider: str | None
    interest: str | None
    activated: bool
    authorities: tuple[str, ...]
    created_at: datetime
    updated_at: datetime
    refresh_token_created_at: datetime
    refresh_token_updated_at: datetime
    access_token_expires_at: datetime | None


class SessionService:
    """Drives the unauthenticated -> authenticated -> rotated session flow."""

    def __init__(
        self,
        user_service: CredentialStore,
        token_service: TokenService,
        session_store: RefreshSessionStore,
    ) -> None:
        self._user_service = user_service
        self._token_service = token_service
        self._session_store = session_store

    async def login(self, db_session: AsyncSession, username: str, password: str) -> TokenPair:
        """Verify credentials, issue a token pair and overwrite the user's session."""
        user = await self._user_service.authenticate_user(
            db_session=db_session, username=username, password=password
        )
        if user is None:
            logger.info("session.login_rejected", username=username)
            raise AuthenticationError()

        identity = AuthenticatedIdentity.of(user.username, user.authority_names)
        token_pair = self._token_service.create_token(identity)
        await self._session_store.save(
            db_session=db_session,
            username=identity.username,
            refresh_token=token_pair.refresh_token,
            access_token_expires_at=token_pair.access_token_expires_at,
        )
        logger.info("session.login", username=identity.username)
        return token_pair

    async def reissue(
        self, db_session: AsyncSession, access_token: str, refresh_token: str
    ) -> TokenPair:
        """Exchange a matching refresh token for a new pair, rotating the stored one."""
        if not self._token_service.validate_token(refresh_token, expected_type="refresh"):
            logger.info("session.reissue_rejected", reason="invalid_refresh_token")
            raise InvalidTokenError("Refresh token is invalid.")

        identity = self._token_service.get_authentication(access_token)

        record = await self._session_store.find_by_username(
            db_session=db_session, username=identity.username
        )
        if record is None:
            logger.info(
                "session.reissue_rejected", username=identity.username, reason="logged_out"
            )
            raise SessionNotFoundError()
        if not record.matches(refresh_token):
            logger.warning(
                "session.reissue_rejected", username=identity.username, reason="token_mismatch"
            )
            raise TokenMismatchError()

        token_pair = self._token_service.create_token(identity)
        swapped = await self._session_store.compare_and_swap(
            db_session=db_session,
            username=identity.username,
            expected_refresh_token=refresh_token,
            new_refresh_token=token_pair.refresh_token,
            access_token_expires_at=token_pair.access_token_expires_at,
        )
        if not swapped:
            logger.warning(
                "session.reissue_rejected", username=identity.username, reason="concurrent_rotation"
            )
            raise TokenMismatchError()

        logger.info("session.reissued", username=identity.username)
        return token_pair

    async def get_current_session_info(
        self, db_session: AsyncSession, identity: AuthenticatedIdentity
    ) -> SessionInfo:
        """Return the caller's profile together with its refresh session timestamps."""
        user = await self._user_service.get_user_by_username(
            db_session=db_session, username=identity.username
        )
        if user is None:
            raise AuthenticationError("User not found.")
        record = await self._require_session(db_session, identity.username)
        return SessionInfo(
            user_id=user.id,
            username=user.username,
            email=user.email,
            oauth_id=user.oauth_id,
            provider=user.provider,
            interest=user.interest,
            activated=user.activated,
            authorities=tuple(user.authority_names),
            created_at=user.created_at,
            updated_at=user.updated_at,
            refresh_token_created_at=record.created_at,
            refresh_token_updated_at=record.updated_at,
            access_token_expires_at=record.access_token_expires_at,
        )

    async def logout(
        self,
        db_session: AsyncSession,
        identity: AuthenticatedIdentity,
        access_jti: str,
        access_expiration_epoch: int,
    ) -> None:
        """Delete the session record and blocklist the presented access token."""
        revoked = await self._session_store.revoke_session(
            db_session=db_session,
            username=identity.username,
            access_jti=access_jti,
            access_expiration_epoch=access_expiration_epoch,
        )
        if not revoked:
            raise SessionNotFoundError()
        logger.info("session.logout", username=identity.username)

    async def _require_session(self, db_session: AsyncSession, username: str) -> SessionRecord:
        record = await self._session_store.find_by_username(
            db_session=db_session, username=username
        )
        if record is None:
            raise SessionNotFoundError()
        return record


@lru_cache
def get_session_service() -> SessionService:
    """Create and cache the session coordinator."""
    return SessionService(
        user_service=UserService(),
        token_service=get_token_service(),
        session_store=get_session_store(),
    )

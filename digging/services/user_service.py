"""User lookup, signup and password validation services."""

from __future__ import annotations

from datetime import UTC, datetime

import structlog
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from digging.core.errors import DuplicateMemberError
from digging.models.user import Authority, User

DEFAULT_AUTHORITY = "ROLE_USER"

logger = structlog.get_logger(__name__)


class UserService:
    """Credential store: user retrieval, signup and password verification."""

    def __init__(self) -> None:
        self._password_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

    async def get_user_by_username(self, db_session: AsyncSession, username: str) -> User | None:
        """Fetch a user and its authorities by exact username."""
        statement = select(User).where(User.username == username)
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def get_user_by_oauth_id(self, db_session: AsyncSession, oauth_id: str) -> User | None:
        """Fetch a user and its authorities by OAuth subject id."""
        statement = select(User).where(User.oauth_id == oauth_id)
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def authenticate_user(
        self,
        db_session: AsyncSession,
        username: str,
        password: str,
    ) -> User | None:
        """Return the activated user whose password matches, else None."""
        user = await self.get_user_by_username(db_session=db_session, username=username)
        if user is None or not user.activated:
            self._password_context.dummy_verify()
            return None
        if not self.verify_password(password=password, password_hash=user.password_hash):
            return None
        return user

    async def signup(
        self,
        db_session: AsyncSession,
        oauth_id: str | None,
        username: str,
        email: str | None,
        provider: str | None,
        password: str | None = None,
    ) -> User:
        """Register a member, suffixing the username when it is already taken.

        OAuth-derived signups carry no password; their credential is the requested
        username, which is what the client presents at login.
        """
        if oauth_id is not None:
            existing = await self.get_user_by_oauth_id(db_session=db_session, oauth_id=oauth_id)
            if existing is not None:
                raise DuplicateMemberError(
                    f"Member already registered: username={existing.username}, "
                    f"provider={existing.provider}."
                )

        same_prefix_count = await self._count_usernames_starting_with(db_session, username)
        final_username = f"{username}{same_prefix_count + 1}" if same_prefix_count else username

        now = datetime.now(UTC)
        user = User(
            username=final_username,
            password_hash=self.hash_password(password if password is not None else username),
            email=email,
            provider=provider,
            oauth_id=oauth_id,
            activated=True,
            created_at=now,
            updated_at=now,
        )
        user.authorities = [await self._get_or_create_authority(db_session, DEFAULT_AUTHORITY)]
        db_session.add(user)
        try:
            await db_session.flush()
        except IntegrityError as exc:
            await db_session.rollback()
            raise DuplicateMemberError(
                f"Member already registered: username={final_username}, provider={provider}."
            ) from exc
        await db_session.commit()
        logger.info(
            "user.signup",
            username=final_username,
            provider=provider,
            oauth=oauth_id is not None,
        )
        return user

    def hash_password(self, password: str) -> str:
        """Generate a bcrypt hash for the provided password."""
        return str(self._password_context.hash(password))

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a plaintext password against the stored bcrypt hash."""
        return bool(self._password_context.verify(password, password_hash))

    async def _count_usernames_starting_with(
        self, db_session: AsyncSession, username: str
    ) -> int:
        statement = (
            select(func.count())
            .select_from(User)
            .where(User.username.startswith(username, autoescape=True))
        )
        result = await db_session.execute(statement)
        return int(result.scalar_one())

    async def _get_or_create_authority(
        self, db_session: AsyncSession, authority_name: str
    ) -> Authority:
        authority = await db_session.get(Authority, authority_name)
        if authority is None:
            authority = Authority(authority_name=authority_name)
            db_session.add(authority)
        return authority


def get_user_service() -> UserService:
    """Provide the user service dependency."""
    return UserService()

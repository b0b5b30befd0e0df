"""Shared FastAPI dependency helpers."""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from digging.core.errors import InvalidTokenError
from digging.core.sessions import RefreshSessionStore, get_session_store
from digging.db.session import get_db_session
from digging.services.token_service import (
    AuthenticatedIdentity,
    TokenService,
    get_token_service,
)


@dataclass(frozen=True)
class CurrentPrincipal:
    """Verified caller of a protected route."""

    identity: AuthenticatedIdentity
    access_jti: str
    access_expiration_epoch: int


async def get_database_session() -> AsyncGenerator[AsyncSession, None]:
    """Expose the request-scoped async database session dependency."""
    async for session in get_db_session():
        yield session


def extract_bearer_token(request: Request) -> str | None:
    """Extract bearer token from Authorization header."""
    authorization = request.headers.get("authorization", "").strip()
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    cleaned = token.strip()
    return cleaned or None


async def get_current_principal(
    request: Request,
    token_service: Annotated[TokenService, Depends(get_token_service)],
    session_store: Annotated[RefreshSessionStore, Depends(get_session_store)],
) -> CurrentPrincipal:
    """Resolve the caller from its access token; revoked tokens are rejected."""
    access_token = extract_bearer_token(request)
    if access_token is None:
        raise InvalidTokenError()
    identity, claims = token_service.verify_access_token(access_token)
    access_jti = str(claims["jti"])
    if await session_store.is_access_token_revoked(access_jti):
        raise InvalidTokenError("Token has been revoked.")
    request.state.user = {"username": identity.username}
    return CurrentPrincipal(
        identity=identity,
        access_jti=access_jti,
        access_expiration_epoch=int(claims["exp"]),
    )

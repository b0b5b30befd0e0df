"""Account and session routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from digging.dependencies import CurrentPrincipal, get_current_principal, get_database_session
from digging.schemas.token import ReissueRequest, TokenPairResponse
from digging.schemas.user import LoginRequest, SessionInfoResponse, SignupRequest, UserResponse
from digging.services.session_service import SessionService, get_session_service
from digging.services.token_service import TokenPair
from digging.services.user_service import UserService, get_user_service

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_pair_response(token_pair: TokenPair) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=token_pair.access_token,
        refresh_token=token_pair.refresh_token,
        access_token_expires_at=token_pair.access_token_expires_at,
    )


@router.post("/signup", response_model=UserResponse, status_code=201)
async def signup(
    payload: SignupRequest,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    user_service: Annotated[UserService, Depends(get_user_service)],
) -> UserResponse:
    """Register a member from a username or an OAuth-derived identity."""
    user = await user_service.signup(
        db_session=db_session,
        oauth_id=payload.oauth_id,
        username=payload.username,
        email=payload.email,
        provider=payload.provider,
        password=payload.password,
    )
    return UserResponse(
        user_id=user.id,
        username=user.username,
        email=user.email,
        oauth_id=user.oauth_id,
        provider=user.provider,
        activated=user.activated,
        authorities=user.authority_names,
        created_at=user.created_at,
    )


@router.post("/login", response_model=TokenPairResponse)
async def login(
    payload: LoginRequest,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    session_service: Annotated[SessionService, Depends(get_session_service)],
) -> TokenPairResponse:
    """Authenticate credentials and issue a JWT pair."""
    token_pair = await session_service.login(
        db_session=db_session,
        username=payload.username,
        password=payload.password,
    )
    return _token_pair_response(token_pair)


@router.post("/reissue", response_model=TokenPairResponse)
async def reissue(
    payload: ReissueRequest,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    session_service: Annotated[SessionService, Depends(get_session_service)],
) -> TokenPairResponse:
    """Rotate the refresh token and issue a new token pair."""
    token_pair = await session_service.reissue(
        db_session=db_session,
        access_token=payload.access_token,
        refresh_token=payload.refresh_token,
    )
    return _token_pair_response(token_pair)


@router.get("/me", response_model=SessionInfoResponse)
async def me(
    principal: Annotated[CurrentPrincipal, Depends(get_current_principal)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    session_service: Annotated[SessionService, Depends(get_session_service)],
) -> SessionInfoResponse:
    """Return the caller's profile and refresh session timestamps."""
    info = await session_service.get_current_session_info(
        db_session=db_session, identity=principal.identity
    )
    return SessionInfoResponse(
        user_id=info.user_id,
        username=info.username,
        email=info.email,
        oauth_id=info.oauth_id,
        provider=info.provider,
        interest=info.interest,
        activated=info.activated,
        authorities=list(info.authorities),
        created_at=info.created_at,
        updated_at=info.updated_at,
        refresh_token_created_at=info.refresh_token_created_at,
        refresh_token_updated_at=info.refresh_token_updated_at,
        access_token_expires_at=info.access_token_expires_at,
    )


@router.post("/logout", status_code=204, response_model=None)
async def logout(
    principal: Annotated[CurrentPrincipal, Depends(get_current_principal)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    session_service: Annotated[SessionService, Depends(get_session_service)],
) -> Response:
    """Delete the caller's session and revoke the presented access token."""
    await session_service.logout(
        db_session=db_session,
        identity=principal.identity,
        access_jti=principal.access_jti,
        access_expiration_epoch=principal.access_expiration_epoch,
    )
    return Response(status_code=204)

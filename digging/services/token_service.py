"""Token pair issuance and identity extraction."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any

from digging.config import get_settings
from digging.core.errors import InvalidTokenError
from digging.core.jwt import JWTService, TokenType, get_jwt_service

AUTHORITIES_CLAIM = "auth"


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Username plus granted authorities, as carried by an access token."""

    username: str
    authorities: tuple[str, ...] = ()

    @classmethod
    def of(cls, username: str, authorities: Iterable[str] = ()) -> AuthenticatedIdentity:
        """Build an identity with a sorted, de-duplicated authority tuple."""
        return cls(username=username, authorities=tuple(sorted(set(authorities))))


@dataclass(frozen=True)
class TokenPair:
    """Returned access and refresh JWT pair."""

    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    grant_type: str = "bearer"


class TokenService:
    """Creates, validates and decodes the access/refresh tokens of a session."""

    def __init__(
        self,
        jwt_service: JWTService,
        access_token_ttl_seconds: int,
        refresh_token_ttl_seconds: int,
    ) -> None:
        self._jwt_service = jwt_service
        self._access_token_ttl_seconds = access_token_ttl_seconds
        self._refresh_token_ttl_seconds = refresh_token_ttl_seconds

    def create_token(self, identity: AuthenticatedIdentity) -> TokenPair:
        """Issue access and refresh tokens bound to the identity."""
        if not identity.username:
            raise ValueError("Cannot issue tokens for an empty username.")
        issued_at = self._jwt_service.now()
        access_token = self._jwt_service.issue_token(
            subject=identity.username,
            token_type="access",
            expires_in_seconds=self._access_token_ttl_seconds,
            additional_claims={AUTHORITIES_CLAIM: ",".join(identity.authorities)},
        )
        refresh_token = self._jwt_service.issue_token(
            subject=identity.username,
            token_type="refresh",
            expires_in_seconds=self._refresh_token_ttl_seconds,
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_at=issued_at
            + timedelta(seconds=self._access_token_ttl_seconds),
        )

    def validate_token(self, token: str, expected_type: TokenType | None = None) -> bool:
        """Return False for any malformed, unsigned, expired or mistyped token."""
        try:
            self._jwt_service.verify_token(token, expected_type=expected_type)
        except InvalidTokenError:
            return False
        except (TypeError, ValueError, AttributeError):
            return False
        return True

    def get_authentication(self, access_token: str) -> AuthenticatedIdentity:
        """Recover the identity of an access token without checking its expiry."""
        claims = self._jwt_service.verify_token(
            access_token, expected_type="access", verify_exp=False
        )
        return self.identity_from_claims(claims)

    def verify_access_token(
        self, access_token: str
    ) -> tuple[AuthenticatedIdentity, dict[str, Any]]:
        """Fully verify an access token presented to a protected route."""
        claims = self._jwt_service.verify_token(access_token, expected_type="access")
        return self.identity_from_claims(claims), claims

    @staticmethod
    def identity_from_claims(claims: dict[str, Any]) -> AuthenticatedIdentity:
        raw_authorities = claims.get(AUTHORITIES_CLAIM)
        if not isinstance(raw_authorities, str):
            raise InvalidTokenError("Token carries no authorities.")
        username = str(claims.get("sub", "")).strip()
        if not username:
            raise InvalidTokenError()
        authorities = [item.strip() for item in raw_authorities.split(",") if item.strip()]
        return AuthenticatedIdentity.of(username, authorities)


@lru_cache
def get_token_service() -> TokenService:
    """Build and cache token service based on application settings."""
    settings = get_settings()
    return TokenService(
        jwt_service=get_jwt_service(),
        access_token_ttl_seconds=settings.jwt.access_token_ttl_seconds,
        refresh_token_ttl_seconds=settings.jwt.refresh_token_ttl_seconds,
    )

"""RS256 JWT signing and verification."""

from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any, Literal
from uuid import uuid4

from jose import jwt
from jose.exceptions import JWTError

from digging.config import get_settings
from digging.core.errors import InvalidTokenError

TokenType = Literal["access", "refresh"]
JWT_ALGORITHM = "RS256"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


class JWTService:
    """Issue and verify RS256 tokens against a single keypair and an injectable clock."""

    def __init__(
        self,
        private_key_pem: str,
        public_key_pem: str,
        clock: Clock = utc_now,
        jti_factory: Callable[[], str] | None = None,
    ) -> None:
        self._private_key_pem = private_key_pem
        self._public_key_pem = public_key_pem
        self._clock = clock
        self._jti_factory = jti_factory or (lambda: str(uuid4()))
        self._kid = self.calculate_kid(public_key_pem)

    def now(self) -> datetime:
        """Return the current time according to the configured clock."""
        return self._clock()

    def issue_token(
        self,
        subject: str,
        token_type: TokenType,
        expires_in_seconds: int,
        additional_claims: dict[str, Any] | None = None,
    ) -> str:
        """Issue a signed JWT with required claims."""
        issued_at = self._clock()
        expires_at = issued_at + timedelta(seconds=expires_in_seconds)
        payload: dict[str, Any] = {
            "jti": self._jti_factory(),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "sub": subject,
            "type": token_type,
        }
        if additional_claims:
            for key, value in additional_claims.items():
                if key in payload:
                    continue
                payload[key] = value
        return jwt.encode(
            payload,
            self._private_key_pem,
            algorithm=JWT_ALGORITHM,
            headers={"kid": self._kid},
        )

    def verify_token(
        self,
        token: str,
        expected_type: TokenType | None = None,
        verify_exp: bool = True,
    ) -> dict[str, Any]:
        """Verify signature and required claims, optionally skipping the expiry check."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise InvalidTokenError() from exc
        algorithm = str(header.get("alg", ""))
        if not hmac.compare_digest(algorithm, JWT_ALGORITHM):
            raise InvalidTokenError("Invalid token algorithm.")

        try:
            payload = jwt.decode(
                token,
                self._public_key_pem,
                algorithms=[JWT_ALGORITHM],
                options={
                    "verify_aud": False,
                    "verify_exp": False,
                    "require_jti": True,
                    "require_iat": True,
                    "require_exp": True,
                    "require_sub": True,
                },
            )
        except JWTError as exc:
            raise InvalidTokenError() from exc

        if verify_exp and int(payload["exp"]) <= int(self._clock().timestamp()):
            raise InvalidTokenError("Token has expired.", "token_expired")

        token_type = str(payload.get("type", ""))
        if token_type not in ("access", "refresh"):
            raise InvalidTokenError("Invalid token type.")
        if expected_type and not hmac.compare_digest(token_type, expected_type):
            raise InvalidTokenError("Invalid token type.")
        return payload

    @staticmethod
    def calculate_kid(public_key_pem: str) -> str:
        """Derive a deterministic key ID from the public key."""
        digest = hashlib.sha256(public_key_pem.encode("utf-8")).digest()
        return base64.urlsafe_b64encode(digest[:16]).rstrip(b"=").decode("ascii")


@lru_cache
def get_jwt_service() -> JWTService:
    """Build and cache the JWT service from application settings."""
    settings = get_settings()
    return JWTService(
        private_key_pem=settings.jwt.private_key_pem.get_secret_value(),
        public_key_pem=settings.jwt.public_key_pem.get_secret_value(),
    )

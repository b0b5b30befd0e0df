"""Typed failures raised by the account and session core."""

from __future__ import annotations


class AuthError(Exception):
    """Base class for failures surfaced to the HTTP boundary."""

    default_detail = "Request failed."
    default_code = "invalid_token"
    default_status_code = 401

    def __init__(
        self,
        detail: str | None = None,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.detail = detail or self.default_detail
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status_code
        super().__init__(self.detail)


class AuthenticationError(AuthError):
    """Credentials did not match an active user."""

    default_detail = "Invalid username or password."
    default_code = "invalid_credentials"


class InvalidTokenError(AuthError):
    """Token is malformed, unsigned, expired, or of the wrong type."""

    default_detail = "Invalid token."
    default_code = "invalid_token"


class SessionNotFoundError(AuthError):
    """No refresh session is stored for the user, i.e. the user is logged out."""

    default_detail = "User is logged out."
    default_code = "session_not_found"


class TokenMismatchError(AuthError):
    """Supplied refresh token is not the one currently stored for the user."""

    default_detail = "Refresh token does not match the active session."
    default_code = "token_mismatch"


class DuplicateMemberError(AuthError):
    """Signup conflicts with an already registered member."""

    default_detail = "Member is already registered."
    default_code = "duplicate_member"
    default_status_code = 409


class SessionBackendError(AuthError):
    """Session backend (Redis) could not be reached."""

    default_detail = "Session backend unavailable."
    default_code = "session_backend_unavailable"
    default_status_code = 503

"""Account request and response schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Username login request payload."""

    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=256)


class SignupRequest(BaseModel):
    """Signup payload; OAuth-derived signups omit the password."""

    oauth_id: str | None = Field(default=None, max_length=255)
    username: str = Field(min_length=1, max_length=90)
    email: str | None = Field(default=None, max_length=320)
    provider: str | None = Field(default=None, max_length=50)
    password: str | None = Field(default=None, min_length=8, max_length=72)


class UserResponse(BaseModel):
    """Registered member payload."""

    user_id: int
    username: str
    email: str | None
    oauth_id: str | None
    provider: str | None
    activated: bool
    authorities: list[str]
    created_at: datetime


class SessionInfoResponse(BaseModel):
    """Current member profile with refresh session timestamps."""

    user_id: int
    username: str
    email: str | None
    oauth_id: str | None
    provider: str | None
    interest: str | None
    activated: bool
    authorities: list[str]
    created_at: datetime
    updated_at: datetime
    refresh_token_created_at: datetime
    refresh_token_updated_at: datetime
    access_token_expires_at: datetime | None

"""Token request and response schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class TokenPairResponse(BaseModel):
    """Access/refresh token response payload."""

    grant_type: Literal["bearer"] = "bearer"
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime


class ReissueRequest(BaseModel):
    """Token reissue request payload."""

    access_token: str = Field(min_length=1, max_length=4096)
    refresh_token: str = Field(min_length=1, max_length=4096)

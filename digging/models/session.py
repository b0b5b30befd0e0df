"""Refresh session ORM model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from digging.db.base import Base, TimestampMixin


class RefreshSession(Base, TimestampMixin):
    """Current refresh token of a user; one row per username."""

    __tablename__ = "refresh_sessions"

    username: Mapped[str] = mapped_column(String(100), primary_key=True)
    hashed_refresh_token: Mapped[str] = mapped_column(String(64), nullable=False)
    access_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

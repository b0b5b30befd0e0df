"""User and authority ORM models."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship

from digging.db.base import Base, TimestampMixin

user_authority = Table(
    "user_authority",
    Base.metadata,
    Column(
        "user_id",
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "authority_name",
        String(50),
        ForeignKey("authority.authority_name", ondelete="RESTRICT"),
        primary_key=True,
    ),
)


class Authority(Base):
    """Granted role name, e.g. ROLE_USER."""

    __tablename__ = "authority"

    authority_name: Mapped[str] = mapped_column(String(50), primary_key=True)


class User(Base, TimestampMixin):
    """Account identity shared by password and OAuth-derived signups."""

    __tablename__ = "users"
    __table_args__ = (Index("ix_users_provider", "provider"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    oauth_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    interest: Mapped[str | None] = mapped_column(String(255), nullable=True)
    activated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    authorities: Mapped[list[Authority]] = relationship(
        secondary=user_authority,
        lazy="selectin",
    )

    @property
    def authority_names(self) -> list[str]:
        """Names of the granted authorities."""
        return sorted(authority.authority_name for authority in self.authorities)

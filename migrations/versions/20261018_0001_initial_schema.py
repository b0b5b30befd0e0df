"""Initial account and refresh session schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create users, authorities and refresh sessions."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("oauth_id", sa.String(length=255), nullable=True),
        sa.Column("provider", sa.String(length=50), nullable=True),
        sa.Column("interest", sa.String(length=255), nullable=True),
        sa.Column("activated", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("username", name=op.f("uq_users_username")),
        sa.UniqueConstraint("oauth_id", name=op.f("uq_users_oauth_id")),
    )
    op.create_index("ix_users_provider", "users", ["provider"], unique=False)

    op.create_table(
        "authority",
        sa.Column("authority_name", sa.String(length=50), nullable=False),
        sa.PrimaryKeyConstraint("authority_name", name="pk_authority"),
    )
    op.execute("INSERT INTO authority (authority_name) VALUES ('ROLE_USER'), ('ROLE_ADMIN')")

    op.create_table(
        "user_authority",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("authority_name", sa.String(length=50), nullable=False),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name=op.f("fk_user_authority_user_id_users"), ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["authority_name"],
            ["authority.authority_name"],
            name=op.f("fk_user_authority_authority_name_authority"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("user_id", "authority_name", name="pk_user_authority"),
    )

    op.create_table(
        "refresh_sessions",
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("hashed_refresh_token", sa.String(length=64), nullable=False),
        sa.Column("access_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("username", name="pk_refresh_sessions"),
    )


def downgrade() -> None:
    """Drop the initial schema."""
    op.drop_table("refresh_sessions")
    op.drop_table("user_authority")
    op.drop_table("authority")
    op.drop_index("ix_users_provider", table_name="users")
    op.drop_table("users")

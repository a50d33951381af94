"""auth schema: users, access/refresh tokens, email verification tokens

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def _user_fk() -> sa.Column:
    return sa.Column(
        "user_id",
        sa.String(length=36),
        sa.ForeignKey("users.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )


def _ensure_users(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "users"):
        return
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column(
            "role",
            sa.Enum("user", "admin", name="user_role"),
            nullable=False,
            server_default="user",
        ),
        sa.Column("email_verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_deleted_at", "users", ["deleted_at"], unique=False)


def _ensure_access_tokens(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "access_tokens"):
        return
    op.create_table(
        "access_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("identifier", sa.String(length=64), nullable=False),
        _user_fk(),
        sa.Column("scopes", sa.JSON(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_access_tokens_id", "access_tokens", ["id"], unique=False)
    op.create_index("ix_access_tokens_identifier", "access_tokens", ["identifier"], unique=True)
    op.create_index("ix_access_tokens_user_id", "access_tokens", ["user_id"], unique=False)
    op.create_index("ix_access_tokens_expires_at", "access_tokens", ["expires_at"], unique=False)


def _ensure_split_token_table(inspector: sa.Inspector, table_name: str, index_expiry: bool) -> None:
    if _table_exists(inspector, table_name):
        return
    op.create_table(
        table_name,
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("selector", sa.String(length=64), nullable=False),
        sa.Column("token_hash", sa.String(length=128), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index(f"ix_{table_name}_id", table_name, ["id"], unique=False)
    op.create_index(f"ix_{table_name}_user_id", table_name, ["user_id"], unique=False)
    op.create_index(f"ix_{table_name}_selector", table_name, ["selector"], unique=True)
    op.create_index(f"ix_{table_name}_user_id_expires_at", table_name, ["user_id", "expires_at"], unique=False)
    if index_expiry:
        op.create_index(f"ix_{table_name}_expires_at", table_name, ["expires_at"], unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    _ensure_users(sa.inspect(bind))
    _ensure_access_tokens(sa.inspect(bind))
    _ensure_split_token_table(sa.inspect(bind), "refresh_tokens", index_expiry=True)
    _ensure_split_token_table(sa.inspect(bind), "email_verification_tokens", index_expiry=False)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in ("email_verification_tokens", "refresh_tokens", "access_tokens", "users"):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
    sa.Enum(name="user_role").drop(bind, checkfirst=True)

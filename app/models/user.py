"""User model."""

from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIDMixin, TimestampMixin


class User(IntIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        # Live usernames are unique; soft-deleted rows keep theirs
        sa.Index(
            "uq_users_username_live",
            "username",
            unique=True,
            sqlite_where=sa.text("NOT is_deleted"),
            postgresql_where=sa.text("NOT is_deleted"),
        ),
    )

    username: str = Field(nullable=False, index=True)
    email: str = Field(nullable=False, index=True)
    phone: Optional[str] = None
    real_name: Optional[str] = None
    password_hash: str = Field(nullable=False)  # bcrypt
    role_id: Optional[int] = Field(default=None, foreign_key="roles.id", index=True)
    tenant_id: Optional[int] = Field(default=None, index=True)
    status: str = Field(default="active", nullable=False)  # active | inactive | locked
    # "metadata" is reserved on declarative classes
    meta: Optional[dict[str, Any]] = Field(
        default=None, sa_column=sa.Column("metadata", sa.JSON, nullable=True)
    )
    is_deleted: bool = Field(default=False, nullable=False, index=True)
    deleted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    created_by: Optional[int] = None
    updated_by: Optional[int] = None

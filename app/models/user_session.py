"""Login session model."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIDMixin, utcnow


class UserSession(IntIDMixin, SQLModel, table=True):
    __tablename__ = "user_sessions"

    session_id: str = Field(nullable=False, unique=True, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    device_id: Optional[str] = None
    device_type: Optional[str] = None
    device_name: Optional[str] = None
    platform: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    is_active: bool = Field(default=True, nullable=False)
    impersonator_id: Optional[int] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
    last_accessed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime())

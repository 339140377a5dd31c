"""Audit log model (append-only)."""

from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIDMixin, utcnow


class AuditLog(IntIDMixin, SQLModel, table=True):
    __tablename__ = "audit_logs"

    module: str = Field(nullable=False, index=True)
    action: str = Field(nullable=False, index=True)
    level: str = Field(default="info", nullable=False)
    result: str = Field(default="success", nullable=False)  # success | rejected | failure
    message: str = Field(nullable=False)
    operator_id: Optional[int] = Field(default=None, index=True)
    target_user_id: Optional[int] = Field(default=None, index=True)
    details: Optional[dict[str, Any]] = Field(default=None, sa_type=sa.JSON)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())

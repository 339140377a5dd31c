"""User-Organization membership (join table)."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIDMixin, utcnow


class UserOrganization(IntIDMixin, SQLModel, table=True):
    __tablename__ = "user_organizations"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "organization_id", name="uq_user_organization"),
    )

    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    organization_id: int = Field(foreign_key="organizations.id", nullable=False, index=True)
    position: str = Field(default="", nullable=False)
    is_main: bool = Field(default=False, nullable=False)
    joined_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())

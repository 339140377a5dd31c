"""Organization model."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IntIDMixin, TimestampMixin


class Organization(IntIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(nullable=False, index=True)
    code: str = Field(unique=True, nullable=False, index=True)
    parent_id: Optional[int] = Field(default=None, foreign_key="organizations.id")
    path: Optional[str] = None  # materialized ancestry, e.g. "/1/4/"
    status: str = Field(default="active", nullable=False)
    tenant_id: Optional[int] = Field(default=None, index=True)

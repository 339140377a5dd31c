"""Role model."""

from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIDMixin, TimestampMixin


class Role(IntIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        # At most one super role per tenant
        sa.Index(
            "uq_roles_super_per_tenant",
            "tenant_id",
            unique=True,
            sqlite_where=sa.text("is_super"),
            postgresql_where=sa.text("is_super"),
        ),
    )

    name: str = Field(nullable=False)
    code: str = Field(nullable=False, unique=True, index=True)
    is_super: bool = Field(default=False, nullable=False)  # unrestricted role
    tenant_id: Optional[int] = Field(default=None, index=True)
    description: Optional[str] = None

"""
Role lookup for the admin console.

GET /api/v1/roles — Roles an operator may see (own tenant plus global roles)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from account_admin_shared.schemas.users import RoleListResponse, RoleResponse
from app.core.auth import CurrentOperator, require_admin
from app.core.database import get_session
from app.models.role import Role

router = APIRouter()


@router.get("", response_model=RoleListResponse)
async def list_roles(
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(Role).order_by(Role.id)
    if not operator.is_super_admin:
        stmt = stmt.where(
            or_(Role.tenant_id.is_(None), Role.tenant_id == operator.tenant_id),
            Role.is_super == False,  # noqa: E712
        )
    result = await session.execute(stmt)
    return RoleListResponse(data=[RoleResponse.model_validate(r) for r in result.scalars().all()])

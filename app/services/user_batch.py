"""
Batch user operations: activate, deactivate, delete, assign / remove role.

Fail-fast: every target is run through the protection policy before
anything is written; one protected target aborts the whole batch.
"""

from __future__ import annotations

import structlog
from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from account_admin_shared.schemas.common import ProtectedOperation, UserStatus
from account_admin_shared.schemas.users import BatchOperation, BatchRequest
from app.core.auth import CurrentOperator
from app.core.config import get_settings
from app.models.base import utcnow
from app.models.role import Role
from app.models.user import User
from app.services import audit
from app.services.protection import AccountProtectionPolicy
from app.services.sessions import deactivate_user_sessions
from app.services.users import resolve_role, tenant_clause

log = structlog.get_logger()
settings = get_settings()

MODULE = "users.batch"


async def _visible_ids(
    session: AsyncSession, user_ids: list[int], operator: CurrentOperator
) -> list[int]:
    """Requested ids that exist, are live and visible to the operator, in request order."""
    stmt = select(User.id).where(User.id.in_(user_ids), User.is_deleted == False)  # noqa: E712
    clause = tenant_clause(operator)
    if clause is not None:
        stmt = stmt.where(clause)
    result = await session.execute(stmt)
    found = {row[0] for row in result.all()}
    return [uid for uid in user_ids if uid in found]


async def _values_for(
    session: AsyncSession, req: BatchRequest, operator: CurrentOperator
) -> dict:
    op = req.operation
    if op == BatchOperation.ACTIVATE:
        return {"status": UserStatus.ACTIVE.value}
    if op == BatchOperation.DEACTIVATE:
        return {"status": UserStatus.INACTIVE.value}
    if op == BatchOperation.DELETE:
        return {"is_deleted": True, "deleted_at": utcnow()}
    if op == BatchOperation.ASSIGN_ROLE:
        if not req.data or req.data.role_id is None:
            raise HTTPException(status_code=422, detail="role_id is required for assign_role")
        role = await resolve_role(session, req.data.role_id, operator)
        return {"role_id": role.id}
    # REMOVE_ROLE falls back to the configured default role
    default_role = await session.get(Role, settings.default_role_id)
    if not default_role:
        raise HTTPException(status_code=422, detail="Default role is not configured")
    return {"role_id": default_role.id}


async def _guard(
    policy: AccountProtectionPolicy, op: BatchOperation, target_ids: list[int]
) -> None:
    if op == BatchOperation.ACTIVATE:
        await policy.assert_batch_modifiable(
            target_ids, ProtectedOperation.DISABLE, requested_status=UserStatus.ACTIVE
        )
    elif op == BatchOperation.DEACTIVATE:
        await policy.assert_batch_modifiable(
            target_ids, ProtectedOperation.DISABLE, requested_status=UserStatus.INACTIVE
        )
    elif op == BatchOperation.DELETE:
        await policy.assert_batch_modifiable(target_ids, ProtectedOperation.DELETE)
    else:
        await policy.assert_batch_modifiable(target_ids, ProtectedOperation.ROLE_CHANGE)


async def run_batch(
    session: AsyncSession, req: BatchRequest, operator: CurrentOperator
) -> dict:
    """Apply one operation to a set of users. Unknown or hidden ids count as failed."""
    op = req.operation
    target_ids = await _visible_ids(session, req.user_ids, operator)

    policy = AccountProtectionPolicy.for_session(session)
    async with audit.audit_rejections(
        session, module=MODULE, action=op.value, operator_id=operator.user_id
    ):
        await _guard(policy, op, target_ids)

    if op == BatchOperation.DELETE and operator.user_id in target_ids:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    values = await _values_for(session, req, operator)

    if target_ids:
        await session.execute(
            update(User)
            .where(User.id.in_(target_ids))
            .values(updated_by=operator.user_id, updated_at=utcnow(), **values)
        )
        if op in (BatchOperation.DEACTIVATE, BatchOperation.DELETE):
            await deactivate_user_sessions(session, target_ids)

    failed = len(req.user_ids) - len(target_ids)
    details = {"batch_size": len(req.user_ids)}
    if "role_id" in values:
        details["role_id"] = values["role_id"]
    # One row per affected user
    for uid in target_ids:
        audit.record(
            session,
            module=MODULE,
            action=op.value,
            message=f"Batch {op.value}",
            operator_id=operator.user_id,
            target_user_id=uid,
            level="warning" if op == BatchOperation.DELETE else "info",
            details=dict(details),
        )
    log.info("users.batch_applied", operation=op.value, updated=len(target_ids), failed=failed)
    return {
        "operation": op,
        "requested": len(req.user_ids),
        "updated": len(target_ids),
        "failed": failed,
        "updated_ids": target_ids,
    }

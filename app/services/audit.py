"""
Audit log sink: every privileged action is written to structlog and
persisted as an ``audit_logs`` row in the caller's transaction.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from account_admin_shared.schemas.common import AuditResult
from app.core.errors import ProtectedAccountError
from app.models.audit_log import AuditLog

log = structlog.get_logger("audit")


def record(
    session: AsyncSession,
    *,
    module: str,
    action: str,
    message: str,
    operator_id: Optional[int],
    target_user_id: Optional[int] = None,
    level: str = "info",
    result: AuditResult = AuditResult.SUCCESS,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """Write one audit event. The row commits with the request's transaction."""
    entry = AuditLog(
        module=module,
        action=action,
        level=level,
        result=result.value,
        message=message,
        operator_id=operator_id,
        target_user_id=target_user_id,
        details=details,
    )
    session.add(entry)
    getattr(log, level, log.info)(
        f"{module}.{action}",
        message=message,
        result=result.value,
        operator_id=operator_id,
        target_user_id=target_user_id,
        details=details,
    )
    return entry


async def record_rejection(
    session: AsyncSession,
    exc: ProtectedAccountError,
    *,
    module: str,
    action: str,
    operator_id: Optional[int],
) -> None:
    """Audit a rejected privileged action.

    Nothing has been written when the policy rejects, so the audit row is
    committed on its own here; the request's rollback would discard it
    otherwise.
    """
    record(
        session,
        module=module,
        action=action,
        message="Rejected: target is the protected super administrator",
        operator_id=operator_id,
        target_user_id=exc.target_id,
        level="warning",
        result=AuditResult.REJECTED,
        details={"attempted_operation": exc.attempted_operation.value},
    )
    await session.commit()


async def list_for_user(
    session: AsyncSession,
    target_user_id: int,
    *,
    page: int,
    per_page: int,
) -> tuple[list[AuditLog], int]:
    """Audit records that target a user, newest first. Returns (rows, total)."""
    total = await session.scalar(
        select(func.count())
        .select_from(AuditLog)
        .where(AuditLog.target_user_id == target_user_id)
    )
    result = await session.execute(
        select(AuditLog)
        .where(AuditLog.target_user_id == target_user_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), int(total or 0)


@asynccontextmanager
async def audit_rejections(
    session: AsyncSession,
    *,
    module: str,
    action: str,
    operator_id: Optional[int],
):
    """Wrap policy checks so a ProtectedAccountError is audited, then re-raised."""
    try:
        yield
    except ProtectedAccountError as exc:
        await record_rejection(
            session, exc, module=module, action=action, operator_id=operator_id
        )
        raise

"""
Login sessions: login/logout, listing and termination.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from account_admin_shared.schemas.auth import LoginRequest
from account_admin_shared.schemas.common import UserStatus
from app.core.auth import create_jwt, new_session_id, verify_password
from app.core.errors import NotFoundError
from app.models.base import utcnow
from app.models.user import User
from app.models.user_session import UserSession
from app.services import audit

log = structlog.get_logger()


async def open_session(
    session: AsyncSession,
    user: User,
    *,
    device_id: Optional[str] = None,
    device_type: Optional[str] = None,
    device_name: Optional[str] = None,
    platform: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    impersonator_id: Optional[int] = None,
) -> tuple[UserSession, str]:
    """Create a session row and its signed token. Returns (session_row, token)."""
    session_id = new_session_id()
    token, expires_at = create_jwt(user.id, session_id)
    user_session = UserSession(
        session_id=session_id,
        user_id=user.id,
        device_id=device_id,
        device_type=device_type,
        device_name=device_name,
        platform=platform,
        ip_address=ip_address,
        user_agent=user_agent,
        impersonator_id=impersonator_id,
        last_accessed_at=utcnow(),
        expires_at=expires_at,
    )
    session.add(user_session)
    await session.flush()
    return user_session, token


async def login(
    session: AsyncSession,
    req: LoginRequest,
    *,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> tuple[User, UserSession, str]:
    """Authenticate by username or email + password."""
    result = await session.execute(
        select(User).where(
            or_(User.username == req.account, User.email == req.account),
            User.is_deleted == False,  # noqa: E712
        )
    )
    user = result.scalars().first()

    if not user or not verify_password(req.password, user.password_hash):
        log.warning("auth.login_failure", account=req.account, reason="bad_credentials")
        raise HTTPException(status_code=401, detail="Invalid account or password")

    if user.status != UserStatus.ACTIVE.value:
        log.warning("auth.login_failure", user_id=user.id, reason=f"status_{user.status}")
        raise HTTPException(status_code=403, detail=f"Account is {user.status}")

    user_session, token = await open_session(
        session,
        user,
        device_id=req.device_id,
        device_type=req.device_type,
        device_name=req.device_name,
        platform=req.platform,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    audit.record(
        session,
        module="auth",
        action="login",
        message="Login succeeded",
        operator_id=user.id,
        target_user_id=user.id,
        details={"session_id": user_session.session_id, "ip_address": ip_address},
    )
    return user, user_session, token


async def logout(session: AsyncSession, user_session: UserSession) -> None:
    user_session.is_active = False
    session.add(user_session)
    await session.flush()
    log.info("auth.logout", user_id=user_session.user_id, session_id=user_session.session_id)


async def list_user_sessions(session: AsyncSession, user_id: int) -> list[dict]:
    """All sessions of a user, most recently used first."""
    result = await session.execute(
        select(UserSession)
        .where(UserSession.user_id == user_id)
        .order_by(UserSession.last_accessed_at.desc(), UserSession.id.desc())
    )
    now = utcnow()
    items = []
    for s in result.scalars().all():
        idle = (now - s.last_accessed_at).total_seconds() // 60 if s.last_accessed_at else 0
        items.append(
            {
                "session_id": s.session_id,
                "device_id": s.device_id,
                "device_type": s.device_type,
                "device_name": s.device_name,
                "platform": s.platform,
                "ip_address": s.ip_address,
                "user_agent": s.user_agent,
                "is_active": s.is_active,
                "is_expired": s.expires_at < now,
                "idle_minutes": int(idle),
                "impersonator_id": s.impersonator_id,
                "created_at": s.created_at,
                "last_accessed_at": s.last_accessed_at,
                "expires_at": s.expires_at,
            }
        )
    return items


async def deactivate_user_sessions(
    session: AsyncSession,
    user_ids: list[int],
    *,
    exclude_session_id: Optional[str] = None,
) -> list[str]:
    """Deactivate every active session of the given users. Returns the session ids."""
    if not user_ids:
        return []
    stmt = select(UserSession).where(
        UserSession.user_id.in_(user_ids), UserSession.is_active == True  # noqa: E712
    )
    if exclude_session_id:
        stmt = stmt.where(UserSession.session_id != exclude_session_id)
    result = await session.execute(stmt)
    rows = result.scalars().all()
    for user_session in rows:
        user_session.is_active = False
        session.add(user_session)
    await session.flush()
    return [s.session_id for s in rows]


async def terminate_all(
    session: AsyncSession,
    user_id: int,
    *,
    operator_id: int,
    exclude_session_id: Optional[str] = None,
) -> list[str]:
    terminated = await deactivate_user_sessions(
        session, [user_id], exclude_session_id=exclude_session_id
    )
    audit.record(
        session,
        module="sessions",
        action="terminate_all",
        message=f"Terminated {len(terminated)} session(s)",
        operator_id=operator_id,
        target_user_id=user_id,
        details={"session_ids": terminated, "excluded": exclude_session_id},
    )
    return terminated


async def terminate_one(
    session: AsyncSession, user_id: int, session_id: str, *, operator_id: int
) -> None:
    result = await session.execute(
        select(UserSession).where(
            UserSession.user_id == user_id, UserSession.session_id == session_id
        )
    )
    user_session = result.scalar_one_or_none()
    if not user_session:
        raise NotFoundError("Session not found")

    user_session.is_active = False
    session.add(user_session)
    await session.flush()
    audit.record(
        session,
        module="sessions",
        action="terminate",
        message="Session terminated",
        operator_id=operator_id,
        target_user_id=user_id,
        details={"session_id": session_id},
    )

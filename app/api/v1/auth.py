"""
Authentication endpoints.

- Username/email + password login
- Current operator lookup
- Logout (deactivates the session row)
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from account_admin_shared.schemas.auth import LoginRequest, LoginResponse, OperatorResponse
from app.core.auth import CurrentOperator, generate_csrf_token, get_current_operator
from app.core.config import get_settings
from app.core.database import get_session
from app.services import sessions as session_service

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()

# Cookie config
COOKIE_KWARGS = {
    "httponly": True,
    "secure": not settings.debug,  # allow non-HTTPS in dev
    "samesite": "lax",
    "path": "/",
    "max_age": settings.jwt_expire_minutes * 60,
}


def _set_session_cookies(response: Response, token: str, csrf: str) -> None:
    """Set the session JWT and CSRF cookies on a response."""
    response.set_cookie(key=settings.session_cookie_name, value=token, **COOKIE_KWARGS)
    response.set_cookie(
        key=settings.csrf_cookie_name,
        value=csrf,
        httponly=False,  # JS must read this
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=settings.jwt_expire_minutes * 60,
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with username or email + password and open a session."""
    user, user_session, token = await session_service.login(
        session,
        body,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    _set_session_cookies(response, token, generate_csrf_token())

    log.info("auth.login_success", user_id=user.id, session_id=user_session.session_id)
    return LoginResponse(
        user_id=user.id,
        username=user.username,
        session_id=user_session.session_id,
        access_token=token,
        expires_at=user_session.expires_at,
    )


@router.get("/me", response_model=OperatorResponse)
async def me(operator: CurrentOperator = Depends(get_current_operator)):
    """The authenticated operator and their current role."""
    return OperatorResponse(
        user_id=operator.user_id,
        username=operator.username,
        role_id=operator.role.id if operator.role else None,
        role_code=operator.role.code if operator.role else None,
        tenant_id=operator.tenant_id,
        is_super_admin=operator.is_super_admin,
        is_admin=operator.is_admin,
        session_id=operator.session_id,
    )


@router.post("/logout")
async def logout(
    response: Response,
    operator: CurrentOperator = Depends(get_current_operator),
    session: AsyncSession = Depends(get_session),
):
    """Invalidate the current session."""
    await session_service.logout(session, operator.session)
    response.delete_cookie(settings.session_cookie_name, path="/")
    response.delete_cookie(settings.csrf_cookie_name, path="/")
    return {"message": "Logged out"}

"""
User Management API endpoints.

GET    /api/v1/users                               — List / search users
POST   /api/v1/users                               — Create a user
POST   /api/v1/users/batch                         — Batch operation
GET    /api/v1/users/check-email                   — Email availability
GET    /api/v1/users/check-username                — Username availability
GET    /api/v1/users/statistics                    — Counts by status
GET    /api/v1/users/{userId}                      — Get user
PATCH  /api/v1/users/{userId}                      — Update user
DELETE /api/v1/users/{userId}                      — Soft delete user
PUT    /api/v1/users/{userId}/status               — Change status
POST   /api/v1/users/{userId}/reset-password       — Reset password
GET    /api/v1/users/{userId}/organizations        — List memberships
PUT    /api/v1/users/{userId}/organizations        — Replace memberships
GET    /api/v1/users/{userId}/sessions             — List sessions
DELETE /api/v1/users/{userId}/sessions             — Terminate all sessions
DELETE /api/v1/users/{userId}/sessions/{sessionId} — Terminate one session
GET    /api/v1/users/{userId}/activity-logs        — Audit trail for the user
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from account_admin_shared.schemas.common import SortOrder, UserStatus
from account_admin_shared.schemas.users import (
    ActivityLogListResponse,
    ActivityLogResponse,
    AvailabilityResponse,
    BatchRequest,
    BatchResult,
    PasswordResetRequest,
    SessionListResponse,
    SessionResponse,
    TerminateSessionsRequest,
    TerminateSessionsResponse,
    UserCreateRequest,
    UserListResponse,
    UserOrganizationsRequest,
    UserOrganizationsResponse,
    UserResponse,
    UserSortField,
    UserStatisticsResponse,
    UserStatusRequest,
    UserStatusResponse,
    UserUpdateRequest,
)
from app.core.auth import (
    CurrentOperator,
    ensure_self_or_admin,
    get_current_operator,
    require_admin,
)
from app.core.database import get_session
from app.services import audit
from app.services import sessions as session_service
from app.services import user_batch
from app.services import users as user_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Collection routes (declared before /{userId})
# ---------------------------------------------------------------------------

@router.get("", response_model=UserListResponse, tags=["Users"])
async def list_users(
    search: Optional[str] = Query(None, max_length=100),
    role_id: Optional[int] = None,
    status: Optional[UserStatus] = None,
    tenant_id: Optional[int] = None,
    organization_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: UserSortField = UserSortField.CREATED_AT,
    sort_order: SortOrder = SortOrder.DESC,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """List users with search, filters, sorting and pagination (Admin only)."""
    items, pagination = await user_service.list_users(
        session,
        operator,
        search=search,
        role_id=role_id,
        status=status,
        tenant_id=tenant_id,
        organization_id=organization_id,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        per_page=per_page,
    )
    return UserListResponse(data=[UserResponse(**item) for item in items], pagination=pagination)


@router.post("", response_model=UserResponse, status_code=201, tags=["Users"])
async def create_user(
    body: UserCreateRequest,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Create a user (Admin only)."""
    info = await user_service.create_user(session, body, operator)
    return UserResponse(**info)


@router.post("/batch", response_model=BatchResult, tags=["Users"])
async def batch_operation(
    body: BatchRequest,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Apply one operation to many users. Aborts entirely if any target is protected."""
    result = await user_batch.run_batch(session, body, operator)
    return BatchResult(**result)


@router.get("/check-email", response_model=AvailabilityResponse, tags=["Users"])
async def check_email(
    email: str = Query(..., min_length=3, max_length=255, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
    exclude_id: Optional[int] = None,
    tenant_id: Optional[int] = None,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    available = await user_service.check_email_available(
        session, operator, email, exclude_id, tenant_id
    )
    return AvailabilityResponse(value=email, is_available=available)


@router.get("/check-username", response_model=AvailabilityResponse, tags=["Users"])
async def check_username(
    username: str = Query(..., min_length=1, max_length=50),
    exclude_id: Optional[int] = None,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    available = await user_service.check_username_available(
        session, operator, username, exclude_id
    )
    return AvailabilityResponse(value=username, is_available=available)


@router.get("/statistics", response_model=UserStatisticsResponse, tags=["Users"])
async def statistics(
    tenant_id: Optional[int] = None,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    stats = await user_service.get_statistics(session, operator, tenant_id)
    return UserStatisticsResponse(**stats)


# ---------------------------------------------------------------------------
# Single-user routes
# ---------------------------------------------------------------------------

@router.get("/{userId}", response_model=UserResponse, tags=["Users"])
async def get_user(
    userId: int,
    operator: CurrentOperator = Depends(get_current_operator),
    session: AsyncSession = Depends(get_session),
):
    """Get a user's profile (self or Admin)."""
    ensure_self_or_admin(operator, userId)
    info = await user_service.get_user(session, userId, operator)
    return UserResponse(**info)


@router.patch("/{userId}", response_model=UserResponse, tags=["Users"])
async def update_user(
    userId: int,
    body: UserUpdateRequest,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Update user fields (Admin only). The super administrator is read-only
    except for re-activation."""
    info = await user_service.update_user(session, userId, body, operator)
    return UserResponse(**info)


@router.delete("/{userId}", status_code=204, tags=["Users"])
async def delete_user(
    userId: int,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Soft delete a user (Admin only). Their sessions end immediately."""
    await user_service.delete_user(session, userId, operator)


@router.put("/{userId}/status", response_model=UserStatusResponse, tags=["Users"])
async def change_status(
    userId: int,
    body: UserStatusRequest,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Set a user's status (Admin only)."""
    result = await user_service.change_status(
        session, userId, body.status, operator, reason=body.reason
    )
    return UserStatusResponse(**result)


@router.post("/{userId}/reset-password", status_code=204, tags=["Users"])
async def reset_password(
    userId: int,
    body: PasswordResetRequest,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Reset a user's password (Admin only). Ends all of the user's sessions."""
    await user_service.reset_password(session, userId, body.new_password, operator)


@router.get("/{userId}/organizations", response_model=UserOrganizationsResponse, tags=["Users"])
async def get_user_organizations(
    userId: int,
    operator: CurrentOperator = Depends(get_current_operator),
    session: AsyncSession = Depends(get_session),
):
    ensure_self_or_admin(operator, userId)
    items = await user_service.get_user_organizations(session, userId, operator)
    return UserOrganizationsResponse(data=items)


@router.put("/{userId}/organizations", response_model=UserOrganizationsResponse, tags=["Users"])
async def set_user_organizations(
    userId: int,
    body: UserOrganizationsRequest,
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Replace a user's organization memberships (Admin only)."""
    items = await user_service.set_user_organizations(session, userId, body, operator)
    return UserOrganizationsResponse(data=items)


@router.get("/{userId}/sessions", response_model=SessionListResponse, tags=["Sessions"])
async def list_sessions(
    userId: int,
    operator: CurrentOperator = Depends(get_current_operator),
    session: AsyncSession = Depends(get_session),
):
    ensure_self_or_admin(operator, userId)
    await user_service.get_target(session, userId, operator)
    items = await session_service.list_user_sessions(session, userId)
    return SessionListResponse(data=[SessionResponse(**item) for item in items])


@router.delete("/{userId}/sessions", response_model=TerminateSessionsResponse, tags=["Sessions"])
async def terminate_sessions(
    userId: int,
    body: Optional[TerminateSessionsRequest] = Body(None),
    operator: CurrentOperator = Depends(get_current_operator),
    session: AsyncSession = Depends(get_session),
):
    """Terminate every session of a user, optionally keeping the caller's own."""
    ensure_self_or_admin(operator, userId)
    await user_service.get_target(session, userId, operator)
    exclude = operator.session_id if body and body.exclude_current else None
    terminated = await session_service.terminate_all(
        session, userId, operator_id=operator.user_id, exclude_session_id=exclude
    )
    return TerminateSessionsResponse(terminated=len(terminated), session_ids=terminated)


@router.delete("/{userId}/sessions/{sessionId}", status_code=204, tags=["Sessions"])
async def terminate_session(
    userId: int,
    sessionId: str,
    operator: CurrentOperator = Depends(get_current_operator),
    session: AsyncSession = Depends(get_session),
):
    ensure_self_or_admin(operator, userId)
    await user_service.get_target(session, userId, operator)
    await session_service.terminate_one(session, userId, sessionId, operator_id=operator.user_id)


@router.get("/{userId}/activity-logs", response_model=ActivityLogListResponse, tags=["Users"])
async def activity_logs(
    userId: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    operator: CurrentOperator = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Audit trail of actions that targeted the user (Admin only)."""
    await user_service.get_target(session, userId, operator)
    rows, total = await audit.list_for_user(session, userId, page=page, per_page=per_page)
    return ActivityLogListResponse(
        data=[ActivityLogResponse.model_validate(row) for row in rows],
        pagination=user_service.pagination(page, per_page, total),
    )

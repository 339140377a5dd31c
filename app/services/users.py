"""
User management service: business logic for user CRUD, status, passwords
and organization membership. Every mutation runs the account protection
policy before it writes.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Optional

import structlog
from fastapi import HTTPException
from sqlalchemy import delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from account_admin_shared.schemas.common import (
    DISABLING_STATUSES,
    ProtectedOperation,
    SortOrder,
    UserStatus,
)
from account_admin_shared.schemas.users import (
    UserCreateRequest,
    UserOrganizationsRequest,
    UserSortField,
    UserUpdateRequest,
)
from app.core.auth import CurrentOperator, hash_password
from app.core.config import get_settings
from app.core.errors import NotFoundError
from app.models.base import utcnow
from app.models.organization import Organization
from app.models.role import Role
from app.models.user import User
from app.models.user_organization import UserOrganization
from app.services import audit
from app.services.protection import AccountProtectionPolicy
from app.services.sessions import deactivate_user_sessions

log = structlog.get_logger()
settings = get_settings()

MODULE = "users"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _not_deleted():
    return User.is_deleted == False  # noqa: E712


def _tenant_scope(tenant_id: Optional[int]):
    if tenant_id is None:
        return User.tenant_id.is_(None)
    return User.tenant_id == tenant_id


def tenant_clause(operator: CurrentOperator):
    """Non-super operators only see users of their own tenant."""
    if operator.is_super_admin:
        return None
    return _tenant_scope(operator.tenant_id)


def pagination(page: int, per_page: int, total: int) -> dict:
    return {
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": math.ceil(total / per_page) if per_page else 0,
    }


async def get_target(
    session: AsyncSession, user_id: int, operator: CurrentOperator
) -> User:
    """Load a live user visible to the operator, or raise 404."""
    stmt = select(User).where(User.id == user_id, _not_deleted())
    clause = tenant_clause(operator)
    if clause is not None and user_id != operator.user_id:
        stmt = stmt.where(clause)
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()
    if not user:
        log.warning("user.not_found", target_user_id=user_id)
        raise NotFoundError()
    return user


async def _load_roles(session: AsyncSession, role_ids: set[int]) -> dict[int, Role]:
    if not role_ids:
        return {}
    result = await session.execute(select(Role).where(Role.id.in_(role_ids)))
    return {role.id: role for role in result.scalars().all()}


async def _load_memberships(
    session: AsyncSession, user_ids: list[int]
) -> dict[int, list[dict]]:
    """Memberships per user, main organization first, then by join date."""
    memberships: dict[int, list[dict]] = {uid: [] for uid in user_ids}
    if not user_ids:
        return memberships
    result = await session.execute(
        select(UserOrganization, Organization)
        .join(Organization, Organization.id == UserOrganization.organization_id, isouter=True)
        .where(UserOrganization.user_id.in_(user_ids))
        .order_by(UserOrganization.is_main.desc(), UserOrganization.joined_at, UserOrganization.id)
    )
    for uo, org in result.all():
        memberships[uo.user_id].append(
            {
                "organization_id": uo.organization_id,
                "organization_name": org.name if org else None,
                "organization_code": org.code if org else None,
                "parent_id": org.parent_id if org else None,
                "path": org.path if org else None,
                "position": uo.position,
                "is_main": uo.is_main,
                "joined_at": uo.joined_at,
            }
        )
    return memberships


def _serialize(user: User, role: Optional[Role], memberships: list[dict]) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "phone": user.phone,
        "real_name": user.real_name,
        "role_id": user.role_id,
        "role_name": role.name if role else None,
        "is_super_admin": bool(role and role.is_super),
        "tenant_id": user.tenant_id,
        "status": user.status,
        "metadata": user.meta,
        "organizations": memberships,
        "created_by": user.created_by,
        "updated_by": user.updated_by,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


async def _user_info(session: AsyncSession, user: User) -> dict:
    roles = await _load_roles(session, {user.role_id} if user.role_id is not None else set())
    memberships = await _load_memberships(session, [user.id])
    return _serialize(user, roles.get(user.role_id), memberships[user.id])


async def _ensure_unique(
    session: AsyncSession,
    *,
    username: Optional[str] = None,
    email: Optional[str] = None,
    tenant_id: Optional[int] = None,
    exclude_id: Optional[int] = None,
) -> None:
    """Usernames are global; emails are unique within a tenant."""
    if username is not None and not await _is_available(
        session, User.username, username, exclude_id
    ):
        raise HTTPException(status_code=409, detail="Username already in use")
    if email is not None and not await _is_available(
        session, User.email, email, exclude_id, _tenant_scope(tenant_id)
    ):
        raise HTTPException(status_code=409, detail="Email already in use")


async def _is_available(
    session: AsyncSession, column, value: str, exclude_id: Optional[int], scope=None
) -> bool:
    stmt = select(User.id).where(column == value, _not_deleted())
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    if scope is not None:
        stmt = stmt.where(scope)
    result = await session.execute(stmt.limit(1))
    return result.first() is None


async def resolve_role(
    session: AsyncSession, role_id: int, operator: CurrentOperator
) -> Role:
    """The role must exist, and only a super admin may hand out the super role."""
    role = await session.get(Role, role_id)
    if not role:
        raise HTTPException(status_code=422, detail="Role not found")
    if role.is_super and not operator.is_super_admin:
        raise HTTPException(
            status_code=403, detail="Only the super administrator can grant the super role"
        )
    return role


async def _validate_organizations(
    session: AsyncSession, organization_ids: list[int], main_organization_id: Optional[int]
) -> list[int]:
    """Dedupe (keeping order) and check every organization exists."""
    org_ids = list(dict.fromkeys(organization_ids))
    if not org_ids:
        if main_organization_id is not None:
            raise HTTPException(
                status_code=422, detail="Main organization must be in the organization list"
            )
        return org_ids
    found = await session.scalar(
        select(func.count()).select_from(Organization).where(Organization.id.in_(org_ids))
    )
    if found != len(org_ids):
        raise HTTPException(status_code=422, detail="Some organizations do not exist")
    if main_organization_id is not None and main_organization_id not in org_ids:
        raise HTTPException(
            status_code=422, detail="Main organization must be in the organization list"
        )
    return org_ids


async def _replace_memberships(
    session: AsyncSession,
    user_id: int,
    org_ids: list[int],
    main_organization_id: Optional[int] = None,
) -> None:
    """Replace a user's memberships. Exactly one is main unless the set is empty."""
    await session.execute(delete(UserOrganization).where(UserOrganization.user_id == user_id))
    main_id = main_organization_id if main_organization_id is not None else (
        org_ids[0] if org_ids else None
    )
    for org_id in org_ids:
        session.add(
            UserOrganization(
                user_id=user_id,
                organization_id=org_id,
                position="",
                is_main=org_id == main_id,
            )
        )
    await session.flush()


def _check_password(password: str) -> None:
    if len(password) < settings.password_min_length:
        raise HTTPException(
            status_code=422,
            detail=f"Password must be at least {settings.password_min_length} characters",
        )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def list_users(
    session: AsyncSession,
    operator: CurrentOperator,
    *,
    search: Optional[str] = None,
    role_id: Optional[int] = None,
    status: Optional[UserStatus] = None,
    tenant_id: Optional[int] = None,
    organization_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: UserSortField = UserSortField.CREATED_AT,
    sort_order: SortOrder = SortOrder.DESC,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[dict], dict]:
    """Filtered, paginated user list. Returns (items, pagination)."""
    stmt = select(User).where(_not_deleted())
    clause = tenant_clause(operator)
    if clause is not None:
        stmt = stmt.where(clause)
    elif tenant_id is not None:
        stmt = stmt.where(User.tenant_id == tenant_id)

    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                User.username.ilike(pattern),
                User.email.ilike(pattern),
                User.real_name.ilike(pattern),
                User.phone.ilike(pattern),
            )
        )
    if role_id is not None:
        stmt = stmt.where(User.role_id == role_id)
    if status is not None:
        stmt = stmt.where(User.status == UserStatus(status).value)
    if organization_id is not None:
        stmt = stmt.where(
            User.id.in_(
                select(UserOrganization.user_id).where(
                    UserOrganization.organization_id == organization_id
                )
            )
        )
    if start_date is not None:
        stmt = stmt.where(User.created_at >= start_date)
    if end_date is not None:
        stmt = stmt.where(User.created_at <= end_date)

    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))

    column = getattr(User, UserSortField(sort_by).value)
    ordering = column.asc() if sort_order == SortOrder.ASC else column.desc()
    result = await session.execute(
        stmt.order_by(ordering, User.id.asc()).offset((page - 1) * per_page).limit(per_page)
    )
    users = result.scalars().all()

    roles = await _load_roles(session, {u.role_id for u in users if u.role_id is not None})
    memberships = await _load_memberships(session, [u.id for u in users])
    items = [_serialize(u, roles.get(u.role_id), memberships[u.id]) for u in users]
    return items, pagination(page, per_page, int(total or 0))


async def get_user(session: AsyncSession, user_id: int, operator: CurrentOperator) -> dict:
    user = await get_target(session, user_id, operator)
    return await _user_info(session, user)


async def get_user_organizations(
    session: AsyncSession, user_id: int, operator: CurrentOperator
) -> list[dict]:
    await get_target(session, user_id, operator)
    memberships = await _load_memberships(session, [user_id])
    return memberships[user_id]


async def check_email_available(
    session: AsyncSession,
    operator: CurrentOperator,
    email: str,
    exclude_id: Optional[int],
    tenant_id: Optional[int] = None,
) -> bool:
    """Same scope as create/update: the tenant the user would belong to."""
    if not operator.is_super_admin:
        tenant_id = operator.tenant_id
    return await _is_available(
        session, User.email, email.strip(), exclude_id, _tenant_scope(tenant_id)
    )


async def check_username_available(
    session: AsyncSession, operator: CurrentOperator, username: str, exclude_id: Optional[int]
) -> bool:
    # Usernames are global: login resolves them without a tenant
    return await _is_available(session, User.username, username.strip(), exclude_id)


async def get_statistics(
    session: AsyncSession, operator: CurrentOperator, tenant_id: Optional[int] = None
) -> dict:
    stmt = select(User.status, func.count()).where(_not_deleted()).group_by(User.status)
    clause = tenant_clause(operator)
    if clause is not None:
        stmt = stmt.where(clause)
    elif tenant_id is not None:
        stmt = stmt.where(User.tenant_id == tenant_id)
    result = await session.execute(stmt)
    counts = {status: count for status, count in result.all()}
    stats = {s.value: int(counts.get(s.value, 0)) for s in UserStatus}
    stats["total"] = sum(stats.values())
    return stats


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

async def create_user(
    session: AsyncSession, req: UserCreateRequest, operator: CurrentOperator
) -> dict:
    """Onboard a user. The first organization in the list becomes the main one."""
    _check_password(req.password)
    tenant_id = req.tenant_id if operator.is_super_admin else operator.tenant_id
    await _ensure_unique(session, username=req.username, email=req.email, tenant_id=tenant_id)
    await resolve_role(session, req.role_id, operator)
    org_ids = await _validate_organizations(session, req.organization_ids, None)

    user = User(
        username=req.username,
        email=req.email,
        phone=req.phone,
        real_name=req.real_name,
        password_hash=hash_password(req.password),
        role_id=req.role_id,
        tenant_id=tenant_id,
        status=req.status.value,
        meta=req.metadata,
        created_by=operator.user_id,
        updated_by=operator.user_id,
    )
    session.add(user)
    await session.flush()

    if org_ids:
        await _replace_memberships(session, user.id, org_ids)

    audit.record(
        session,
        module=MODULE,
        action="create",
        message="User created",
        operator_id=operator.user_id,
        target_user_id=user.id,
        details={"username": user.username, "role_id": user.role_id, "tenant_id": tenant_id},
    )
    return await _user_info(session, user)


async def update_user(
    session: AsyncSession,
    user_id: int,
    req: UserUpdateRequest,
    operator: CurrentOperator,
) -> dict:
    """Partial update.

    ``status`` is judged by the status-specific check on its own, so
    re-activating the protected account works; any other field runs the
    blanket check.
    """
    user = await get_target(session, user_id, operator)
    fields = req.model_dump(exclude_unset=True)
    for key in ("username", "email", "status"):
        if key in fields and fields[key] is None:
            raise HTTPException(status_code=422, detail=f"{key} cannot be null")
    if not fields:
        return await _user_info(session, user)

    policy = AccountProtectionPolicy.for_session(session)
    async with audit.audit_rejections(
        session, module=MODULE, action="update", operator_id=operator.user_id
    ):
        if "status" in fields:
            await policy.assert_disable_allowed(user_id, fields["status"])
        identity = req.identity_fields_set()
        if identity:
            if "role_id" in identity:
                operation = ProtectedOperation.ROLE_CHANGE
            elif identity == {"organization_ids"}:
                operation = ProtectedOperation.ORGANIZATION_CHANGE
            else:
                operation = ProtectedOperation.UPDATE
            await policy.assert_modifiable(user_id, operation)

    if "username" in fields and fields["username"] != user.username:
        await _ensure_unique(session, username=fields["username"], exclude_id=user_id)
    if "email" in fields and fields["email"] != user.email:
        await _ensure_unique(
            session, email=fields["email"], tenant_id=user.tenant_id, exclude_id=user_id
        )
    if fields.get("role_id") is not None and fields["role_id"] != user.role_id:
        await resolve_role(session, fields["role_id"], operator)

    org_ids: Optional[list[int]] = None
    if "organization_ids" in fields:
        org_ids = await _validate_organizations(session, fields["organization_ids"] or [], None)

    changed: dict[str, Any] = {}
    for key, attr in (
        ("username", "username"),
        ("email", "email"),
        ("phone", "phone"),
        ("real_name", "real_name"),
        ("role_id", "role_id"),
        ("status", "status"),
    ):
        if key not in fields:
            continue
        new_value = fields[key]
        if isinstance(new_value, UserStatus):
            new_value = new_value.value
        old_value = getattr(user, attr)
        if old_value != new_value:
            changed[key] = {"from": old_value, "to": new_value}
            setattr(user, attr, new_value)
    if "metadata" in fields:
        user.meta = fields["metadata"]
        changed["metadata"] = True

    user.updated_by = operator.user_id
    user.updated_at = utcnow()
    session.add(user)
    await session.flush()

    if org_ids is not None:
        await _replace_memberships(session, user_id, org_ids)
        changed["organizations"] = org_ids

    if "status" in changed and UserStatus(user.status) in DISABLING_STATUSES:
        await deactivate_user_sessions(session, [user_id])

    audit.record(
        session,
        module=MODULE,
        action="update",
        message="User updated",
        operator_id=operator.user_id,
        target_user_id=user_id,
        details={"username": user.username, "changed_fields": changed},
    )
    return await _user_info(session, user)


async def delete_user(session: AsyncSession, user_id: int, operator: CurrentOperator) -> None:
    """Soft delete: the row stays, flagged and timestamped."""
    user = await get_target(session, user_id, operator)

    policy = AccountProtectionPolicy.for_session(session)
    async with audit.audit_rejections(
        session, module=MODULE, action="delete", operator_id=operator.user_id
    ):
        await policy.assert_modifiable(user_id, ProtectedOperation.DELETE)
    if user_id == operator.user_id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    now = utcnow()
    user.is_deleted = True
    user.deleted_at = now
    user.updated_by = operator.user_id
    user.updated_at = now
    session.add(user)
    await session.flush()
    await deactivate_user_sessions(session, [user_id])

    audit.record(
        session,
        module=MODULE,
        action="delete",
        message="User deleted",
        operator_id=operator.user_id,
        target_user_id=user_id,
        level="warning",
        details={"username": user.username, "email": user.email},
    )


async def change_status(
    session: AsyncSession,
    user_id: int,
    status: UserStatus,
    operator: CurrentOperator,
    reason: Optional[str] = None,
) -> dict:
    user = await get_target(session, user_id, operator)

    policy = AccountProtectionPolicy.for_session(session)
    async with audit.audit_rejections(
        session, module=MODULE, action="change_status", operator_id=operator.user_id
    ):
        await policy.assert_disable_allowed(user_id, status)

    old_status = user.status
    user.status = UserStatus(status).value
    user.updated_by = operator.user_id
    user.updated_at = utcnow()
    session.add(user)
    await session.flush()

    if UserStatus(status) in DISABLING_STATUSES:
        await deactivate_user_sessions(session, [user_id])

    audit.record(
        session,
        module=MODULE,
        action="change_status",
        message="User status changed",
        operator_id=operator.user_id,
        target_user_id=user_id,
        details={"old_status": old_status, "new_status": user.status, "reason": reason},
    )
    return {"user_id": user_id, "old_status": old_status, "new_status": user.status}


async def reset_password(
    session: AsyncSession, user_id: int, new_password: str, operator: CurrentOperator
) -> None:
    """Set a new password and end every session of the user."""
    _check_password(new_password)
    user = await get_target(session, user_id, operator)

    policy = AccountProtectionPolicy.for_session(session)
    async with audit.audit_rejections(
        session, module=MODULE, action="reset_password", operator_id=operator.user_id
    ):
        await policy.assert_modifiable(user_id, ProtectedOperation.RESET_PASSWORD)

    user.password_hash = hash_password(new_password)
    user.updated_by = operator.user_id
    user.updated_at = utcnow()
    session.add(user)
    await session.flush()
    terminated = await deactivate_user_sessions(session, [user_id])

    audit.record(
        session,
        module=MODULE,
        action="reset_password",
        message="Password reset",
        operator_id=operator.user_id,
        target_user_id=user_id,
        details={"username": user.username, "terminated_sessions": len(terminated)},
    )


async def set_user_organizations(
    session: AsyncSession,
    user_id: int,
    req: UserOrganizationsRequest,
    operator: CurrentOperator,
) -> list[dict]:
    await get_target(session, user_id, operator)

    policy = AccountProtectionPolicy.for_session(session)
    async with audit.audit_rejections(
        session, module=MODULE, action="set_organizations", operator_id=operator.user_id
    ):
        await policy.assert_modifiable(user_id, ProtectedOperation.ORGANIZATION_CHANGE)

    org_ids = await _validate_organizations(
        session, req.organization_ids, req.main_organization_id
    )
    await _replace_memberships(session, user_id, org_ids, req.main_organization_id)

    audit.record(
        session,
        module=MODULE,
        action="set_organizations",
        message="User organizations updated",
        operator_id=operator.user_id,
        target_user_id=user_id,
        details={
            "organization_ids": org_ids,
            "main_organization_id": req.main_organization_id,
        },
    )
    memberships = await _load_memberships(session, [user_id])
    return memberships[user_id]

"""
Account protection policy.

Guards every mutation that targets a user record so the super-admin
account can never be edited, deleted or locked out, while every other
account stays freely manageable by administrators.

Both checks resolve protection from the target's *current* role, read
inside the caller's transaction, so "read role -> assert -> write" runs
against one consistent snapshot.
"""

from __future__ import annotations

from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from account_admin_shared.schemas.common import (
    DISABLING_STATUSES,
    ProtectedOperation,
    UserStatus,
)
from app.core.errors import NotFoundError, ProtectedAccountError
from app.models.role import Role
from app.models.user import User

log = structlog.get_logger()


class UserRepository:
    """Record lookup for the policy."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, user_id: int) -> Optional[User]:
        # Row lock held until the caller commits (ignored by SQLite)
        result = await self.session.execute(
            select(User)
            .where(User.id == user_id, User.is_deleted == False)  # noqa: E712
            .with_for_update()
        )
        return result.scalar_one_or_none()


class RoleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def is_super_admin(self, role_id: Optional[int]) -> bool:
        if role_id is None:
            return False
        role = await self.session.get(Role, role_id)
        return bool(role and role.is_super)


class AccountProtectionPolicy:
    """The single guard invoked before any user mutation."""

    def __init__(self, users: UserRepository, roles: RoleRepository):
        self.users = users
        self.roles = roles

    @classmethod
    def for_session(cls, session: AsyncSession) -> "AccountProtectionPolicy":
        return cls(UserRepository(session), RoleRepository(session))

    async def is_protected(self, target_user_id: int) -> bool:
        user = await self.users.find_by_id(target_user_id)
        if user is None:
            # Callers check existence first; reaching here is a caller bug
            raise NotFoundError()
        return await self.roles.is_super_admin(user.role_id)

    async def assert_modifiable(
        self,
        target_user_id: int,
        operation: ProtectedOperation = ProtectedOperation.UPDATE,
    ) -> None:
        """Reject any change to identity, role, organizations or existence
        of the protected account."""
        if await self.is_protected(target_user_id):
            log.info(
                "protection.rejected",
                target_id=target_user_id,
                operation=ProtectedOperation(operation).value,
            )
            raise ProtectedAccountError(target_user_id, operation)

    async def assert_disable_allowed(
        self, target_user_id: int, requested_status: UserStatus | str
    ) -> None:
        """Reject moving the protected account to ``inactive`` or ``locked``.

        Re-activation is always allowed, including for a super admin that was
        disabled by mistake.
        """
        status = UserStatus(requested_status)
        if status not in DISABLING_STATUSES:
            return
        if await self.is_protected(target_user_id):
            log.info(
                "protection.rejected",
                target_id=target_user_id,
                operation=ProtectedOperation.DISABLE.value,
                requested_status=status.value,
            )
            raise ProtectedAccountError(target_user_id, ProtectedOperation.DISABLE)

    async def assert_batch_modifiable(
        self,
        target_user_ids: Iterable[int],
        operation: ProtectedOperation,
        requested_status: Optional[UserStatus] = None,
    ) -> None:
        """Fail-fast batch check: every id is evaluated before anything is
        written, and the first protected id aborts the whole batch.

        With ``requested_status`` the status-specific check is used instead
        of the blanket one.
        """
        for user_id in target_user_ids:
            if requested_status is not None:
                await self.assert_disable_allowed(user_id, requested_status)
            else:
                await self.assert_modifiable(user_id, operation)

"""
Domain errors raised by the service layer.

Both are ``HTTPException`` subclasses, so FastAPI renders them without a
custom handler, and callers can still catch them by type.
"""

from __future__ import annotations

from fastapi import HTTPException

from account_admin_shared.schemas.common import ProtectedOperation


class ProtectedAccountError(HTTPException):
    """A mutation targeted the protected super-admin account."""

    def __init__(self, target_id: int, attempted_operation: ProtectedOperation | str):
        self.target_id = target_id
        self.attempted_operation = ProtectedOperation(attempted_operation)
        super().__init__(
            status_code=403,
            detail={
                "code": "protected_account",
                "message": "The super administrator account cannot be modified",
                "target_id": target_id,
                "attempted_operation": self.attempted_operation.value,
            },
        )

    def __repr__(self) -> str:
        return (
            f"ProtectedAccountError(target_id={self.target_id!r}, "
            f"attempted_operation={self.attempted_operation.value!r})"
        )


class NotFoundError(HTTPException):
    """The requested record does not exist (or is soft-deleted)."""

    def __init__(self, detail: str = "User not found"):
        super().__init__(status_code=404, detail=detail)

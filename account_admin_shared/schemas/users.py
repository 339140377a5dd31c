"""User management schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, List

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .common import Pagination, UserStatus


USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


class BatchOperation(str, Enum):
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    DELETE = "delete"
    ASSIGN_ROLE = "assign_role"
    REMOVE_ROLE = "remove_role"


class UserSortField(str, Enum):
    ID = "id"
    USERNAME = "username"
    EMAIL = "email"
    STATUS = "status"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class UserCreateRequest(BaseModel):
    """Onboard a new user."""
    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    phone: Optional[str] = Field(default=None, max_length=20)
    real_name: Optional[str] = Field(default=None, max_length=100)
    role_id: int
    tenant_id: Optional[int] = None
    status: UserStatus = UserStatus.ACTIVE
    metadata: Optional[dict[str, Any]] = None
    organization_ids: List[int] = Field(default_factory=list)


class UserUpdateRequest(BaseModel):
    """Partial update. Only fields present in the request body are applied."""
    username: Optional[str] = Field(
        default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN
    )
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=20)
    real_name: Optional[str] = Field(default=None, max_length=100)
    role_id: Optional[int] = None
    status: Optional[UserStatus] = None
    metadata: Optional[dict[str, Any]] = None
    organization_ids: Optional[List[int]] = None

    def identity_fields_set(self) -> set[str]:
        """Fields other than ``status`` that the caller explicitly sent."""
        return set(self.model_fields_set) - {"status"}


class UserStatusRequest(BaseModel):
    status: UserStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class PasswordResetRequest(BaseModel):
    new_password: str = Field(min_length=1, max_length=128)


class UserOrganizationsRequest(BaseModel):
    organization_ids: List[int] = Field(default_factory=list)
    main_organization_id: Optional[int] = None


class BatchData(BaseModel):
    role_id: Optional[int] = None


class BatchRequest(BaseModel):
    operation: BatchOperation
    user_ids: List[int] = Field(min_length=1, max_length=500)
    data: Optional[BatchData] = None

    @field_validator("user_ids")
    @classmethod
    def _dedupe(cls, value: List[int]) -> List[int]:
        # Preserve request order; the first protected id is the one reported
        return list(dict.fromkeys(value))


class TerminateSessionsRequest(BaseModel):
    exclude_current: bool = False


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class RoleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: str
    is_super: bool
    tenant_id: Optional[int] = None
    description: Optional[str] = None


class RoleListResponse(BaseModel):
    data: List[RoleResponse]


class OrganizationMembership(BaseModel):
    """A user's membership in one organization."""
    organization_id: int
    organization_name: Optional[str] = None
    organization_code: Optional[str] = None
    parent_id: Optional[int] = None
    path: Optional[str] = None
    position: str = ""
    is_main: bool
    joined_at: datetime


class UserOrganizationsResponse(BaseModel):
    data: List[OrganizationMembership]


class UserResponse(BaseModel):
    """Single user response. Never carries the password hash."""
    id: int
    username: str
    email: str
    phone: Optional[str] = None
    real_name: Optional[str] = None
    role_id: Optional[int] = None
    role_name: Optional[str] = None
    is_super_admin: bool = False
    tenant_id: Optional[int] = None
    status: UserStatus
    metadata: Optional[dict[str, Any]] = None
    organizations: List[OrganizationMembership] = Field(default_factory=list)
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class UserListResponse(BaseModel):
    data: List[UserResponse]
    pagination: Pagination


class UserStatusResponse(BaseModel):
    user_id: int
    old_status: UserStatus
    new_status: UserStatus


class AvailabilityResponse(BaseModel):
    value: str
    is_available: bool


class UserStatisticsResponse(BaseModel):
    total: int
    active: int
    inactive: int
    locked: int


class BatchResult(BaseModel):
    operation: BatchOperation
    requested: int
    updated: int
    failed: int
    updated_ids: List[int]


class SessionResponse(BaseModel):
    session_id: str
    device_id: Optional[str] = None
    device_type: Optional[str] = None
    device_name: Optional[str] = None
    platform: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    is_active: bool
    is_expired: bool
    idle_minutes: int
    impersonator_id: Optional[int] = None
    created_at: datetime
    last_accessed_at: Optional[datetime] = None
    expires_at: datetime


class SessionListResponse(BaseModel):
    data: List[SessionResponse]


class TerminateSessionsResponse(BaseModel):
    terminated: int
    session_ids: List[str]


class ActivityLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    module: str
    action: str
    level: str
    result: str
    message: str
    operator_id: Optional[int] = None
    target_user_id: Optional[int] = None
    details: Optional[dict[str, Any]] = None
    created_at: datetime


class ActivityLogListResponse(BaseModel):
    data: List[ActivityLogResponse]
    pagination: Pagination

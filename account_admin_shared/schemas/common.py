from enum import Enum
from pydantic import BaseModel

class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    LOCKED = "locked"

# Statuses that take an account out of service
DISABLING_STATUSES: frozenset["UserStatus"] = frozenset(
    {UserStatus.INACTIVE, UserStatus.LOCKED}
)

class ProtectedOperation(str, Enum):
    UPDATE = "update"
    DELETE = "delete"
    DISABLE = "disable"
    ROLE_CHANGE = "role_change"
    RESET_PASSWORD = "reset_password"
    ORGANIZATION_CHANGE = "organization_change"

class AuditResult(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    FAILURE = "failure"

class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"

class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int

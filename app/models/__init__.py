# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import IntIDMixin, TimestampMixin  # noqa: F401
from .role import Role  # noqa: F401
from .user import User  # noqa: F401
from .organization import Organization  # noqa: F401
from .user_organization import UserOrganization  # noqa: F401
from .user_session import UserSession  # noqa: F401
from .audit_log import AuditLog  # noqa: F401

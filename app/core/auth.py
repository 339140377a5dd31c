"""
Authentication and Authorization for the account admin API.

Supports:
- Password hashing (bcrypt)
- JWT session tokens bound to a ``user_sessions`` row
- Operator resolution (user + current role) per request
- Role-based authorization dependencies
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from account_admin_shared.schemas.common import UserStatus
from app.core.config import get_settings
from app.core.database import get_session
from app.models.base import utcnow
from app.models.role import Role
from app.models.user import User
from app.models.user_session import UserSession

log = structlog.get_logger()
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with the configured cost factor."""
    return bcrypt.hashpw(
        password.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    ).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Malformed hash in the store
        return False


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def new_session_id() -> str:
    return uuid.uuid4().hex


def create_jwt(
    user_id: int,
    session_id: str,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, datetime]:
    """Create a signed JWT for a login session. Returns (token, expires_at)."""
    now = utcnow()
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "sid": session_id,
        "iat": now,
        "exp": exp,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, exp


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def generate_csrf_token() -> str:
    """Generate a random CSRF token."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class CurrentOperator:
    """The authenticated operator and the role they hold right now.

    The role is loaded on every request rather than read from the token,
    since role assignment can change between login and action.
    """

    def __init__(self, user: User, role: Optional[Role], session: UserSession):
        self.user = user
        self.role = role
        self.session = session
        self.user_id = user.id
        self.username = user.username
        self.tenant_id = user.tenant_id
        self.session_id = session.session_id

    @property
    def is_super_admin(self) -> bool:
        return bool(self.role and self.role.is_super)

    @property
    def is_admin(self) -> bool:
        if self.is_super_admin:
            return True
        return bool(self.role and self.role.code in settings.admin_role_codes)


def _extract_token(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    if credentials and credentials.scheme.lower() == "bearer":
        return credentials.credentials.strip()
    return request.cookies.get(settings.session_cookie_name)


async def authenticate_token(token: str, session: AsyncSession) -> CurrentOperator:
    """Resolve a session JWT into a CurrentOperator, or raise 401."""
    try:
        payload = decode_jwt(token)
        user_id = int(payload["sub"])
        session_id = str(payload["sid"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    result = await session.execute(
        select(UserSession).where(
            UserSession.session_id == session_id,
            UserSession.user_id == user_id,
        )
    )
    user_session = result.scalar_one_or_none()
    if not user_session or not user_session.is_active:
        raise HTTPException(status_code=401, detail="Session has been terminated")
    if user_session.expires_at <= utcnow():
        raise HTTPException(status_code=401, detail="Session has expired")

    user = await session.get(User, user_id)
    if not user or user.is_deleted:
        raise HTTPException(status_code=401, detail="User not found")
    if user.status != UserStatus.ACTIVE.value:
        log.warning("auth.inactive_user", user_id=user_id, status=user.status)
        raise HTTPException(status_code=401, detail="Account is not active")

    role = await session.get(Role, user.role_id) if user.role_id is not None else None

    user_session.last_accessed_at = utcnow()
    session.add(user_session)

    return CurrentOperator(user=user, role=role, session=user_session)


async def get_current_operator(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
) -> CurrentOperator:
    """Main authentication dependency. Bearer header first, then session cookie."""
    token = _extract_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")
    operator = await authenticate_token(token, session)
    request.state.operator = operator
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(operator_id=operator.user_id)
    return operator


# ---------------------------------------------------------------------------
# Authorization dependencies (role checks)
# ---------------------------------------------------------------------------

async def require_admin(
    operator: CurrentOperator = Depends(get_current_operator),
) -> CurrentOperator:
    """Requires an administrator (or the super administrator)."""
    if not operator.is_admin:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return operator


def ensure_self_or_admin(operator: CurrentOperator, user_id: int) -> None:
    """Self-service reads: the user themselves, or any administrator."""
    if operator.user_id != user_id and not operator.is_admin:
        raise HTTPException(status_code=403, detail="Not allowed to access this user")

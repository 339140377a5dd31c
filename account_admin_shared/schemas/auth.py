"""Login / session schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Login by username or email."""
    account: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)
    device_id: Optional[str] = Field(default=None, max_length=100)
    device_type: Optional[str] = Field(default=None, max_length=50)
    device_name: Optional[str] = Field(default=None, max_length=100)
    platform: Optional[str] = Field(default=None, max_length=50)


class LoginResponse(BaseModel):
    user_id: int
    username: str
    session_id: str
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class OperatorResponse(BaseModel):
    """The authenticated operator, as seen by the frontend."""
    user_id: int
    username: str
    role_id: Optional[int] = None
    role_code: Optional[str] = None
    tenant_id: Optional[int] = None
    is_super_admin: bool
    is_admin: bool
    session_id: str

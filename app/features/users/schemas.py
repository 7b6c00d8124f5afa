"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime

from app.features.permissions.schemas import CamelModel


class UserResponse(CamelModel):
    """Schema for user responses."""
    id: int
    organization_id: int | None = None
    username: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    legacy_role: str | None = None
    role_id: int | None = None
    is_active: bool
    is_platform_admin: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class UserWithPermissions(UserResponse):
    """The caller's own profile with the permissions they currently hold."""
    permissions: list[str] = []


class UserStatusUpdate(CamelModel):
    """Activate or deactivate a staff account."""
    is_active: bool


class UserStatusResponse(CamelModel):
    message: str
    user: UserResponse


class RoleDistributionEntry(CamelModel):
    role_id: int | None = None
    role_name: str
    count: int


class StaffStats(CamelModel):
    """Headcounts of the caller's organization."""
    total: int
    active: int
    inactive: int
    no_role: int
    recent_logins: int
    role_distribution: list[RoleDistributionEntry]

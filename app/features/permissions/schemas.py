"""
Pydantic schemas for permission management.

Request and response models for permissions, roles, role assignment and
audit logs. JSON uses camelCase; snake_case is accepted on input too.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionResponse(CamelModel):
    """Schema for permission response."""
    id: int
    name: str
    description: Optional[str] = None
    category: str


class PermissionCatalogResponse(CamelModel):
    """All permissions, flat and grouped by category."""
    all: List[PermissionResponse]
    grouped: Dict[str, List[PermissionResponse]]


# ============================================================================
# Role Schemas
# ============================================================================

class RoleCreate(CamelModel):
    """Schema for creating a new role."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique role name (case-insensitive)")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")
    permission_ids: List[int] = Field(default_factory=list, description="Initial permission set")
    organization_id: Optional[int] = Field(None, description="Owning organization (platform admins only)")

    @field_validator('name')
    @classmethod
    def name_format(cls, v: str) -> str:
        """Validate role name format."""
        v = v.strip()
        if not v:
            raise ValueError('Role name must not be blank')
        if not v.replace('_', '').replace('-', '').replace(' ', '').isalnum():
            raise ValueError('Role name must contain only letters, digits, spaces, underscores, and hyphens')
        return v


class RoleUpdate(CamelModel):
    """Schema for updating a role."""
    description: Optional[str] = Field(None, max_length=1000)


class RolePermissionsUpdate(CamelModel):
    """Complete replacement permission set for a role."""
    permission_ids: List[int]


class RoleResponse(CamelModel):
    """Schema for role response."""
    id: int
    name: str
    description: Optional[str] = None
    is_system_default: bool
    organization_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class RoleSummary(RoleResponse):
    """Role list entry with live counts."""
    user_count: int
    permission_count: int


class RoleDetail(RoleResponse):
    """Role with its full permission list."""
    user_count: int
    permissions: List[PermissionResponse] = []


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignRoleToUser(CamelModel):
    """Role for one user; null clears the RBAC role."""
    role_id: Optional[int] = Field(..., description="Role ID, or null to clear")


class BulkAssignRoles(CamelModel):
    """Schema for assigning one role to many users."""
    user_ids: List[int] = Field(..., min_length=1, max_length=500)
    role_id: Optional[int] = Field(..., description="Role ID, or null to clear")


class AssignmentResultResponse(CamelModel):
    """Outcome for one user of a bulk assignment."""
    user_id: int
    ok: bool
    error: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(CamelModel):
    """Schema for audit log response."""
    id: int
    actor_id: Optional[int] = None
    action: str
    entity_type: str
    entity_id: Optional[int] = None
    organization_id: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(CamelModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    skip: int
    limit: int

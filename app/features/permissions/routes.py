"""
Permission management API routes.

Provides endpoints for the permission catalog, role lifecycle, bulk role
assignment and the audit trail.
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.limiter import limiter
from app.features.permissions import assignment, audit, catalog, lifecycle
from app.features.permissions.audit import AuditContext
from app.features.permissions.dependencies import require_any_permission, require_permission
from app.features.permissions.schemas import (
    AssignmentResultResponse,
    AuditLogListResponse,
    BulkAssignRoles,
    MessageResponse,
    PermissionCatalogResponse,
    RoleCreate,
    RoleDetail,
    RolePermissionsUpdate,
    RoleResponse,
    RoleSummary,
    RoleUpdate,
)
from app.features.users.auth import Actor
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

# Readers of the role catalog; role managers may always see what they manage
view_roles = require_any_permission(["viewUsers", "manageUsers"])
manage_roles = require_permission("manageUsers")


# ============================================================================
# Permission Routes
# ============================================================================

@router.get("/permissions", response_model=PermissionCatalogResponse)
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(view_roles)
):
    """List all permissions, flat and grouped by category."""
    return await catalog.list_permissions(db)


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleSummary])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(view_roles)
):
    """List roles visible to the caller with user and permission counts."""
    return await catalog.list_roles(db, actor)


@router.get("/roles/{role_id}", response_model=RoleDetail)
async def get_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(view_roles)
):
    """Get a role with its permissions and live user count."""
    return await catalog.get_role(db, actor, role_id)


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.RATE_LIMIT_MUTATIONS)
async def create_role(
    role: RoleCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(manage_roles)
):
    """Create a role with an initial permission set."""
    return await lifecycle.create_role(
        db,
        actor,
        name=role.name,
        description=role.description,
        permission_ids=role.permission_ids,
        ctx=AuditContext.from_request(request),
        organization_id=role.organization_id,
    )


@router.patch("/roles/{role_id}", response_model=RoleResponse)
@limiter.limit(config.RATE_LIMIT_MUTATIONS)
async def update_role(
    role_id: int,
    role_update: RoleUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(manage_roles)
):
    """Update a role's description."""
    return await lifecycle.update_role(
        db, actor, role_id, role_update.description, ctx=AuditContext.from_request(request)
    )


@router.put("/roles/{role_id}/permissions", response_model=RoleDetail)
@limiter.limit(config.RATE_LIMIT_MUTATIONS)
async def update_role_permissions(
    role_id: int,
    permissions_update: RolePermissionsUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(manage_roles)
):
    """Replace a role's complete permission set."""
    await lifecycle.update_role_permissions(
        db, actor, role_id, permissions_update.permission_ids, ctx=AuditContext.from_request(request)
    )
    return await catalog.get_role(db, actor, role_id)


@router.delete("/roles/{role_id}", response_model=MessageResponse)
@limiter.limit(config.RATE_LIMIT_MUTATIONS)
async def delete_role(
    role_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(manage_roles)
):
    """Delete a role no user holds. System default roles cannot be deleted."""
    await lifecycle.delete_role(db, actor, role_id, ctx=AuditContext.from_request(request))
    return {"message": "Role deleted successfully"}


# ============================================================================
# Assignment Routes
# ============================================================================

@router.post(
    "/bulk-assign-roles",
    response_model=List[AssignmentResultResponse],
    response_model_exclude_none=True,
)
@limiter.limit(config.RATE_LIMIT_MUTATIONS)
async def bulk_assign_roles(
    bulk: BulkAssignRoles,
    request: Request,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(manage_roles)
):
    """
    Assign one role to many users.

    Each user is processed independently; the response has one entry per
    requested user id, in request order.
    """
    return await assignment.assign_role_to_users(
        db, actor, bulk.user_ids, bulk.role_id, ctx=AuditContext.from_request(request)
    )


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("viewAuditLogs"))
):
    """List audit log entries of the caller's organization, newest first."""
    return await audit.query_logs(
        db,
        actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        start_date=start_date,
        end_date=end_date,
        skip=max(skip, 0),
        limit=min(max(limit, 1), 200),
    )

"""
User feature routes.
"""
from datetime import datetime, timedelta, timezone
from typing import Annotated
from fastapi import APIRouter, Depends, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db, transaction
from app.core.exceptions import NotFound, Unauthorized, ValidationError
from app.core.limiter import limiter
from app.features.permissions import assignment, audit
from app.features.permissions.audit import AuditContext
from app.features.permissions.dependencies import check_permission, require_permission
from app.features.permissions.models import Role
from app.features.permissions.resolver import resolve_effective_permissions
from app.features.permissions.schemas import AssignRoleToUser, AuditLogResponse
from app.features.permissions.scope import ensure_in_scope, scope_users
from app.features.users.auth import Actor
from app.features.users.dependencies import require_actor
from app.features.users.models import User
from app.features.users.schemas import (
    StaffStats,
    UserResponse,
    UserStatusResponse,
    UserStatusUpdate,
    UserWithPermissions,
)


router = APIRouter(tags=["users"])


async def _get_user_in_scope(db: AsyncSession, actor: Actor, user_id: int) -> User:
    user = await db.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFound("User not found")
    ensure_in_scope(actor, user.organization_id, "User")
    return user


@router.get("/me", response_model=UserWithPermissions)
async def get_current_user_profile(
    actor: Annotated[Actor, Depends(require_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get current authenticated user's profile and effective permissions."""
    user = await db.get(User, actor.id)
    if user is None:
        raise NotFound("User not found")
    permissions = await resolve_effective_permissions(db, user)
    profile = UserResponse.model_validate(user).model_dump()
    return {**profile, "permissions": sorted(permissions)}


@router.get("", response_model=list[UserResponse])
@router.get("/", response_model=list[UserResponse], include_in_schema=False)
async def list_users(
    actor: Annotated[Actor, Depends(require_permission("viewUsers"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    role_id: int | None = None,
    skip: int = 0,
    limit: int = 50
):
    """List staff of the caller's organization."""
    stmt = scope_users(select(User), actor)
    if role_id is not None:
        stmt = stmt.where(User.role_id == role_id)
    result = await db.execute(
        stmt.order_by(User.id).offset(max(skip, 0)).limit(min(max(limit, 1), 200))
    )
    return result.scalars().all()


@router.get("/stats", response_model=StaffStats)
async def get_staff_stats(
    actor: Annotated[Actor, Depends(require_permission("viewUsers"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Headcounts and role distribution of the caller's organization."""
    async def count(*conditions) -> int:
        stmt = scope_users(select(func.count(User.id)), actor).where(*conditions)
        return await db.scalar(stmt) or 0

    # last_login_at is stored as naive UTC
    week_ago = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=7)

    distribution = await db.execute(
        scope_users(
            select(User.role_id, Role.name, func.count(User.id))
            .outerjoin(Role, Role.id == User.role_id),
            actor,
        )
        .group_by(User.role_id, Role.name)
        .order_by(Role.name)
    )

    return {
        "total": await count(),
        "active": await count(User.is_active.is_(True)),
        "inactive": await count(User.is_active.is_(False)),
        "no_role": await count(User.role_id.is_(None)),
        "recent_logins": await count(User.last_login_at >= week_ago),
        "role_distribution": [
            {"role_id": role_id, "role_name": role_name or "No Role", "count": n}
            for role_id, role_name, n in distribution.all()
        ],
    }


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_by_id(
    user_id: int,
    actor: Annotated[Actor, Depends(require_permission("viewUsers"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get a user of the caller's organization."""
    return await _get_user_in_scope(db, actor, user_id)


@router.put("/{user_id}/role", response_model=UserResponse)
@limiter.limit(config.RATE_LIMIT_MUTATIONS)
async def assign_user_role(
    user_id: int,
    role_assignment: AssignRoleToUser,
    request: Request,
    actor: Annotated[Actor, Depends(require_permission("manageUsers"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Assign a role to a user, or clear it with ``roleId: null``."""
    return await assignment.assign_role_to_user(
        db, actor, user_id, role_assignment.role_id, ctx=AuditContext.from_request(request)
    )


@router.get("/{user_id}/permissions", response_model=list[str])
async def get_user_permissions(
    user_id: int,
    actor: Annotated[Actor, Depends(require_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Effective permissions of a user. Users may always read their own."""
    if user_id == actor.id:
        return sorted(await resolve_effective_permissions(db, actor))

    own = await resolve_effective_permissions(db, actor)
    if not check_permission(own, "viewUsers"):
        raise Unauthorized("Permission denied: requires viewUsers")

    user = await _get_user_in_scope(db, actor, user_id)
    return sorted(await resolve_effective_permissions(db, user))


@router.get("/{user_id}/activity", response_model=list[AuditLogResponse])
async def get_user_activity(
    user_id: int,
    actor: Annotated[Actor, Depends(require_permission("viewAuditLogs"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """The 20 most recent audited actions performed by a user."""
    await _get_user_in_scope(db, actor, user_id)
    return await audit.user_activity(db, user_id, limit=20)


@router.patch("/{user_id}/toggle-status", response_model=UserStatusResponse)
@limiter.limit(config.RATE_LIMIT_MUTATIONS)
async def toggle_user_status(
    user_id: int,
    status_update: UserStatusUpdate,
    request: Request,
    actor: Annotated[Actor, Depends(require_permission("manageUsers"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Activate or deactivate a staff account (audited)."""
    # Prevent self-deactivation
    if user_id == actor.id:
        raise ValidationError("Cannot modify your own status")

    user = await _get_user_in_scope(db, actor, user_id)
    async with transaction(db):
        user.is_active = status_update.is_active
        await db.flush()
        await audit.append(
            db,
            actor_id=actor.id,
            action=audit.ACTIVATE_USER if status_update.is_active else audit.DEACTIVATE_USER,
            entity_type="user",
            entity_id=user_id,
            details={"targetUserId": user_id, "isActive": status_update.is_active},
            organization_id=user.organization_id,
            ctx=AuditContext.from_request(request),
        )
    await db.refresh(user)

    return {
        "message": "User activated successfully" if user.is_active else "User deactivated successfully",
        "user": user,
    }

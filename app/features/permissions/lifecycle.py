"""
Role lifecycle: create, edit, replace permissions, delete.

Each operation validates its input first, then performs the role change and
its audit entry in a single transaction. The permission cache is
invalidated only after the transaction committed.
"""
from typing import Iterable, List, Optional
from sqlalchemy import select, delete, insert, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import transaction
from app.core.exceptions import Conflict, Unauthorized, ValidationError
from app.features.permissions import audit
from app.features.permissions.audit import AuditContext
from app.features.permissions.catalog import count_role_users
from app.features.permissions.models import Permission, Role, role_permissions
from app.features.permissions.resolver import PLATFORM_LEGACY_ROLES, permission_cache
from app.features.permissions.scope import ensure_role_mutable
from app.features.users.auth import Actor
from app.utils import get_logger


log = get_logger(__name__)


async def _validate_permission_ids(db: AsyncSession, permission_ids: Iterable[int]) -> List[int]:
    """
    De-duplicated permission ids, in input order.

    Raises:
        ValidationError: some ids do not name an existing permission
    """
    unique_ids = list(dict.fromkeys(permission_ids))
    if not unique_ids:
        return []

    result = await db.execute(select(Permission.id).where(Permission.id.in_(unique_ids)))
    known = set(result.scalars().all())
    missing = [pid for pid in unique_ids if pid not in known]
    if missing:
        raise ValidationError(f"Unknown permission ids: {missing}")
    return unique_ids


async def _name_taken(db: AsyncSession, name: str) -> bool:
    stmt = select(Role.id).where(func.lower(Role.name) == name.lower())
    return (await db.scalar(stmt)) is not None


def _audit_organization(actor: Actor, role: Role) -> Optional[int]:
    return role.organization_id if role.organization_id is not None else actor.organization_id


async def _replace_permissions(db: AsyncSession, role_id: int, permission_ids: List[int]) -> None:
    await db.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
    if permission_ids:
        await db.execute(
            insert(role_permissions),
            [{"role_id": role_id, "permission_id": pid} for pid in permission_ids],
        )


async def create_role(
    db: AsyncSession,
    actor: Actor,
    name: str,
    description: Optional[str],
    permission_ids: Iterable[int],
    ctx: Optional[AuditContext] = None,
    organization_id: Optional[int] = None,
) -> Role:
    """
    Create a role with an initial permission set.

    The role belongs to the actor's organization. Platform-level actors
    create shared roles unless they name an organization.

    Raises:
        ValidationError: empty or reserved name, unknown permission ids
        Conflict: a role with the same name (any case) exists
        Unauthorized: an organization actor targets another organization
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Role name is required")
    if name.lower() in PLATFORM_LEGACY_ROLES:
        raise ValidationError(f"Role name '{name}' is reserved")

    if actor.is_platform_level:
        owner_id = organization_id
    else:
        if actor.organization_id is None:
            raise Unauthorized("Organization membership required to create roles")
        if organization_id is not None and organization_id != actor.organization_id:
            raise Unauthorized("Cannot create roles for another organization")
        owner_id = actor.organization_id

    ids = await _validate_permission_ids(db, permission_ids)
    if await _name_taken(db, name):
        raise Conflict(f"Role '{name}' already exists")

    role = Role(name=name, description=description, organization_id=owner_id)
    try:
        async with transaction(db):
            db.add(role)
            await db.flush()
            await _replace_permissions(db, role.id, ids)
            await audit.append(
                db,
                actor_id=actor.id,
                action=audit.CREATE_ROLE,
                entity_type="role",
                entity_id=role.id,
                details={"name": name, "permissionIds": ids},
                organization_id=_audit_organization(actor, role),
                ctx=ctx,
            )
    except IntegrityError:
        raise Conflict(f"Role '{name}' already exists")

    permission_cache.invalidate(role.id)
    await db.refresh(role)
    log.info("Role %s (%s) created by user %s", role.id, role.name, actor.id)
    return role


async def update_role(
    db: AsyncSession,
    actor: Actor,
    role_id: int,
    description: Optional[str],
    ctx: Optional[AuditContext] = None,
) -> Role:
    """
    Edit a role's description. System default roles may be edited too.

    Raises:
        NotFound: role missing or owned by another organization
        Unauthorized: shared role and the actor is not platform-level
    """
    role = ensure_role_mutable(actor, await db.get(Role, role_id, populate_existing=True))

    async with transaction(db):
        previous = role.description
        role.description = description
        await db.flush()
        await audit.append(
            db,
            actor_id=actor.id,
            action=audit.UPDATE_ROLE,
            entity_type="role",
            entity_id=role.id,
            details={"name": role.name, "previousDescription": previous, "description": description},
            organization_id=_audit_organization(actor, role),
            ctx=ctx,
        )

    permission_cache.invalidate(role_id)
    await db.refresh(role)
    return role


async def update_role_permissions(
    db: AsyncSession,
    actor: Actor,
    role_id: int,
    permission_ids: Iterable[int],
    ctx: Optional[AuditContext] = None,
) -> Role:
    """
    Replace a role's complete permission set.

    The old rows are deleted and the new set inserted in one transaction,
    so readers see either the old or the new set. Calling it twice with the
    same ids leaves the same set (one audit entry per call).

    Raises:
        NotFound: role missing or owned by another organization
        Unauthorized: shared role and the actor is not platform-level
        ValidationError: unknown permission ids
    """
    role = ensure_role_mutable(actor, await db.get(Role, role_id, populate_existing=True))
    ids = await _validate_permission_ids(db, permission_ids)

    async with transaction(db):
        await _replace_permissions(db, role.id, ids)
        role.updated_at = func.now()
        await db.flush()
        await audit.append(
            db,
            actor_id=actor.id,
            action=audit.UPDATE_ROLE_PERMISSIONS,
            entity_type="role",
            entity_id=role.id,
            details={"name": role.name, "permissionIds": ids},
            organization_id=_audit_organization(actor, role),
            ctx=ctx,
        )

    permission_cache.invalidate(role_id)
    await db.refresh(role)
    log.info("Permissions of role %s replaced by user %s (%d permissions)", role_id, actor.id, len(ids))
    return role


async def delete_role(
    db: AsyncSession,
    actor: Actor,
    role_id: int,
    ctx: Optional[AuditContext] = None,
) -> None:
    """
    Delete a role that no user holds.

    Raises:
        NotFound: role missing or owned by another organization
        Unauthorized: shared role and the actor is not platform-level
        Conflict: system default role, or users are still assigned
    """
    role = ensure_role_mutable(actor, await db.get(Role, role_id, populate_existing=True))
    if role.is_system_default:
        raise Conflict("System default roles cannot be deleted")

    user_count = await count_role_users(db, role.id)
    if user_count > 0:
        raise Conflict(f"Cannot delete role: {user_count} user(s) are assigned to it")

    name = role.name
    audit_org = _audit_organization(actor, role)
    try:
        async with transaction(db):
            await db.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
            await audit.append(
                db,
                actor_id=actor.id,
                action=audit.DELETE_ROLE,
                entity_type="role",
                entity_id=role_id,
                details={"name": name},
                organization_id=audit_org,
                ctx=ctx,
            )
            await db.delete(role)
            await db.flush()
    except IntegrityError:
        # A user was assigned between the count and the delete
        raise Conflict("Cannot delete role: users are assigned to it")

    permission_cache.invalidate(role_id)
    log.info("Role %s (%s) deleted by user %s", role_id, name, actor.id)

"""
Organization scoping.

Organization-scoped actors only see users and roles of their own
organization (shared roles are visible to everyone). Platform-level actors
bypass the check. Out-of-scope lookups of a specific entity are reported as
``NotFound`` so an actor cannot discover resources of other tenants.
"""
from sqlalchemy import Select, false, or_

from app.core.exceptions import NotFound, Unauthorized
from app.features.permissions.models import AuditLog, Role
from app.features.users.auth import Actor
from app.features.users.models import User


def scope_query(actor: Actor, target_organization_id: int | None) -> bool:
    """Whether the actor may read or mutate data owned by the organization."""
    if actor.is_platform_level:
        return True
    return target_organization_id is not None and target_organization_id == actor.organization_id


def ensure_in_scope(actor: Actor, organization_id: int | None, entity: str = "Resource") -> None:
    """
    Raise ``NotFound`` when the entity's organization is outside the actor's scope.

    The message matches the one used for missing rows.
    """
    if not scope_query(actor, organization_id):
        raise NotFound(f"{entity} not found")


def can_view_role(actor: Actor, role: Role) -> bool:
    return role.organization_id is None or scope_query(actor, role.organization_id)


def ensure_role_mutable(actor: Actor, role: Role | None) -> Role:
    """
    Return the role if the actor may change it.

    Raises:
        NotFound: role missing or owned by another organization
        Unauthorized: shared role and the actor is not platform-level
    """
    if role is None or not can_view_role(actor, role):
        raise NotFound("Role not found")
    if role.organization_id is None and not actor.is_platform_level:
        raise Unauthorized("Platform-level access required to modify shared roles")
    return role


def scope_users(stmt: Select, actor: Actor) -> Select:
    if actor.is_platform_level:
        return stmt
    if actor.organization_id is None:
        return stmt.where(false())
    return stmt.where(User.organization_id == actor.organization_id)


def scope_roles(stmt: Select, actor: Actor) -> Select:
    if actor.is_platform_level:
        return stmt
    if actor.organization_id is None:
        return stmt.where(Role.organization_id.is_(None))
    return stmt.where(
        or_(
            Role.organization_id.is_(None),
            Role.organization_id == actor.organization_id,
        )
    )


def scope_audit_logs(stmt: Select, actor: Actor) -> Select:
    """Entries recorded in the actor's organization; nothing for org-less actors."""
    if actor.is_platform_level:
        return stmt
    if actor.organization_id is None:
        return stmt.where(false())
    return stmt.where(AuditLog.organization_id == actor.organization_id)

"""
Role assignment, for one user or many.

Assigning a role sets ``User.role_id`` and mirrors the role name into
``User.legacy_role`` (lowercased) so code still reading the legacy label
sees the same role. Passing ``role_id=None`` clears the RBAC role and
leaves the legacy label as it was.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import transaction
from app.core.exceptions import AccessControlError, NotFound, ValidationError
from app.features.permissions import audit
from app.features.permissions.audit import AuditContext
from app.features.permissions.models import Role
from app.features.permissions.scope import can_view_role, scope_query
from app.features.users.auth import Actor
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class _TargetRole:
    # Plain copy; ORM rows are expired by the rollbacks of failed bulk items
    id: int
    name: str
    organization_id: Optional[int]


@dataclass
class AssignmentResult:
    user_id: int
    ok: bool
    error: Optional[str] = None


async def _resolve_target_role(db: AsyncSession, actor: Actor, role_id: Optional[int]) -> Optional[_TargetRole]:
    """
    The role to assign, or ``None`` when clearing.

    Raises:
        ValidationError: the role does not exist or is hidden from the actor
    """
    if role_id is None:
        return None
    role = await db.get(Role, role_id, populate_existing=True)
    if role is None or not can_view_role(actor, role):
        raise ValidationError(f"Role {role_id} does not exist")
    return _TargetRole(id=role.id, name=role.name, organization_id=role.organization_id)


async def _apply_assignment(
    db: AsyncSession,
    actor: Actor,
    user_id: int,
    target: Optional[_TargetRole],
    ctx: Optional[AuditContext],
) -> User:
    user = await db.get(User, user_id, populate_existing=True)
    if user is None or not scope_query(actor, user.organization_id):
        raise NotFound("User not found")
    if target is not None and target.organization_id is not None \
            and target.organization_id != user.organization_id:
        raise ValidationError("Role belongs to another organization")

    previous_role_id = user.role_id
    if target is None:
        user.role_id = None
    else:
        user.role_id = target.id
        user.legacy_role = target.name.lower()
    await db.flush()

    await audit.append(
        db,
        actor_id=actor.id,
        action=audit.ASSIGN_ROLE,
        entity_type="user",
        entity_id=user_id,
        details={
            "roleId": target.id if target else None,
            "roleName": target.name if target else None,
            "previousRoleId": previous_role_id,
            "targetUserId": user_id,
        },
        organization_id=user.organization_id,
        ctx=ctx,
    )
    return user


async def assign_role_to_user(
    db: AsyncSession,
    actor: Actor,
    user_id: int,
    role_id: Optional[int],
    ctx: Optional[AuditContext] = None,
) -> User:
    """
    Assign (or clear) one user's role.

    Raises:
        ValidationError: unknown role, or role owned by another organization
        NotFound: user missing or outside the actor's organization
    """
    target = await _resolve_target_role(db, actor, role_id)
    async with transaction(db):
        user = await _apply_assignment(db, actor, user_id, target, ctx)
    await db.refresh(user)
    log.info("User %s assigned role %s by user %s", user_id, role_id, actor.id)
    return user


async def assign_role_to_users(
    db: AsyncSession,
    actor: Actor,
    user_ids: Sequence[int],
    role_id: Optional[int],
    ctx: Optional[AuditContext] = None,
) -> List[AssignmentResult]:
    """
    Assign one role to many users, each in its own transaction.

    The role is validated once, before any user is touched. After that a
    failing user is reported in its result and the rest carry on. Results
    follow the order of ``user_ids``, one per entry (duplicates included).

    Raises:
        ValidationError: unknown role
    """
    target = await _resolve_target_role(db, actor, role_id)

    results: List[AssignmentResult] = []
    for user_id in user_ids:
        try:
            async with transaction(db):
                await _apply_assignment(db, actor, user_id, target, ctx)
        except AccessControlError as e:
            results.append(AssignmentResult(user_id=user_id, ok=False, error=e.message))
        except SQLAlchemyError:
            log.exception("Bulk role assignment failed for user %s", user_id)
            results.append(AssignmentResult(user_id=user_id, ok=False, error="Database error"))
        else:
            results.append(AssignmentResult(user_id=user_id, ok=True))

    succeeded = sum(1 for r in results if r.ok)
    log.info(
        "Bulk assignment of role %s by user %s: %d succeeded, %d failed",
        role_id, actor.id, succeeded, len(results) - succeeded,
    )
    return results

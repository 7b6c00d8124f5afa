"""
Append-only audit trail for privileged actions.

Entries are written with ``append`` inside the caller's transaction, so an
entry exists exactly when the mutation it describes was committed. There is
no update or delete path.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import AuditLog
from app.features.permissions.scope import scope_audit_logs
from app.features.users.auth import Actor
from app.utils import get_logger


log = get_logger(__name__)

# Action names
CREATE_ROLE = "CREATE_ROLE"
UPDATE_ROLE = "UPDATE_ROLE"
UPDATE_ROLE_PERMISSIONS = "UPDATE_ROLE_PERMISSIONS"
DELETE_ROLE = "DELETE_ROLE"
ASSIGN_ROLE = "ASSIGN_ROLE"
ACTIVATE_USER = "ACTIVATE_USER"
DEACTIVATE_USER = "DEACTIVATE_USER"


@dataclass(frozen=True)
class AuditContext:
    """Where a privileged request came from."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "AuditContext":
        user_agent = request.headers.get("user-agent")
        return cls(
            ip_address=request.client.host if request.client else None,
            user_agent=user_agent[:255] if user_agent else None,
        )


async def append(
    db: AsyncSession,
    actor_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    details: Optional[Dict[str, Any]] = None,
    organization_id: Optional[int] = None,
    ctx: Optional[AuditContext] = None,
) -> AuditLog:
    """
    Record a privileged action in the current transaction.

    Args:
        db: Database session with an open unit of work
        actor_id: User performing the action (None for system tasks)
        action: Action name, e.g. ``ASSIGN_ROLE``
        entity_type: ``role`` or ``user``
        entity_id: ID of the affected entity
        details: Action-specific JSON payload
        organization_id: Organization the action happened in
        ctx: Request origin

    The entry is flushed, not committed; a failed flush propagates and
    fails the surrounding operation.
    """
    ctx = ctx or AuditContext()
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        organization_id=organization_id,
        details=details,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )
    db.add(entry)
    await db.flush()

    log.info(
        "Audit: actor=%s action=%s entity=%s:%s org=%s",
        actor_id, action, entity_type, entity_id, organization_id,
    )
    return entry


async def query_logs(
    db: AsyncSession,
    actor: Actor,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 50,
) -> Dict[str, Any]:
    """Audit entries visible to the actor, newest first, with the total count."""
    stmt = scope_audit_logs(select(AuditLog), actor)

    if action:
        stmt = stmt.where(AuditLog.action == action)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    if actor_id is not None:
        stmt = stmt.where(AuditLog.actor_id == actor_id)
    if start_date:
        stmt = stmt.where(AuditLog.created_at >= start_date)
    if end_date:
        stmt = stmt.where(AuditLog.created_at <= end_date)

    total = await db.scalar(select(func.count()).select_from(stmt.subquery()))

    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)

    return {
        "total": total or 0,
        "items": list(result.scalars().all()),
        "skip": skip,
        "limit": limit,
    }


async def user_activity(db: AsyncSession, user_id: int, limit: int = 20) -> List[AuditLog]:
    """Most recent actions performed by a user."""
    stmt = (
        select(AuditLog)
        .where(AuditLog.actor_id == user_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())

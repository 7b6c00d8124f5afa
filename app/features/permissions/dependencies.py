"""
Permission checking dependencies for route protection.

Implements:
- Pure permission checks over a resolved permission set
- FastAPI dependencies that authenticate, resolve and check in that order
"""
from typing import AbstractSet, Iterable, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import Unauthenticated, Unauthorized
from app.features.permissions.resolver import resolve_effective_permissions
from app.features.users.auth import Actor
from app.features.users.dependencies import get_current_actor
from app.utils import get_logger


log = get_logger(__name__)


def check_permission(permissions: AbstractSet[str], name: str) -> bool:
    """Whether ``name`` is in the resolved permission set."""
    return name in permissions


async def _effective_permissions(request: Request, db: AsyncSession, actor: Actor) -> AbstractSet[str]:
    # Resolved once per request even when several dependencies ask
    cached = getattr(request.state, "permissions", None)
    if cached is not None:
        return cached
    permissions = await resolve_effective_permissions(db, actor)
    request.state.permissions = permissions
    return permissions


def require_permission(name: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/roles")
        async def create_role(
            actor: Actor = Depends(require_permission("manageUsers"))
        ):
            # Actor holds manageUsers
            pass

    Raises:
        Unauthenticated: no actor on the request
        Unauthorized: the actor's effective permissions lack ``name``
    """
    async def permission_dependency(
        request: Request,
        db: AsyncSession = Depends(get_db),
        actor: Optional[Actor] = Depends(get_current_actor)
    ) -> Actor:
        if actor is None:
            raise Unauthenticated()

        permissions = await _effective_permissions(request, db, actor)
        if not check_permission(permissions, name):
            log.debug("User %s denied: missing %s", actor.id, name)
            raise Unauthorized(f"Permission denied: requires {name}")

        return actor

    return permission_dependency


def require_any_permission(names: Iterable[str]):
    """
    FastAPI dependency to require ANY of the specified permissions.

    Usage:
        @router.get("/reports")
        async def get_reports(
            actor: Actor = Depends(require_any_permission(["viewReports", "viewAuditLogs"]))
        ):
            pass
    """
    names = list(names)

    async def permission_dependency(
        request: Request,
        db: AsyncSession = Depends(get_db),
        actor: Optional[Actor] = Depends(get_current_actor)
    ) -> Actor:
        if actor is None:
            raise Unauthenticated()

        permissions = await _effective_permissions(request, db, actor)
        if any(check_permission(permissions, name) for name in names):
            return actor

        log.debug("User %s denied: requires one of %s", actor.id, names)
        raise Unauthorized(f"Permission denied: requires one of {names}")

    return permission_dependency

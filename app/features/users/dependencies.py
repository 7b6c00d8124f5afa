"""
FastAPI dependencies that place the authenticated actor on the request.
"""
from typing import Annotated, Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import Unauthenticated
from app.features.users.auth import Actor, verify_jwt_token, user_id_from_claims
from app.features.users.models import User


security = HTTPBearer(auto_error=False)


async def get_current_actor(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Optional[Actor]:
    """
    Actor for the current request, or ``None`` when no credentials were sent.

    An actor already attached to ``request.state.actor`` by an upstream
    component is used as-is. Otherwise the bearer token is verified and the
    user it names is loaded, so role changes apply to the next request.
    """
    actor = getattr(request.state, "actor", None)
    if actor is not None:
        return actor

    if credentials is None:
        return None

    payload = verify_jwt_token(credentials.credentials)
    user = await db.get(User, user_id_from_claims(payload))
    if user is None or not user.is_active:
        raise Unauthenticated("Account not found or deactivated")

    actor = Actor.from_user(user)
    request.state.actor = actor
    return actor


async def require_actor(
    actor: Annotated[Optional[Actor], Depends(get_current_actor)]
) -> Actor:
    """
    Require an authenticated caller without any particular permission.

    Usage:
        @router.get("/me")
        async def get_me(actor: Actor = Depends(require_actor)):
            ...
    """
    if actor is None:
        raise Unauthenticated()
    return actor


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"

"""
Adapter for the external identity service.

Tokens are issued elsewhere; this module only verifies them and describes
the authenticated caller as an ``Actor``.
"""
from dataclasses import dataclass
from typing import Any, Dict

import jwt

from app.core import config
from app.core.exceptions import Unauthenticated


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller of a request.

    Carries the same role fields as a ``User`` so the permission resolver
    accepts either.
    """
    id: int
    organization_id: int | None
    legacy_role: str | None
    role_id: int | None
    is_platform_level: bool = False

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(
            id=user.id,
            organization_id=user.organization_id,
            legacy_role=user.legacy_role,
            role_id=user.role_id,
            is_platform_level=bool(user.is_platform_admin),
        )


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """
    Verify a bearer token and return its claims.

    Raises:
        Unauthenticated: token is expired, malformed or signed with another key
    """
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token")


def user_id_from_claims(payload: Dict[str, Any]) -> int:
    """The numeric user id carried in the ``sub`` claim."""
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise Unauthenticated("Invalid token payload")

"""
User model.

Users carry two role representations while the clinic migrates to
granular permissions: the free-text ``legacy_role`` label and the RBAC
``role_id``. Which one is authoritative is decided in one place,
``app.features.permissions.resolver``.
"""
from datetime import datetime
from sqlalchemy import String, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """Staff member of an organization."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    organization_id: Mapped[int | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Legacy free-text role ("doctor", "nurse", ...); mirrored from the RBAC
    # role name on every assignment
    legacy_role: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # RBAC role; only written through the assignment operations
    role_id: Mapped[int | None] = mapped_column(
        ForeignKey("roles.id"),
        nullable=True,
        index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Cross-organization (platform) operator
    is_platform_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username!r}, org_id={self.organization_id})>"

"""
Permission, Role and AuditLog models for organization-scoped RBAC.

- Permissions are a fixed catalog of named capabilities grouped by category.
- Roles are flat permission sets, either shared (``organization_id`` is
  null) or owned by one organization.
- ``role_permissions`` holds the complete permission set of each role.
- Audit logs are append-only records of privileged mutations.
"""
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Table, Column, JSON, Text, Boolean, Integer, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, CreatedAtMixin, TimestampMixin


# ============================================================================
# Association Tables
# ============================================================================

# Role-Permission relationship; the rows for one role are always replaced as a set
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, CreatedAtMixin):
    """
    A named capability such as ``viewPatients`` or ``createLabOrder``.

    Permissions are immutable once created; the catalog only grows.
    """
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="other", index=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r}, category={self.category})>"


class Role(Base, TimestampMixin):
    """
    A named set of permissions assigned to users.

    System default roles may be edited but never deleted. The number of
    users holding a role is always computed by query, never stored.
    """
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_system_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Owning organization; null = shared across all organizations
    organization_id: Mapped[int | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, org_id={self.organization_id})>"


# Role names are unique ignoring case
Index("uq_roles_name_lower", func.lower(Role.__table__.c.name), unique=True)


class AuditLog(Base, CreatedAtMixin):
    """
    Audit log for privileged actions.

    Rows are written once, inside the same transaction as the mutation they
    describe, and never updated or deleted.
    """
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Actor
    actor_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details, e.g. action="ASSIGN_ROLE", entity_type="user"
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    # Context
    organization_id: Mapped[int | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, actor_id={self.actor_id}, action={self.action}, entity={self.entity_type}:{self.entity_id})>"

"""
SQLAlchemy declarative base and shared column mixins.

Every table of the access-control schema (organizations, users, roles,
permissions, role_permissions, audit_logs) is declared against ``Base``.
"""
from datetime import datetime
from sqlalchemy import DateTime, MetaData, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Stable constraint names so migrations generated later diff cleanly
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """
    Base class for all models.

    Usage:
        from app.core.database.base import Base

        class Role(Base):
            __tablename__ = "roles"

            id: Mapped[int] = mapped_column(primary_key=True)
    """
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class CreatedAtMixin:
    """Creation timestamp only, for write-once rows such as audit entries."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class TimestampMixin(CreatedAtMixin):
    """Adds ``updated_at`` on top of ``created_at`` for mutable rows."""
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

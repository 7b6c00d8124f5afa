"""
Organization model.

An organization is the tenant boundary of the clinic application: every
user belongs to exactly one, and roles may be owned by one.
"""
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


class Organization(Base, TimestampMixin):
    """A clinic, hospital or practice using the application."""
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"

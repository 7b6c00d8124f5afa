"""Tests for the audit trail failing underneath privileged mutations."""
import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from app.features.permissions import audit, lifecycle
from app.features.permissions.assignment import (
    AssignmentResult,
    assign_role_to_user,
    assign_role_to_users,
)
from app.features.permissions.models import AuditLog, Role, role_permissions
from app.features.users.models import User


def break_audit_writes(monkeypatch):
    async def failing_append(*args, **kwargs):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))

    monkeypatch.setattr(audit, "append", failing_append)


async def count(db, entity):
    return await db.scalar(select(func.count()).select_from(entity))


class TestAuditWriteFailure:
    """A failed audit write rolls back the mutation it describes."""

    @pytest.mark.asyncio
    async def test_create_role_persists_nothing(self, db, clinic, monkeypatch):
        break_audit_writes(monkeypatch)

        with pytest.raises(OperationalError):
            await lifecycle.create_role(db, clinic.admin_a, "triage", None, [clinic.perm["viewPatients"]])

        assert await count(db, Role) == 0
        assert await count(db, role_permissions) == 0
        assert await count(db, AuditLog) == 0

    @pytest.mark.asyncio
    async def test_assign_role_to_user_persists_nothing(self, db, clinic, monkeypatch):
        role = await lifecycle.create_role(db, clinic.admin_a, "triage", None, [])
        role_id = role.id
        break_audit_writes(monkeypatch)

        with pytest.raises(OperationalError):
            await assign_role_to_user(db, clinic.admin_a, 42, role_id)

        user = await db.get(User, 42, populate_existing=True)
        assert user.role_id is None
        assert user.legacy_role == "nurse"
        assert await count(db, AuditLog) == 1

    @pytest.mark.asyncio
    async def test_bulk_assignment_reports_database_error(self, db, clinic, monkeypatch):
        role = await lifecycle.create_role(db, clinic.admin_a, "triage", None, [])
        role_id = role.id
        break_audit_writes(monkeypatch)

        results = await assign_role_to_users(db, clinic.admin_a, [42, 43], role_id)

        assert results == [
            AssignmentResult(user_id=42, ok=False, error="Database error"),
            AssignmentResult(user_id=43, ok=False, error="Database error"),
        ]
        users = (await db.execute(select(User).where(User.id.in_([42, 43])))).scalars().all()
        assert all(u.role_id is None for u in users)
        assert await count(db, AuditLog) == 1

    @pytest.mark.asyncio
    async def test_route_renders_opaque_500(self, client, clinic, db, auth_headers, monkeypatch):
        break_audit_writes(monkeypatch)

        response = await client.post("/roles", headers=auth_headers(1), json={"name": "triage", "permissionIds": []})

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}
        assert await count(db, Role) == 0

    @pytest.mark.asyncio
    async def test_status_change_is_rolled_back(self, client, clinic, db, auth_headers, monkeypatch):
        break_audit_writes(monkeypatch)

        response = await client.patch("/users/42/toggle-status", headers=auth_headers(1), json={"isActive": False})

        assert response.status_code == 500
        user = await db.get(User, 42, populate_existing=True)
        assert user.is_active is True

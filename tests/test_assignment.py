"""Tests for single and bulk role assignment."""
import pytest
from sqlalchemy import select, func

from app.core.exceptions import NotFound, ValidationError
from app.features.permissions import lifecycle
from app.features.permissions.assignment import assign_role_to_user, assign_role_to_users
from app.features.permissions.models import AuditLog
from app.features.permissions.resolver import resolve_effective_permissions
from app.features.users.models import User


async def assign_entries(db):
    stmt = select(func.count()).select_from(AuditLog).where(AuditLog.action == "ASSIGN_ROLE")
    return await db.scalar(stmt)


async def reload_user(db, user_id):
    return await db.get(User, user_id, populate_existing=True)


class TestAssignRoleToUser:

    @pytest.mark.asyncio
    async def test_sets_role_and_mirrors_legacy_label(self, db, clinic):
        role = await lifecycle.create_role(db, clinic.admin_a, "Lab_Technician", None, [clinic.perm["viewPatients"]])

        user = await assign_role_to_user(db, clinic.admin_a, 42, role.id)

        assert user.role_id == role.id
        assert user.legacy_role == "lab_technician"
        assert await resolve_effective_permissions(db, user) == frozenset({"viewPatients"})
        assert await assign_entries(db) == 1

    @pytest.mark.asyncio
    async def test_clearing_keeps_legacy_label(self, db, clinic):
        """With the role cleared the mirrored label is what remains."""
        role = await lifecycle.create_role(db, clinic.admin_a, "nurse_plus", None, [clinic.perm["viewUsers"]])
        await assign_role_to_user(db, clinic.admin_a, 42, role.id)

        user = await assign_role_to_user(db, clinic.admin_a, 42, None)

        assert user.role_id is None
        assert user.legacy_role == "nurse_plus"
        assert await assign_entries(db) == 2

    @pytest.mark.asyncio
    async def test_user_of_other_organization_is_not_found(self, db, clinic):
        role = await lifecycle.create_role(db, clinic.admin_a, "triage", None, [])
        with pytest.raises(NotFound):
            await assign_role_to_user(db, clinic.admin_a, 44, role.id)
        assert (await reload_user(db, 44)).role_id is None

    @pytest.mark.asyncio
    async def test_unknown_role_is_rejected(self, db, clinic):
        with pytest.raises(ValidationError):
            await assign_role_to_user(db, clinic.admin_a, 42, 777)
        assert await assign_entries(db) == 0

    @pytest.mark.asyncio
    async def test_role_hidden_from_actor_is_rejected(self, db, clinic):
        role = await lifecycle.create_role(db, clinic.admin_b, "hilltop_only", None, [])
        with pytest.raises(ValidationError):
            await assign_role_to_user(db, clinic.admin_a, 42, role.id)

    @pytest.mark.asyncio
    async def test_role_must_belong_to_the_users_organization(self, db, clinic):
        """Even platform actors cannot hand an org role to another org's user."""
        role = await lifecycle.create_role(db, clinic.admin_b, "hilltop_only", None, [])
        with pytest.raises(ValidationError):
            await assign_role_to_user(db, clinic.platform, 42, role.id)

    @pytest.mark.asyncio
    async def test_shared_role_can_go_to_any_organization(self, db, clinic):
        role = await lifecycle.create_role(db, clinic.platform, "locum", None, [])
        await assign_role_to_user(db, clinic.admin_a, 42, role.id)
        await assign_role_to_user(db, clinic.admin_b, 44, role.id)
        assert (await reload_user(db, 44)).role_id == role.id


class TestAssignRoleToUsers:

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_successes(self, db, clinic):
        """One result per requested id, in request order."""
        role = await lifecycle.create_role(db, clinic.admin_a, "lab_technician", None, [])

        results = await assign_role_to_users(db, clinic.admin_a, [42, 43, 999], role.id)

        assert [r.user_id for r in results] == [42, 43, 999]
        assert [r.ok for r in results] == [True, True, False]
        assert results[2].error == "User not found"
        assert results[0].error is None
        assert await assign_entries(db) == 2
        assert (await reload_user(db, 43)).legacy_role == "lab_technician"

    @pytest.mark.asyncio
    async def test_other_organization_users_fail_individually(self, db, clinic):
        role = await lifecycle.create_role(db, clinic.admin_a, "triage", None, [])
        role_id = role.id

        results = await assign_role_to_users(db, clinic.admin_a, [44, 42], role_id)

        assert [r.ok for r in results] == [False, True]
        assert (await reload_user(db, 44)).role_id is None
        assert (await reload_user(db, 42)).role_id == role_id

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_processed_each_time(self, db, clinic):
        role = await lifecycle.create_role(db, clinic.admin_a, "triage", None, [])
        results = await assign_role_to_users(db, clinic.admin_a, [42, 42], role.id)
        assert len(results) == 2
        assert all(r.ok for r in results)
        assert await assign_entries(db) == 2

    @pytest.mark.asyncio
    async def test_unknown_role_touches_nobody(self, db, clinic):
        with pytest.raises(ValidationError):
            await assign_role_to_users(db, clinic.admin_a, [42, 43], 777)
        assert await assign_entries(db) == 0
        assert (await reload_user(db, 42)).legacy_role == "nurse"

    @pytest.mark.asyncio
    async def test_null_role_clears_everyone(self, db, clinic):
        role = await lifecycle.create_role(db, clinic.admin_a, "triage", None, [])
        await assign_role_to_users(db, clinic.admin_a, [42, 43], role.id)

        results = await assign_role_to_users(db, clinic.admin_a, [42, 43], None)

        assert all(r.ok for r in results)
        assert (await reload_user(db, 42)).role_id is None
        assert (await reload_user(db, 43)).role_id is None

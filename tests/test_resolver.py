"""Tests for effective-permission resolution and the permission cache."""
from types import SimpleNamespace

import pytest

from app.features.permissions import lifecycle
from app.features.permissions.catalog import ALL_PERMISSION_NAMES, CATEGORY_ORDER, infer_category
from app.features.permissions.resolver import (
    LEGACY_ROLE_BUNDLES,
    MISSING,
    PermissionCache,
    effective_permissions,
    load_role_permission_names,
    normalize_legacy_role,
    permission_cache,
)


def make_user(role_id=None, legacy_role=None):
    return SimpleNamespace(role_id=role_id, legacy_role=legacy_role)


class TestEffectivePermissions:
    """Precedence: RBAC role, then legacy label, then nothing."""

    def test_rbac_role_wins_over_legacy_label(self):
        """An existing role replaces the legacy bundle entirely."""
        user = make_user(role_id=7, legacy_role="admin")
        result = effective_permissions(user, {7: {"viewPatients"}})
        assert result == frozenset({"viewPatients"})

    def test_role_with_empty_set_grants_nothing(self):
        """An existing role with no permissions does not fall back to the label."""
        user = make_user(role_id=7, legacy_role="doctor")
        assert effective_permissions(user, {7: set()}) == frozenset()

    def test_deleted_role_falls_back_to_legacy_bundle(self):
        """A role id that no longer resolves is ignored."""
        user = make_user(role_id=99, legacy_role="nurse")
        assert effective_permissions(user, {}) == LEGACY_ROLE_BUNDLES["nurse"]

    def test_legacy_label_is_trimmed_and_case_insensitive(self):
        user = make_user(legacy_role="  Doctor ")
        assert effective_permissions(user, {}) == LEGACY_ROLE_BUNDLES["doctor"]

    def test_unknown_legacy_label_denies(self):
        assert effective_permissions(make_user(legacy_role="janitor"), {}) == frozenset()

    def test_no_role_at_all_denies(self):
        assert effective_permissions(make_user(), {}) == frozenset()

    def test_custom_bundles(self):
        """Bundles can be supplied by the caller."""
        user = make_user(legacy_role="auditor")
        result = effective_permissions(user, {}, legacy_bundles={"auditor": {"viewAuditLogs"}})
        assert result == frozenset({"viewAuditLogs"})

    def test_deterministic(self):
        """Same inputs, same output."""
        user = make_user(role_id=3, legacy_role="nurse")
        lookup = {3: {"viewFiles", "uploadFiles"}}
        assert effective_permissions(user, lookup) == effective_permissions(user, lookup)


class TestLegacyBundles:

    @pytest.mark.parametrize("label", ["admin", "superadmin", "super_admin"])
    def test_admin_labels_hold_every_permission(self, label):
        assert LEGACY_ROLE_BUNDLES[label] == ALL_PERMISSION_NAMES

    def test_bundles_only_reference_known_permissions(self):
        for label, bundle in LEGACY_ROLE_BUNDLES.items():
            assert bundle <= ALL_PERMISSION_NAMES, label

    def test_receptionist_handles_front_desk_work(self):
        bundle = LEGACY_ROLE_BUNDLES["receptionist"]
        assert {"createAppointments", "cancelAppointments", "processPayment"} <= bundle
        assert "createPrescription" not in bundle

    def test_clinical_staff_cannot_manage_users(self):
        for label in ("doctor", "nurse", "pharmacist", "receptionist", "lab_technician", "physiotherapist"):
            assert "manageUsers" not in LEGACY_ROLE_BUNDLES[label]

    def test_normalize_blank_label(self):
        assert normalize_legacy_role("   ") is None
        assert normalize_legacy_role(None) is None


class TestCategories:

    def test_catalog_has_36_permissions(self):
        assert len(ALL_PERMISSION_NAMES) == 36

    def test_known_names_use_the_map(self):
        assert infer_category("viewAuditLogs") == "dashboard"
        assert infer_category("createInvoice") == "billing"

    def test_unknown_names_are_inferred_from_fragments(self):
        assert infer_category("archivePatientRecords") == "patients"
        assert infer_category("exportLabPanels") == "lab"
        assert infer_category("refundPayment") == "billing"
        assert infer_category("somethingElse") == "other"

    def test_every_category_is_ordered(self):
        assert all(infer_category(name) in CATEGORY_ORDER for name in ALL_PERMISSION_NAMES)


class TestPermissionCache:

    def test_set_get_invalidate(self):
        cache = PermissionCache(maxsize=8, ttl=60)
        cache.set(1, frozenset({"viewPatients"}))
        cache.set(2, None)
        assert cache.get(1) == frozenset({"viewPatients"})
        assert cache.get(2) is None

        cache.invalidate(1)
        assert cache.get(1) is MISSING
        assert cache.get(2) is None

        cache.invalidate()
        assert cache.get(2) is MISSING

    def test_load_started_before_invalidation_is_not_stored(self):
        """A set carrying the generation read before an invalidate is dropped."""
        cache = PermissionCache(maxsize=8, ttl=60)
        generation = cache.generation

        cache.invalidate(1)
        cache.set(1, frozenset({"viewPatients"}), generation)
        assert cache.get(1) is MISSING

        cache.set(1, frozenset({"viewPatients"}), cache.generation)
        assert cache.get(1) == frozenset({"viewPatients"})

    @pytest.mark.asyncio
    async def test_loader_skips_store_when_invalidated_mid_query(self, db, clinic, monkeypatch):
        role = await lifecycle.create_role(db, clinic.admin_a, "triage", None, [clinic.perm["viewPatients"]])
        role_id = role.id
        execute = db.execute

        async def execute_then_invalidate(*args, **kwargs):
            result = await execute(*args, **kwargs)
            permission_cache.invalidate(role_id)
            return result

        monkeypatch.setattr(db, "execute", execute_then_invalidate)
        assert await load_role_permission_names(db, role_id) == frozenset({"viewPatients"})
        assert permission_cache.get(role_id) is MISSING

    def test_disabled_when_ttl_is_zero(self):
        cache = PermissionCache(maxsize=8, ttl=0)
        cache.set(1, frozenset({"viewPatients"}))
        assert cache.get(1) is MISSING
        assert cache.enabled is False

    @pytest.mark.asyncio
    async def test_missing_role_is_cached_as_none(self, db, clinic):
        """Unknown role ids resolve to None and are remembered."""
        assert await load_role_permission_names(db, 12345) is None
        assert permission_cache.get(12345) is None

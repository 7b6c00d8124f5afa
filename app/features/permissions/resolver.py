"""
Effective-permission resolution.

Users may carry an RBAC ``role_id``, a legacy free-text ``legacy_role``, or
both. Every permission check goes through ``effective_permissions`` which
applies one precedence rule:

1. ``role_id`` set and naming an existing role -> that role's permissions
2. otherwise the static bundle for ``legacy_role``
3. otherwise nothing (deny by default)
"""
import threading
from typing import AbstractSet, Mapping, Optional, Protocol

from cachetools import TTLCache
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.permissions.catalog import ALL_PERMISSION_NAMES
from app.features.permissions.models import Permission, Role, role_permissions
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Legacy role bundles
# ============================================================================

_DOCTOR = frozenset({
    "viewPatients", "editPatients", "createPatients",
    "createVisit", "viewVisits", "editVisits",
    "createLabOrder", "viewLabResults",
    "createConsultation", "viewConsultation", "createConsultationForm",
    "viewMedications", "createPrescription", "viewPrescriptions",
    "createReferral", "viewReferrals", "manageReferrals",
    "uploadFiles", "viewFiles", "viewDashboard",
    "viewAppointments", "createAppointments", "editAppointments",
})

_NURSE = frozenset({
    "viewPatients", "editPatients",
    "createVisit", "viewVisits",
    "viewLabResults", "viewMedications", "viewPrescriptions",
    "uploadFiles", "viewFiles", "viewDashboard",
    "viewAppointments", "createAppointments",
})

_PHARMACIST = frozenset({
    "viewPatients", "viewMedications", "manageMedications", "viewPrescriptions",
    "viewFiles", "viewDashboard",
})

_RECEPTIONIST = frozenset({
    "viewPatients", "createPatients", "editPatients", "viewVisits",
    "viewAppointments", "createAppointments", "editAppointments", "cancelAppointments",
    "viewPrescriptions", "viewBilling", "createInvoice", "processPayment",
    "viewFiles", "uploadFiles", "viewDashboard",
})

_LAB_TECHNICIAN = frozenset({
    "viewPatients", "createLabOrder", "viewLabResults", "editLabResults",
    "viewFiles", "uploadFiles", "viewDashboard",
})

_PHYSIOTHERAPIST = frozenset({
    "viewPatients", "viewVisits",
    "createConsultation", "viewConsultation", "createConsultationForm",
    "viewFiles", "viewDashboard", "viewAppointments",
})

# Labels that only ever identified platform operators. They are never
# accepted as RBAC role names.
PLATFORM_LEGACY_ROLES = frozenset({"superadmin", "super_admin"})

LEGACY_ROLE_BUNDLES: Mapping[str, frozenset[str]] = {
    "admin": ALL_PERMISSION_NAMES,
    "superadmin": ALL_PERMISSION_NAMES,
    "super_admin": ALL_PERMISSION_NAMES,
    "doctor": _DOCTOR,
    "nurse": _NURSE,
    "pharmacist": _PHARMACIST,
    "receptionist": _RECEPTIONIST,
    "lab_technician": _LAB_TECHNICIAN,
    "physiotherapist": _PHYSIOTHERAPIST,
}


class RoleHolder(Protocol):
    """Anything carrying the two role fields: ``User`` rows and ``Actor``."""
    role_id: Optional[int]
    legacy_role: Optional[str]


def normalize_legacy_role(label: Optional[str]) -> Optional[str]:
    if label is None:
        return None
    label = label.strip().lower()
    return label or None


def effective_permissions(
    user: RoleHolder,
    role_permissions: Mapping[int, AbstractSet[str]],
    legacy_bundles: Mapping[str, AbstractSet[str]] = LEGACY_ROLE_BUNDLES,
) -> frozenset[str]:
    """
    Resolve a user's effective permission names.

    Args:
        user: the user snapshot
        role_permissions: permission names of existing roles, keyed by role id;
            a role id missing from the mapping is treated as a deleted role
        legacy_bundles: static legacy label -> permission names mapping

    Pure: the same inputs always give the same set.
    """
    if user.role_id is not None and user.role_id in role_permissions:
        return frozenset(role_permissions[user.role_id])

    label = normalize_legacy_role(user.legacy_role)
    if label is not None and label in legacy_bundles:
        return frozenset(legacy_bundles[label])

    return frozenset()


# ============================================================================
# Role -> permission cache
# ============================================================================

MISSING = object()


class PermissionCache:
    """
    Process-wide cache of role id -> permission names.

    Entries expire after ``ttl`` seconds and every role mutation calls
    ``invalidate``. A ``None`` value records that the role does not exist.

    ``generation`` moves on every invalidation; a loader passes the value it
    read before querying so a result computed before an invalidation is not
    stored after it.
    """

    def __init__(self, maxsize: int, ttl: int):
        self.enabled = ttl > 0
        self._cache: TTLCache = TTLCache(maxsize=max(maxsize, 1), ttl=max(ttl, 1))
        self._lock = threading.Lock()
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, role_id: int):
        if not self.enabled:
            return MISSING
        with self._lock:
            return self._cache.get(role_id, MISSING)

    def set(
        self, role_id: int, names: Optional[frozenset[str]], generation: Optional[int] = None
    ) -> None:
        if not self.enabled:
            return
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            self._cache[role_id] = names

    def invalidate(self, role_id: Optional[int] = None) -> None:
        """Drop one role, or everything when ``role_id`` is None."""
        with self._lock:
            self._generation += 1
            if role_id is None:
                self._cache.clear()
            else:
                self._cache.pop(role_id, None)
        log.debug("Permission cache invalidated (role=%s)", role_id if role_id is not None else "*")

    def clear(self) -> None:
        self.invalidate(None)


permission_cache = PermissionCache(
    maxsize=config.PERMISSION_CACHE_MAX_SIZE,
    ttl=config.PERMISSION_CACHE_TTL_SECONDS,
)


async def load_role_permission_names(db: AsyncSession, role_id: int) -> Optional[frozenset[str]]:
    """Permission names of a role, or ``None`` when the role does not exist."""
    cached = permission_cache.get(role_id)
    if cached is not MISSING:
        return cached

    generation = permission_cache.generation
    exists = await db.scalar(select(Role.id).where(Role.id == role_id))
    if exists is None:
        names = None
    else:
        result = await db.execute(
            select(Permission.name)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .where(role_permissions.c.role_id == role_id)
        )
        names = frozenset(result.scalars().all())

    permission_cache.set(role_id, names, generation)
    return names


async def resolve_effective_permissions(db: AsyncSession, user: RoleHolder) -> frozenset[str]:
    """Load the user's role permissions and apply ``effective_permissions``."""
    lookup: dict[int, frozenset[str]] = {}
    if user.role_id is not None:
        names = await load_role_permission_names(db, user.role_id)
        if names is not None:
            lookup[user.role_id] = names
    return effective_permissions(user, lookup)

"""
Seeding of the canonical permissions and the system default roles.

Both functions only add what is missing and can run on every startup.
"""
from typing import Dict, List
from sqlalchemy import select, insert, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import transaction
from app.features.permissions import audit
from app.features.permissions.catalog import DEFAULT_PERMISSIONS, infer_category
from app.features.permissions.models import Permission, Role, role_permissions
from app.features.permissions.resolver import LEGACY_ROLE_BUNDLES, PLATFORM_LEGACY_ROLES, permission_cache
from app.utils import get_logger


log = get_logger(__name__)


SYSTEM_ROLE_DESCRIPTIONS: Dict[str, str] = {
    "admin": "Organization administrator with all permissions",
    "doctor": "Physician with clinical access",
    "nurse": "Nursing staff",
    "pharmacist": "Pharmacy and dispensing staff",
    "receptionist": "Front desk staff handling patient registration and appointments",
    "lab_technician": "Laboratory staff",
    "physiotherapist": "Physiotherapy staff",
}


async def ensure_default_permissions(db: AsyncSession) -> int:
    """
    Insert the canonical permissions that do not exist yet.

    Returns:
        Number of permissions created
    """
    result = await db.execute(select(Permission.name))
    existing = set(result.scalars().all())

    missing = [(name, description) for name, description in DEFAULT_PERMISSIONS if name not in existing]
    if not missing:
        log.debug("All %d default permissions present", len(DEFAULT_PERMISSIONS))
        return 0

    async with transaction(db):
        for name, description in missing:
            db.add(Permission(name=name, description=description, category=infer_category(name)))

    log.info("Created %d default permissions", len(missing))
    return len(missing)


async def ensure_system_roles(db: AsyncSession) -> List[str]:
    """
    Create the shared system default roles from the legacy role bundles.

    Roles already present (by case-insensitive name) are left untouched so
    edits made through the API survive restarts.

    Returns:
        Names of the roles created
    """
    result = await db.execute(select(Permission.name, Permission.id))
    permission_ids: Dict[str, int] = {name: pid for name, pid in result.all()}

    created: List[str] = []
    async with transaction(db):
        for name, bundle in LEGACY_ROLE_BUNDLES.items():
            if name in PLATFORM_LEGACY_ROLES:
                continue
            exists = await db.scalar(select(Role.id).where(func.lower(Role.name) == name))
            if exists is not None:
                continue

            role = Role(
                name=name,
                description=SYSTEM_ROLE_DESCRIPTIONS.get(name),
                is_system_default=True,
                organization_id=None,
            )
            db.add(role)
            await db.flush()

            ids = sorted(permission_ids[p] for p in bundle if p in permission_ids)
            if ids:
                await db.execute(
                    insert(role_permissions),
                    [{"role_id": role.id, "permission_id": pid} for pid in ids],
                )
            await audit.append(
                db,
                actor_id=None,
                action=audit.CREATE_ROLE,
                entity_type="role",
                entity_id=role.id,
                details={"name": name, "permissionIds": ids, "systemDefault": True},
            )
            created.append(name)

    if created:
        permission_cache.clear()
        log.info("Created system roles: %s", ", ".join(created))
    return created

"""
Permission catalog: the canonical permission list and read-only lookups
over permissions and roles.
"""
from typing import Any, Dict, List
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFound
from app.features.permissions.models import Permission, Role, role_permissions
from app.features.permissions.scope import can_view_role, scope_roles
from app.features.users.auth import Actor
from app.features.users.models import User


# ============================================================================
# Canonical permissions
# ============================================================================

DEFAULT_PERMISSIONS: List[tuple[str, str]] = [
    # Patient data
    ("viewPatients", "View patient data"),
    ("editPatients", "Edit patient data"),
    ("createPatients", "Create new patient profiles"),

    # Visits
    ("createVisit", "Create patient visits"),
    ("viewVisits", "View visit records"),
    ("editVisits", "Edit visit records"),

    # Lab orders & results
    ("createLabOrder", "Create lab orders"),
    ("viewLabResults", "View lab results"),
    ("editLabResults", "Update lab results"),

    # Consultations & forms
    ("createConsultation", "Create specialist consultations"),
    ("viewConsultation", "View consultation records"),
    ("createConsultationForm", "Create consultation form templates"),

    # Medications & prescriptions
    ("viewMedications", "View prescribed medications"),
    ("manageMedications", "Manage and dispense medications"),
    ("createPrescription", "Create prescriptions"),
    ("viewPrescriptions", "View prescription records"),

    # Referrals
    ("createReferral", "Create patient referrals"),
    ("viewReferrals", "View referral records"),
    ("manageReferrals", "Accept/reject referrals"),

    # Staff & users
    ("manageUsers", "Manage staff and user roles"),
    ("viewUsers", "View staff information"),

    # Organizations
    ("manageOrganizations", "Manage organization settings"),
    ("viewOrganizations", "View organization information"),

    # Files
    ("uploadFiles", "Upload files and documents"),
    ("viewFiles", "View and download files"),
    ("deleteFiles", "Delete files"),

    # Dashboard & analytics
    ("viewDashboard", "Access the dashboard"),
    ("viewReports", "View analytics and performance reports"),
    ("viewAuditLogs", "View system audit logs"),

    # Appointments
    ("viewAppointments", "View appointment schedules"),
    ("createAppointments", "Create and schedule appointments"),
    ("editAppointments", "Modify existing appointments"),
    ("cancelAppointments", "Cancel appointments"),

    # Billing
    ("viewBilling", "View invoices and billing information"),
    ("createInvoice", "Create invoices for patients"),
    ("processPayment", "Process and record payments"),
]

ALL_PERMISSION_NAMES: frozenset[str] = frozenset(name for name, _ in DEFAULT_PERMISSIONS)

CATEGORY_MAP: Dict[str, str] = {
    "viewPatients": "patients",
    "editPatients": "patients",
    "createPatients": "patients",
    "createVisit": "visits",
    "viewVisits": "visits",
    "editVisits": "visits",
    "createLabOrder": "lab",
    "viewLabResults": "lab",
    "editLabResults": "lab",
    "createConsultation": "consultations",
    "viewConsultation": "consultations",
    "createConsultationForm": "consultations",
    "viewMedications": "medications",
    "manageMedications": "medications",
    "createPrescription": "medications",
    "viewPrescriptions": "medications",
    "createReferral": "referrals",
    "viewReferrals": "referrals",
    "manageReferrals": "referrals",
    "manageUsers": "users",
    "viewUsers": "users",
    "manageOrganizations": "organizations",
    "viewOrganizations": "organizations",
    "uploadFiles": "files",
    "viewFiles": "files",
    "deleteFiles": "files",
    "viewDashboard": "dashboard",
    "viewReports": "dashboard",
    "viewAuditLogs": "dashboard",
    "viewAppointments": "appointments",
    "createAppointments": "appointments",
    "editAppointments": "appointments",
    "cancelAppointments": "appointments",
    "viewBilling": "billing",
    "createInvoice": "billing",
    "processPayment": "billing",
}

CATEGORY_ORDER = [
    "patients", "visits", "lab", "consultations", "medications", "referrals",
    "appointments", "users", "organizations", "files", "billing", "dashboard", "other",
]

# Checked in order; first substring hit wins
_CATEGORY_PATTERNS: List[tuple[tuple[str, ...], str]] = [
    (("patient",), "patients"),
    (("visit",), "visits"),
    (("lab",), "lab"),
    (("consultation",), "consultations"),
    (("medication", "prescription"), "medications"),
    (("referral",), "referrals"),
    (("user",), "users"),
    (("organization",), "organizations"),
    (("file",), "files"),
    (("dashboard", "report", "audit"), "dashboard"),
    (("appointment",), "appointments"),
    (("billing", "invoice", "payment"), "billing"),
]


def infer_category(name: str) -> str:
    """
    Category for a permission name.

    Known names come from ``CATEGORY_MAP``; anything else is matched on
    name fragments, falling back to ``"other"``.
    """
    if name in CATEGORY_MAP:
        return CATEGORY_MAP[name]
    lowered = name.lower()
    for fragments, category in _CATEGORY_PATTERNS:
        if any(fragment in lowered for fragment in fragments):
            return category
    return "other"


# ============================================================================
# Lookups
# ============================================================================

def _user_count_column():
    return (
        select(func.count(User.id))
        .where(User.role_id == Role.id)
        .correlate(Role)
        .scalar_subquery()
    )


def _permission_count_column():
    return (
        select(func.count())
        .select_from(role_permissions)
        .where(role_permissions.c.role_id == Role.id)
        .correlate(Role)
        .scalar_subquery()
    )


async def count_role_users(db: AsyncSession, role_id: int) -> int:
    """Live number of users whose ``role_id`` points at the role."""
    result = await db.execute(select(func.count(User.id)).where(User.role_id == role_id))
    return result.scalar() or 0


async def get_role_permissions(db: AsyncSession, role_id: int) -> List[Permission]:
    """Full permission list of a role, ordered by name."""
    stmt = (
        select(Permission)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .where(role_permissions.c.role_id == role_id)
        .order_by(Permission.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_permissions(db: AsyncSession) -> Dict[str, Any]:
    """All permissions, plus the same list grouped by category."""
    result = await db.execute(select(Permission).order_by(Permission.name))
    permissions = list(result.scalars().all())

    grouped: Dict[str, List[Permission]] = {}
    for permission in permissions:
        category = permission.category or infer_category(permission.name)
        grouped.setdefault(category, []).append(permission)

    ordered: Dict[str, List[Permission]] = {
        category: grouped.pop(category) for category in CATEGORY_ORDER if category in grouped
    }
    # Categories outside the fixed order go last, alphabetically
    ordered.update(sorted(grouped.items()))

    return {"all": permissions, "grouped": ordered}


async def list_roles(db: AsyncSession, actor: Actor) -> List[Dict[str, Any]]:
    """Roles visible to the actor with their permission and user counts."""
    stmt = scope_roles(
        select(
            Role,
            _user_count_column().label("user_count"),
            _permission_count_column().label("permission_count"),
        ),
        actor,
    ).order_by(Role.name)
    result = await db.execute(stmt)

    return [
        {
            "id": role.id,
            "name": role.name,
            "description": role.description,
            "is_system_default": role.is_system_default,
            "organization_id": role.organization_id,
            "created_at": role.created_at,
            "updated_at": role.updated_at,
            "user_count": user_count or 0,
            "permission_count": permission_count or 0,
        }
        for role, user_count, permission_count in result.all()
    ]


async def get_role(db: AsyncSession, actor: Actor, role_id: int) -> Dict[str, Any]:
    """
    A role with its full permission list and live user count.

    Raises:
        NotFound: role does not exist or belongs to another organization
    """
    role = await db.get(Role, role_id, populate_existing=True)
    if role is None or not can_view_role(actor, role):
        raise NotFound("Role not found")

    return {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "is_system_default": role.is_system_default,
        "organization_id": role.organization_id,
        "created_at": role.created_at,
        "updated_at": role.updated_at,
        "user_count": await count_role_users(db, role.id),
        "permissions": await get_role_permissions(db, role.id),
    }

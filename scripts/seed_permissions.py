"""
Seed script to populate default permissions and roles.

Run this script after database initialization to create:
- The canonical clinic permissions
- The shared system default roles (admin, doctor, nurse, ...)

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.seed import (
    SYSTEM_ROLE_DESCRIPTIONS,
    ensure_default_permissions,
    ensure_system_roles,
)
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            created_permissions = await ensure_default_permissions(db)
            created_roles = await ensure_system_roles(db)
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            raise

    log.info("Permission seeding completed successfully!")
    log.info(f"{created_permissions} permissions created")
    log.info("")
    log.info("System roles:")
    for role_name, description in SYSTEM_ROLE_DESCRIPTIONS.items():
        marker = " (new)" if role_name in created_roles else ""
        log.info(f"  - {role_name}: {description}{marker}")


if __name__ == "__main__":
    asyncio.run(main())

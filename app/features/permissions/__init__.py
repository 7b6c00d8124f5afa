"""
Permission management feature module.

Implements organization-scoped Role-Based Access Control (RBAC): the
permission catalog, effective-permission resolution, role lifecycle, role
assignment and the audit trail.
"""

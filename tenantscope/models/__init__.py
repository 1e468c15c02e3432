"""SQLAlchemy models for organizations, users, roles and memberships."""

from tenantscope.models.tenant import (
    OWNER,
    ROLE_TYPES,
    LastOwnerError,
    Membership,
    Organization,
    OrganizationDirectory,
    Role,
    TenantColumnMixin,
    User,
)

__all__ = [
    "OWNER",
    "ROLE_TYPES",
    "LastOwnerError",
    "Membership",
    "Organization",
    "OrganizationDirectory",
    "Role",
    "TenantColumnMixin",
    "User",
]

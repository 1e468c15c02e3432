"""
Tenant scoping for SQLAlchemy models.

This module provides row-level multi-tenancy including:
- Ambient tenant context via context variables
- Automatic filtering of tenant-scoped models to the current tenant
- Automatic tenant assignment and immutability of the tenant column
- Explicit, audited and configurable bypass operations
- A registry of tenant-scoped, system-scoped and excluded models

Key Components:
    - TenantContext: Context manager for tenant-scoped operations
    - TenantScoped: Mixin that puts a model under tenant scoping
    - SystemScoped: Marker mixin for global reference data
    - ModelRegistry: Introspection of every scoped model
    - TenantMiddleware: ASGI middleware that sets the tenant per request

Example:
    from tenantscope.multitenancy import (
        TenantContext, TenantScoped, get_current_tenant_id,
    )

    class Invoice(TenantScoped, Base):
        __tablename__ = "invoices"
        ...

    with TenantContext(42):
        assert get_current_tenant_id() == 42
        session.scalars(select(Invoice)).all()   # tenant 42 only
"""

from tenantscope.multitenancy.context import (
    NoTenantContext,
    TenantContext,
    TenantId,
    TenantMiddleware,
    bypass_active,
    clear_context,
    configure_tenant_resolver,
    get_current_tenant,
    get_current_tenant_id,
    require_tenant,
    run_with_tenant,
    run_with_tenant_async,
    run_without_tenant,
    set_current_tenant,
    set_current_tenant_id,
    tenant_required,
    tenant_scoping_active,
    with_tenant,
)
from tenantscope.multitenancy.errors import (
    AdminAuthorizationError,
    CrossTenantAccessError,
    MissingColumnError,
    ModelIncompatibilityError,
    ReadOnlyRecordError,
    ScopingDisabledError,
    TenantScopingError,
    TenantValidationError,
    UnscopedQueryError,
)
from tenantscope.multitenancy.guard import (
    SKIP_TENANT_SCOPING,
    SystemScoped,
    TenantScoped,
    install_session_hooks,
    validate_tenant_scoping_compatibility,
)
from tenantscope.multitenancy.registry import (
    ModelRegistry,
    get_registry,
)

__all__ = [
    # Context
    "NoTenantContext",
    "TenantContext",
    "TenantId",
    "TenantMiddleware",
    "bypass_active",
    "clear_context",
    "configure_tenant_resolver",
    "get_current_tenant",
    "get_current_tenant_id",
    "require_tenant",
    "run_with_tenant",
    "run_with_tenant_async",
    "run_without_tenant",
    "set_current_tenant",
    "set_current_tenant_id",
    "tenant_required",
    "tenant_scoping_active",
    "with_tenant",
    # Errors
    "AdminAuthorizationError",
    "CrossTenantAccessError",
    "MissingColumnError",
    "ModelIncompatibilityError",
    "ReadOnlyRecordError",
    "ScopingDisabledError",
    "TenantScopingError",
    "TenantValidationError",
    "UnscopedQueryError",
    # Guard
    "SKIP_TENANT_SCOPING",
    "SystemScoped",
    "TenantScoped",
    "install_session_hooks",
    "validate_tenant_scoping_compatibility",
    # Registry
    "ModelRegistry",
    "get_registry",
]

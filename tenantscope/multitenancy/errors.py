"""
Exception hierarchy for tenant scoping.

Registration-time errors (``ModelIncompatibilityError`` and
``MissingColumnError``) are raised while a model class is being declared,
so a misconfigured model stops the application at import time. Bypass
errors are raised to the immediate caller of the bypass operation.

Validation failures on tenant-scoped records are not security errors; they
derive from ``ValueError`` so they read like any other SQLAlchemy
validation failure raised from a flush.
"""

from __future__ import annotations

from typing import Any


class TenantScopingError(Exception):
    """Base class for all tenant scoping security errors."""


class ModelIncompatibilityError(TenantScopingError):
    """Raised when a model cannot take part in tenant scoping.

    Attributes:
        model_name: Name of the offending model class.
        reason: Why the model was rejected.
    """

    def __init__(self, model_name: str, reason: str):
        self.model_name = model_name
        self.reason = reason
        super().__init__(f"{model_name} is not compatible with tenant scoping: {reason}")


class MissingColumnError(ModelIncompatibilityError):
    """Raised when a tenant-scoped model lacks the tenant foreign key.

    The message lists every way to resolve the problem, since this error
    halts application start-up.

    Attributes:
        model_name: Name of the offending model class.
        column: The tenant column that was expected.
        table_name: The model's table, if mapped.

    Example:
        try:
            class Invoice(TenantScoped, Base):
                __tablename__ = "invoices"
                id: Mapped[int] = mapped_column(primary_key=True)
        except MissingColumnError as e:
            print(e.column)  # "organization_id"
    """

    def __init__(self, model_name: str, column: str, table_name: str | None = None):
        self.column = column
        self.table_name = table_name
        table = table_name or model_name.lower()
        reason = (
            f"missing column {column!r}.\n"
            f"To fix this issue, you have several options:\n"
            f"  1. Add the missing column with a migration, e.g. "
            f"tenantscope.migration.add_tenant_column({table!r}, {column!r})\n"
            f"  2. Mark the model as a system model: "
            f"class {model_name}(SystemScoped, Base)\n"
            f"  3. Add the system model to the exclusion list: "
            f"registry.exclude_model({model_name!r}) or "
            f"TENANT_EXCLUDED_MODELS='[\"{model_name}\"]'"
        )
        super().__init__(model_name, reason)


class ScopingDisabledError(TenantScopingError):
    """Raised when a bypass is attempted while bypasses are disabled."""

    def __init__(self, operation: str, environment: str | None = None):
        self.operation = operation
        self.environment = environment
        where = f" in environment {environment!r}" if environment else ""
        super().__init__(
            f"Tenant scoping bypasses are globally disabled{where}; "
            f"refusing {operation}. Enable them with TENANT_BYPASSES_DISABLED=false "
            f"and list the environment in TENANT_BYPASS_ENABLED_ENVIRONMENTS."
        )


class AdminAuthorizationError(TenantScopingError):
    """Raised when an admin-gated bypass fails its authorization check."""

    def __init__(self, operation: str = "with_admin_bypass"):
        self.operation = operation
        super().__init__(
            f"Admin authorization required for {operation}: "
            f"the admin check did not pass"
        )


class CrossTenantAccessError(TenantScopingError):
    """Raised when a record outside the current tenant is asserted accessible."""

    def __init__(self, model_name: str, record_tenant_id: Any, current_tenant_id: Any):
        self.model_name = model_name
        self.record_tenant_id = record_tenant_id
        self.current_tenant_id = current_tenant_id
        super().__init__(
            f"{model_name} belongs to tenant {record_tenant_id!r}, "
            f"not the current tenant {current_tenant_id!r}; "
            f"use a bypass operation for cross-tenant access"
        )


class UnscopedQueryError(TenantScopingError):
    """Raised when tenant context is required but not set."""


class ReadOnlyRecordError(TenantScopingError):
    """Raised when a record loaded through a read-only bypass is modified."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(
            f"{model_name} was loaded through without_scoping_readonly "
            f"and cannot be modified or deleted"
        )


class TenantValidationError(ValueError):
    """Raised from a flush when a tenant-scoped record fails validation.

    Attributes:
        record: The invalid instance.
        errors: Mapping of attribute name to error messages.
    """

    def __init__(self, record: Any, errors: dict[str, list[str]]):
        self.record = record
        self.errors = errors
        details = "; ".join(
            f"{field}: {message}"
            for field, messages in errors.items()
            for message in messages
        )
        super().__init__(f"Validation failed for {type(record).__name__}: {details}")

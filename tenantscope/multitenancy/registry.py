"""
Model registry for tenant scoping introspection.

Every model class declared with ``TenantScoped`` or ``SystemScoped`` (or
excluded by configuration) is recorded here at class-definition time. The
registry is the only process-wide mutable state in the package and is
written only while models are being declared.

Usage:
    from tenantscope.multitenancy.registry import get_registry

    registry = get_registry()
    registry.is_tenant_scoped(Invoice)      # True
    registry.scoping_summary()
    # {"tenant_scoped": ["Invoice"], "system_scoped": ["Country"],
    #  "excluded": [], "total": 2}
    registry.print_summary()
"""

from __future__ import annotations

import threading
from typing import Any

from rich.console import Console
from rich.table import Table
from sqlalchemy import inspect as sa_inspect

from tenantscope.config.settings import settings
from tenantscope.multitenancy.errors import ModelIncompatibilityError

TENANT_SCOPED = "tenant"
SYSTEM_SCOPED = "system"
EXCLUDED = "excluded"


def _model_name(model: type | str) -> str:
    return model if isinstance(model, str) else model.__name__


class ModelRegistry:
    """Registry of models taking part in tenant scoping.

    Each model belongs to exactly one category: tenant-scoped,
    system-scoped or excluded. Inserts are idempotent and ordered.

    Attributes:
        _categories: Mapping of model class to its category.
        _excluded_names: Model names excluded at runtime.

    Example:
        registry = ModelRegistry()
        registry.register(Invoice)
        registry.register(Invoice)   # no-op
        assert registry.tenant_scoped_models() == [Invoice]
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._categories: dict[type, str] = {}
        self._excluded_names: set[str] = set()
        self._lock = threading.Lock()

    def _add(self, model: type, category: str) -> None:
        with self._lock:
            existing = self._categories.get(model)
            if existing is None:
                self._categories[model] = category
            elif existing != category:
                raise ModelIncompatibilityError(
                    model.__name__,
                    f"already registered as {existing}-scoped, cannot also be {category}",
                )

    def register(self, model: type) -> None:
        """Register a tenant-scoped model. Registering twice is a no-op."""
        self._add(model, TENANT_SCOPED)

    def register_system_scoped(self, model: type) -> None:
        """Register a system-scoped model."""
        self._add(model, SYSTEM_SCOPED)

    def register_excluded(self, model: type) -> None:
        """Register a model skipped because it is on the exclusion list."""
        self._add(model, EXCLUDED)

    def unregister(self, model: type) -> bool:
        """Forget a model. Returns True if it was registered."""
        with self._lock:
            return self._categories.pop(model, None) is not None

    def is_registered(self, model: type) -> bool:
        return model in self._categories

    def is_tenant_scoped(self, model: type) -> bool:
        return self._categories.get(model) == TENANT_SCOPED

    def is_system_scoped(self, model: type) -> bool:
        return self._categories.get(model) == SYSTEM_SCOPED

    def scoping_type(self, model: type) -> str | None:
        """Return ``"tenant"``, ``"system"``, ``"excluded"`` or None."""
        return self._categories.get(model)

    def exclude_model(self, model: type | str) -> None:
        """Exclude a model (by class or name) from tenant scoping.

        Only affects models declared after the call.
        """
        self._excluded_names.add(_model_name(model))

    def is_excluded(self, model: type | str) -> bool:
        name = _model_name(model)
        return name in self._excluded_names or name in settings.TENANT_EXCLUDED_MODELS

    def tenant_scoped_models(self) -> list[type]:
        """Snapshot of tenant-scoped models in registration order."""
        return self._models_in(TENANT_SCOPED)

    def system_scoped_models(self) -> list[type]:
        return self._models_in(SYSTEM_SCOPED)

    def excluded_models(self) -> list[type]:
        return self._models_in(EXCLUDED)

    def _models_in(self, category: str) -> list[type]:
        return [m for m, c in list(self._categories.items()) if c == category]

    def model_compatible(self, model: type, column: str | None = None) -> bool:
        """Check whether ``model`` has a mapped tenant column.

        Args:
            model: A model class.
            column: Column attribute name; defaults to the model's own
                tenant column or ``settings.TENANT_COLUMN``.

        Returns:
            True if the model is mapped and has the column.
        """
        mapper = sa_inspect(model, raiseerr=False)
        if mapper is None:
            return False
        column = column or getattr(model, "__tenant_column__", None) or settings.TENANT_COLUMN
        return column in mapper.columns

    def scoping_summary(self) -> dict[str, Any]:
        """Read-only snapshot of the registry for diagnostics."""
        tenant = [m.__name__ for m in self.tenant_scoped_models()]
        system = [m.__name__ for m in self.system_scoped_models()]
        excluded = [m.__name__ for m in self.excluded_models()]
        return {
            "tenant_scoped": tenant,
            "system_scoped": system,
            "excluded": excluded,
            "total": len(tenant) + len(system) + len(excluded),
        }

    def print_summary(self, console: Console | None = None) -> None:
        """Render the scoping summary as a rich table."""
        console = console or Console()
        summary = self.scoping_summary()

        table = Table(title="TENANT SCOPING SUMMARY", show_lines=False)
        table.add_column("Model", style="cyan")
        table.add_column("Scoping")
        for name in summary["tenant_scoped"]:
            table.add_row(name, "[green]Tenant-Scoped[/green]")
        for name in summary["system_scoped"]:
            table.add_row(name, "[yellow]System-Scoped[/yellow]")
        for name in summary["excluded"]:
            table.add_row(name, "[dim]Excluded[/dim]")

        console.print(table)
        console.print(
            f"Total Models: {summary['total']}  "
            f"(Tenant-Scoped Models: {len(summary['tenant_scoped'])}, "
            f"System-Scoped Models: {len(summary['system_scoped'])}, "
            f"Excluded Models: {len(summary['excluded'])})"
        )

    def clear(self) -> None:
        """Remove all registrations and runtime exclusions."""
        with self._lock:
            self._categories.clear()
            self._excluded_names.clear()

    def __contains__(self, model: type) -> bool:
        return self.is_registered(model)

    def __len__(self) -> int:
        return len(self._categories)


_registry = ModelRegistry()


def get_registry() -> ModelRegistry:
    """Return the process-wide registry."""
    return _registry

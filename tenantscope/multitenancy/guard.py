"""
Tenant scoping guard for SQLAlchemy models.

Declaring a model with the ``TenantScoped`` mixin validates, at class
creation, that the model carries the tenant foreign key and registers it.
From then on:

- every ORM SELECT, relationship load and bulk UPDATE/DELETE touching the
  model is limited to the current tenant (no tenant means no rows, in
  every environment);
- new records get the current tenant id assigned on flush, and a record
  without a tenant cannot be flushed;
- the tenant id of an existing record can never change;
- cross-tenant access only happens through explicit, audited bypass
  operations that can be switched off by configuration.

The filtering and flush checks are SQLAlchemy ``Session`` events, installed
once for every session in the process.

Example:
    from sqlalchemy import select
    from tenantscope.multitenancy import TenantScoped, TenantContext

    class Invoice(TenantScoped, Base):
        __tablename__ = "invoices"
        id: Mapped[int] = mapped_column(primary_key=True)
        organization_id: Mapped[int] = mapped_column(index=True)

    with TenantContext(1):
        session.add(Invoice())          # organization_id == 1
        session.commit()
        session.scalars(select(Invoice)).all()   # tenant 1 rows only

    # Audited bypass for a data migration
    rows = Invoice.without_scoping(lambda stmt: session.scalars(stmt).all())
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import Any, Callable, TypeVar
import logging

from sqlalchemy import event, false, func, inspect as sa_inspect, select
from sqlalchemy.orm import (
    MANYTOONE,
    ORMExecuteState,
    Session,
    with_loader_criteria,
)
from sqlalchemy.sql import Select

from tenantscope.config.settings import settings
from tenantscope.multitenancy.audit import (
    OUTCOME_AUTHORIZED,
    OUTCOME_DENIED,
    caller_location,
    log_bypass_operation,
)
from tenantscope.multitenancy.context import (
    TenantContext,
    TenantId,
    begin_bypass,
    bypass_active,
    end_bypass,
    get_current_tenant_id,
    get_tenant_enumerator,
    tenant_id_of,
    tenant_scoping_active,
)
from tenantscope.multitenancy.errors import (
    AdminAuthorizationError,
    CrossTenantAccessError,
    MissingColumnError,
    ModelIncompatibilityError,
    ReadOnlyRecordError,
    ScopingDisabledError,
    TenantValidationError,
)
from tenantscope.multitenancy.registry import ModelRegistry, get_registry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Execution option that exempts a single statement from tenant filtering
SKIP_TENANT_SCOPING = "skip_tenant_scoping"

# InstanceState.info key for records loaded through a read-only bypass
READONLY_INFO_KEY = "tenantscope_readonly"

TENANT_CHANGED_MESSAGE = "tenant cannot be changed after creation"
TENANT_BLANK_MESSAGE = "can't be blank"

_readonly_active: ContextVar[bool] = ContextVar(
    "tenant_scoping_readonly_active", default=False
)


# ---------------------------------------------------------------------------
# Compatibility validation
# ---------------------------------------------------------------------------


def _is_declared_mapping(cls: type) -> bool:
    """True once declarative has mapped ``cls``; False for mixins and abstract bases."""
    return "__mapper__" in cls.__dict__


def validate_tenant_scoping_compatibility(
    model: type,
    registry: ModelRegistry | None = None,
) -> bool:
    """Validate ``model`` and register it with the scoping registry.

    Args:
        model: A mapped model class using ``TenantScoped``.
        registry: Registry to record the model in; the process-wide
            registry by default.

    Returns:
        True if tenant scoping was installed, False if the model is on
        the exclusion list.

    Raises:
        ModelIncompatibilityError: If the model is also ``SystemScoped``
            or is not a mapped class.
        MissingColumnError: If the tenant column is not mapped.
    """
    registry = registry or get_registry()
    name = model.__name__

    if issubclass(model, SystemScoped):
        logger.error(f"[TENANT_ERROR] {name} declares both TenantScoped and SystemScoped")
        raise ModelIncompatibilityError(
            name, "declares both TenantScoped and SystemScoped; pick one"
        )

    if registry.is_excluded(model):
        registry.register_excluded(model)
        logger.info(f"[MULTI_TENANT] {name} is on the exclusion list, skipping tenant scoping")
        return False

    mapper = sa_inspect(model, raiseerr=False)
    if mapper is None:
        logger.error(f"[TENANT_ERROR] {name} is not a mapped model")
        raise ModelIncompatibilityError(name, "is not a mapped SQLAlchemy model")

    column = model.tenant_column_name()
    if column not in mapper.columns:
        table = getattr(model, "__tablename__", None)
        logger.error(f"[TENANT_ERROR] {name} is missing tenant column {column!r}")
        raise MissingColumnError(name, column, table)

    registry.register(model)
    install_session_hooks()
    logger.debug(f"[MULTI_TENANT] Registered tenant-scoped model {name} ({column})")
    return True


# ---------------------------------------------------------------------------
# Session hooks
# ---------------------------------------------------------------------------


def _tenant_criteria(model: type, tenant_id: TenantId | None) -> Any:
    if tenant_id is None:
        return false()
    return getattr(model, model.tenant_column_name()) == tenant_id


def _apply_tenant_criteria(state: ORMExecuteState) -> None:
    """Limit ORM SELECTs, lazy loads and bulk UPDATE/DELETE to the current tenant.

    Relationship loads are filtered with the tenant current at load time,
    not the one the parent was loaded under. Refreshes of expired
    attributes on an already loaded record are left alone.
    """
    if state.is_column_load:
        return
    if not (state.is_select or state.is_update or state.is_delete):
        return
    if state.execution_options.get(SKIP_TENANT_SCOPING, False) or bypass_active():
        return

    registry = get_registry()
    tenant_id = get_current_tenant_id()

    if state.is_select:
        models = registry.tenant_scoped_models()
        if not models:
            return
        state.statement = state.statement.options(*(
            with_loader_criteria(
                model,
                _tenant_criteria(model, tenant_id),
                include_aliases=True,
                propagate_to_loaders=False,
            )
            for model in models
        ))
        return

    for mapper in state.all_mappers:
        model = mapper.class_
        if registry.is_tenant_scoped(model):
            state.statement = state.statement.where(_tenant_criteria(model, tenant_id))


def _is_readonly(instance: Any) -> bool:
    return bool(sa_inspect(instance).info.get(READONLY_INFO_KEY))


def _enforce_tenant_invariants(session: Session, flush_context: Any, instances: Any) -> None:
    """Assign tenants to new records and reject invalid changes before a flush."""
    registry = get_registry()

    for instance in list(session.dirty) + list(session.deleted):
        if _is_readonly(instance) and (
            instance in session.deleted or session.is_modified(instance)
        ):
            raise ReadOnlyRecordError(type(instance).__name__)

    for instance in list(session.new):
        if not registry.is_tenant_scoped(type(instance)):
            continue
        instance._assign_current_tenant()
        errors = instance.tenant_validation_errors()
        if errors:
            logger.warning(
                f"[TENANT_WARNING] Refusing to insert {type(instance).__name__}: {errors}"
            )
            raise TenantValidationError(instance, errors)

    for instance in list(session.dirty):
        if not registry.is_tenant_scoped(type(instance)):
            continue
        if not session.is_modified(instance):
            continue
        errors = instance.tenant_validation_errors()
        if errors:
            logger.warning(
                f"[TENANT_WARNING] Refusing to update {type(instance).__name__}: {errors}"
            )
            raise TenantValidationError(instance, errors)


def _mark_readonly_loads(session: Session, instance: Any) -> None:
    if _readonly_active.get():
        sa_inspect(instance).info[READONLY_INFO_KEY] = True


def install_session_hooks(session_cls: type = Session) -> None:
    """Install the tenant scoping events on ``session_cls``. Idempotent."""
    if event.contains(session_cls, "do_orm_execute", _apply_tenant_criteria):
        return
    event.listen(session_cls, "do_orm_execute", _apply_tenant_criteria)
    event.listen(session_cls, "before_flush", _enforce_tenant_invariants)
    event.listen(session_cls, "loaded_as_persistent", _mark_readonly_loads)
    logger.debug(f"[MULTI_TENANT] Installed tenant scoping hooks on {session_cls.__name__}")


# ---------------------------------------------------------------------------
# Mixins
# ---------------------------------------------------------------------------


class SystemScoped:
    """Marker mixin for global or reference data that is never tenant filtered.

    Example:
        class Country(SystemScoped, Base):
            __tablename__ = "countries"
    """

    __system_scoped__ = True

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if issubclass(cls, TenantScoped) or not _is_declared_mapping(cls):
            return
        get_registry().register_system_scoped(cls)
        logger.debug(f"[MULTI_TENANT] Registered system-scoped model {cls.__name__}")

    @classmethod
    def is_tenant_scoped(cls) -> bool:
        return False

    @classmethod
    def is_system_scoped(cls) -> bool:
        return True

    @classmethod
    def scoping_type(cls) -> str:
        return "system"


class TenantScoped:
    """Mixin that puts a declarative model under tenant scoping.

    The model must map the tenant column (``__tenant_column__``, or
    ``TENANT_COLUMN`` from settings). Validation runs right after
    SQLAlchemy maps the class, so a missing column fails at import.

    Attributes:
        __tenant_column__: Name of the tenant foreign key attribute.
    """

    __tenant_column__: str | None = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if not _is_declared_mapping(cls):
            return
        if cls.__tenant_column__ is None:
            cls.__tenant_column__ = settings.TENANT_COLUMN
        validate_tenant_scoping_compatibility(cls)

    # -- introspection -----------------------------------------------------

    @classmethod
    def tenant_column_name(cls) -> str:
        return cls.__tenant_column__ or settings.TENANT_COLUMN

    @classmethod
    def is_tenant_scoped(cls) -> bool:
        return get_registry().is_tenant_scoped(cls)

    @classmethod
    def is_system_scoped(cls) -> bool:
        return False

    @classmethod
    def scoping_type(cls) -> str | None:
        """``"tenant"``, or ``"excluded"`` for models on the exclusion list."""
        return get_registry().scoping_type(cls)

    @classmethod
    def tenant_scoping_active(cls) -> bool:
        return cls.is_tenant_scoped() and tenant_scoping_active()

    @classmethod
    def _tenant_relationship_key(cls) -> str | None:
        """Key of the many-to-one relationship that writes the tenant column."""
        mapper = sa_inspect(cls)
        column = mapper.columns[cls.tenant_column_name()]
        for rel in mapper.relationships:
            if rel.direction is MANYTOONE and column in rel.local_columns:
                return rel.key
        return None

    # -- bypass operations -------------------------------------------------

    @classmethod
    def _unscoped_select(cls) -> Select:
        return select(cls).execution_options(**{SKIP_TENANT_SCOPING: True})

    @classmethod
    def _check_bypass_allowed(cls, operation: str, caller: str) -> None:
        if settings.bypass_enabled:
            return
        log_bypass_operation(
            operation,
            cls.__name__,
            outcome=OUTCOME_DENIED,
            caller=caller,
            tenant_id=get_current_tenant_id(),
            reason="bypasses disabled",
        )
        raise ScopingDisabledError(operation, settings.TENANT_ENVIRONMENT)

    @classmethod
    def _audit(cls, operation: str, caller: str, **details: Any) -> None:
        log_bypass_operation(
            operation,
            cls.__name__,
            caller=caller,
            tenant_id=get_current_tenant_id(),
            **details,
        )

    @classmethod
    def without_scoping(cls, body: Callable[[Select], T]) -> T:
        """Run ``body`` with tenant filtering suspended.

        ``body`` receives an unfiltered ``select(cls)``; any other query it
        issues is unfiltered too.

        Raises:
            ScopingDisabledError: If bypasses are disabled.
        """
        caller = caller_location()
        cls._check_bypass_allowed("without_scoping", caller)
        cls._audit("without_scoping", caller)
        token = begin_bypass()
        try:
            return body(cls._unscoped_select())
        finally:
            end_bypass(token)

    @classmethod
    def with_admin_bypass(
        cls,
        admin_check: Callable[[], Any],
        body: Callable[[Select], T],
    ) -> T:
        """Run ``body`` unscoped once ``admin_check()`` returns truthy.

        The attempt is audited whether or not it is authorized.

        Raises:
            ScopingDisabledError: If bypasses are disabled.
            AdminAuthorizationError: If the admin check fails.
        """
        operation = "with_admin_bypass"
        caller = caller_location()
        cls._check_bypass_allowed(operation, caller)

        try:
            authorized = bool(admin_check())
        except Exception:
            log_bypass_operation(
                operation, cls.__name__, outcome=OUTCOME_DENIED, caller=caller,
                tenant_id=get_current_tenant_id(), reason="admin check raised",
            )
            raise

        if not authorized:
            log_bypass_operation(
                operation, cls.__name__, outcome=OUTCOME_DENIED, caller=caller,
                tenant_id=get_current_tenant_id(), reason="admin check failed",
            )
            raise AdminAuthorizationError(operation)

        log_bypass_operation(
            operation, cls.__name__, outcome=OUTCOME_AUTHORIZED, caller=caller,
            tenant_id=get_current_tenant_id(),
        )
        token = begin_bypass()
        try:
            return body(cls._unscoped_select())
        finally:
            end_bypass(token)

    @classmethod
    def with_tenant_bypass(cls, tenant_id: TenantId, body: Callable[[], T]) -> T:
        """Run ``body`` scoped to ``tenant_id`` instead of the current tenant.

        Raises:
            ScopingDisabledError: If bypasses are disabled.
        """
        caller = caller_location()
        cls._check_bypass_allowed("with_tenant_bypass", caller)
        cls._audit("with_tenant_bypass", caller, target_tenant_id=tenant_id)
        with TenantContext(tenant_id):
            return body()

    @classmethod
    def for_each_tenant(cls, body: Callable[[Any], T]) -> dict[TenantId, T]:
        """Call ``body(tenant)`` once per known tenant, scoped to that tenant.

        Tenants come from the enumerator passed to
        ``configure_tenant_resolver``.

        Returns:
            Mapping of tenant id to ``body``'s result.

        Raises:
            ScopingDisabledError: If bypasses are disabled.
            RuntimeError: If no tenant enumerator is configured.
        """
        caller = caller_location()
        cls._check_bypass_allowed("for_each_tenant", caller)
        enumerate_tenants = get_tenant_enumerator()
        if enumerate_tenants is None:
            raise RuntimeError(
                "No tenant enumerator configured. Call "
                "configure_tenant_resolver(enumerate_tenants=...) at start-up."
            )
        cls._audit("for_each_tenant", caller)

        results: dict[TenantId, T] = {}
        for tenant in list(enumerate_tenants()):
            with TenantContext(tenant):
                results[tenant_id_of(tenant)] = body(tenant)
        return results

    @classmethod
    def without_scoping_readonly(cls, body: Callable[[Select], T]) -> T:
        """Like ``without_scoping`` but every record loaded is read-only.

        Records the session loads from the database during ``body`` raise
        ``ReadOnlyRecordError`` if they are modified or deleted. Records the
        session already held before ``body`` ran keep their writability.

        Raises:
            ScopingDisabledError: If bypasses are disabled.
        """
        caller = caller_location()
        cls._check_bypass_allowed("without_scoping_readonly", caller)
        cls._audit("without_scoping_readonly", caller)
        bypass_token = begin_bypass()
        readonly_token = _readonly_active.set(True)
        try:
            return body(cls._unscoped_select())
        finally:
            _readonly_active.reset(readonly_token)
            end_bypass(bypass_token)

    @classmethod
    def for_tenant(cls, tenant_or_id: Any) -> Select:
        """Select limited to one explicit tenant, ignoring the ambient one.

        Raises:
            ScopingDisabledError: If bypasses are disabled.
        """
        caller = caller_location()
        cls._check_bypass_allowed("for_tenant", caller)
        tenant_id = tenant_id_of(tenant_or_id)
        cls._audit("for_tenant", caller, target_tenant_id=tenant_id)
        column = getattr(cls, cls.tenant_column_name())
        return cls._unscoped_select().where(column == tenant_id)

    @classmethod
    def all_tenants_unscoped(cls) -> Select:
        """Unfiltered select across every tenant.

        Raises:
            ScopingDisabledError: If bypasses are disabled.
        """
        caller = caller_location()
        cls._check_bypass_allowed("all_tenants_unscoped", caller)
        cls._audit("all_tenants_unscoped", caller)
        return cls._unscoped_select()

    @classmethod
    def total_count_all_tenants(cls, session: Session) -> int:
        """Count rows across every tenant.

        Raises:
            ScopingDisabledError: If bypasses are disabled.
        """
        caller = caller_location()
        cls._check_bypass_allowed("total_count_all_tenants", caller)
        cls._audit("total_count_all_tenants", caller)
        stmt = (
            select(func.count())
            .select_from(cls)
            .execution_options(**{SKIP_TENANT_SCOPING: True})
        )
        return session.scalar(stmt) or 0

    # -- instance behaviour ------------------------------------------------

    @property
    def tenant_id(self) -> TenantId | None:
        return getattr(self, self.tenant_column_name())

    def _assign_current_tenant(self) -> None:
        if self.tenant_id is not None:
            return
        rel_key = self._tenant_relationship_key()
        if rel_key is not None and getattr(self, rel_key) is not None:
            return
        current = get_current_tenant_id()
        if current is not None:
            setattr(self, self.tenant_column_name(), current)

    def tenant_validation_errors(self) -> dict[str, list[str]]:
        """Validate the tenant column without raising.

        Returns:
            Mapping of attribute name to error messages; empty if valid.
        """
        errors: dict[str, list[str]] = {}
        column = self.tenant_column_name()
        state = sa_inspect(self)
        rel_key = self._tenant_relationship_key()

        rel_set = rel_key is not None and getattr(self, rel_key) is not None
        if self.tenant_id is None and not rel_set:
            errors.setdefault(column, []).append(TENANT_BLANK_MESSAGE)

        if state.has_identity:
            changed = state.attrs[column].history.has_changes()
            if rel_key is not None:
                changed = changed or state.attrs[rel_key].history.has_changes()
            if changed:
                errors.setdefault(column, []).append(TENANT_CHANGED_MESSAGE)

        return errors

    def belongs_to_current_tenant(self) -> bool:
        current = get_current_tenant_id()
        return current is not None and self.tenant_id == current

    def can_be_accessed_by(self, tenant_or_id: Any) -> bool:
        """True if the record belongs to the given tenant (object or id)."""
        tenant_id = tenant_id_of(tenant_or_id)
        return tenant_id is not None and self.tenant_id == tenant_id

    def ensure_belongs_to_current_tenant(self) -> None:
        """Raise CrossTenantAccessError unless the record is in the current tenant."""
        if not self.belongs_to_current_tenant():
            raise CrossTenantAccessError(
                type(self).__name__, self.tenant_id, get_current_tenant_id()
            )

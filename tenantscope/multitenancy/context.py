"""
Tenant context management for tenantscope.

This module holds the ambient "current tenant" for the running unit of
work using Python's contextvars. Each thread has its own context and each
asyncio task runs in a copy of its parent's context, so concurrent requests
never observe each other's tenant.

Key Features:
    - Current tenant id, plus a lazily resolved tenant object that is
      cached until the id changes
    - Scoped execution (``run_with_tenant`` / ``TenantContext``) that
      restores the previous tenant on every exit path, LIFO when nested
    - The per-unit bypass flag read by the scoping guard
    - ASGI middleware that gives each request its own tenant context

Example:
    from tenantscope.multitenancy.context import (
        TenantContext, get_current_tenant_id, run_with_tenant
    )

    # Using context manager
    with TenantContext(42):
        tenant_id = get_current_tenant_id()  # Returns 42

    # Using a callable body
    total = run_with_tenant(organization, lambda: compute_totals())
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import Any, Awaitable, Callable, Iterable, TypeVar, Union
from uuid import UUID
import asyncio
import functools
import logging

from tenantscope.multitenancy.audit import log_context_cleared
from tenantscope.multitenancy.errors import UnscopedQueryError

logger = logging.getLogger(__name__)

TenantId = Union[int, str, UUID]

T = TypeVar("T")


# Context variable for the current tenant id
_current_tenant_id: ContextVar[TenantId | None] = ContextVar(
    "current_tenant_id", default=None
)

# Cached tenant object as an (id, tenant) pair; stale once the id differs
_current_tenant: ContextVar[tuple[TenantId, Any] | None] = ContextVar(
    "current_tenant", default=None
)

# True while a guard bypass operation is running
_bypass_active: ContextVar[bool] = ContextVar(
    "tenant_scoping_bypass_active", default=False
)

# Persistence collaborators, configured once per process
_tenant_lookup: Callable[[TenantId], Any] | None = None
_tenant_enumerator: Callable[[], Iterable[Any]] | None = None


def configure_tenant_resolver(
    lookup: Callable[[TenantId], Any] | None = None,
    enumerate_tenants: Callable[[], Iterable[Any]] | None = None,
) -> None:
    """Install the callables used to resolve and enumerate tenants.

    Args:
        lookup: Returns the tenant object for an id (or None).
        enumerate_tenants: Returns every known tenant (objects or ids).
    """
    global _tenant_lookup, _tenant_enumerator
    _tenant_lookup = lookup
    _tenant_enumerator = enumerate_tenants


def get_tenant_enumerator() -> Callable[[], Iterable[Any]] | None:
    """Return the configured tenant enumerator, if any."""
    return _tenant_enumerator


def tenant_id_of(tenant_or_id: Any) -> TenantId | None:
    """Return the id for a tenant object or pass an id through."""
    if tenant_or_id is None or isinstance(tenant_or_id, (int, str, UUID)):
        return tenant_or_id
    return tenant_or_id.id


def get_current_tenant_id() -> TenantId | None:
    """Get the current tenant id from context.

    Returns:
        The current tenant id, or None if never set or cleared.
    """
    return _current_tenant_id.get()


def set_current_tenant_id(tenant_id: TenantId | None) -> Token[TenantId | None]:
    """Set the current tenant id in context.

    Invalidates the cached tenant object. Returns a token that can be
    passed to ``reset_current_tenant_id`` to restore the previous value.

    Args:
        tenant_id: The tenant id to set, or None to clear.

    Returns:
        Token for the previous value.
    """
    logger.debug(f"[MULTI_TENANT] Setting current tenant to: {tenant_id}")
    _current_tenant.set(None)
    return _current_tenant_id.set(tenant_id)


def reset_current_tenant_id(token: Token[TenantId | None]) -> None:
    """Restore the tenant id that was current before ``token`` was issued."""
    _current_tenant_id.reset(token)


def get_current_tenant() -> Any | None:
    """Resolve the current tenant object.

    The object is looked up through the configured resolver and cached
    until the tenant id changes. Lookup failures are logged and reported
    as None: ambient tenant resolution must not break unrelated code.

    Returns:
        The tenant object, or None if no tenant is set, no lookup is
        configured, or the lookup failed.
    """
    tenant_id = _current_tenant_id.get()
    if tenant_id is None:
        return None

    cached = _current_tenant.get()
    if cached is not None and cached[0] == tenant_id:
        return cached[1]

    if _tenant_lookup is None:
        logger.debug("[MULTI_TENANT] No tenant lookup configured")
        return None

    try:
        tenant = _tenant_lookup(tenant_id)
    except Exception as exc:  # noqa: BLE001 - downgraded to None by contract
        logger.warning(
            f"[TENANT_WARNING] Could not resolve tenant {tenant_id!r}: {exc}"
        )
        return None

    if tenant is not None:
        _current_tenant.set((tenant_id, tenant))
    return tenant


def set_current_tenant(tenant: Any | None) -> Token[TenantId | None]:
    """Set the current tenant from an object (or id), caching the object."""
    tenant_id = tenant_id_of(tenant)
    token = set_current_tenant_id(tenant_id)
    if tenant is not None and tenant_id is not tenant:
        _current_tenant.set((tenant_id, tenant))
    return token


def clear_context() -> None:
    """Clear the tenant id, the cached tenant and the bypass flag.

    Logs a warning naming the caller so context clears show up in the
    audit trail.
    """
    _current_tenant_id.set(None)
    _current_tenant.set(None)
    _bypass_active.set(False)
    log_context_cleared()


def require_tenant() -> TenantId:
    """Get the current tenant id or raise.

    Returns:
        The current tenant id.

    Raises:
        UnscopedQueryError: If no tenant is set in context.
    """
    tenant_id = get_current_tenant_id()
    if tenant_id is None:
        raise UnscopedQueryError(
            "No tenant set in context. Ensure request middleware "
            "sets tenant context before accessing tenant-scoped resources."
        )
    return tenant_id


def bypass_active() -> bool:
    """True while a scoping bypass is running in this context."""
    return _bypass_active.get()


def tenant_scoping_active() -> bool:
    """True when a tenant is set and no bypass is running."""
    return _current_tenant_id.get() is not None and not _bypass_active.get()


def begin_bypass() -> Token[bool]:
    """Raise the bypass flag. Only the scoping guard calls this."""
    return _bypass_active.set(True)


def end_bypass(token: Token[bool]) -> None:
    """Restore the bypass flag saved by ``begin_bypass``."""
    _bypass_active.reset(token)


class TenantContext:
    """Context manager for tenant-scoped operations.

    Establishes a tenant for a block of code and restores whatever was
    current before, even when the block raises or is cancelled. Can be
    used as both a synchronous and an async context manager, and nests
    correctly.

    Passing None runs the block with no tenant.

    Attributes:
        tenant_id: The tenant id for this context.
        tenant: The tenant object, when one was given.

    Example:
        with TenantContext(organization):
            invoices = session.scalars(select(Invoice)).all()

        async with TenantContext(42):
            await process_request()
    """

    def __init__(self, tenant_or_id: Any | None):
        """Initialize tenant context.

        Args:
            tenant_or_id: A tenant object (anything with ``id``), an id,
                or None.
        """
        self.tenant_id = tenant_id_of(tenant_or_id)
        self.tenant = None if tenant_or_id is self.tenant_id else tenant_or_id
        self._tokens: list[tuple[Token[Any], Token[Any]]] = []

    def __enter__(self) -> "TenantContext":
        id_token = _current_tenant_id.set(self.tenant_id)
        cached = (self.tenant_id, self.tenant) if self.tenant is not None else None
        tenant_token = _current_tenant.set(cached)
        self._tokens.append((id_token, tenant_token))
        logger.debug(f"[MULTI_TENANT] Entered tenant context: {self.tenant_id}")
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        id_token, tenant_token = self._tokens.pop()
        _current_tenant.reset(tenant_token)
        _current_tenant_id.reset(id_token)
        logger.debug(f"[MULTI_TENANT] Exited tenant context: {self.tenant_id}")

    async def __aenter__(self) -> "TenantContext":
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


class NoTenantContext(TenantContext):
    """Context manager that runs a block with no tenant set.

    Example:
        with NoTenantContext():
            assert get_current_tenant_id() is None
    """

    def __init__(self) -> None:
        super().__init__(None)


def run_with_tenant(tenant_or_id: Any, body: Callable[[], T]) -> T:
    """Run ``body`` with the given tenant, restoring the previous one after.

    Example:
        result = run_with_tenant(42, lambda: get_current_tenant_id())
        assert result == 42
    """
    with TenantContext(tenant_or_id):
        return body()


def run_without_tenant(body: Callable[[], T]) -> T:
    """Run ``body`` with no tenant set, restoring the previous one after."""
    with NoTenantContext():
        return body()


async def run_with_tenant_async(
    tenant_or_id: Any,
    body: Awaitable[T] | Callable[[], Awaitable[T]],
) -> T:
    """Await ``body`` with the given tenant.

    ``body`` may be a coroutine or a zero-argument coroutine function.
    The previous tenant is restored once the awaitable settles, including
    on cancellation.
    """
    async with TenantContext(tenant_or_id):
        if callable(body):
            return await body()
        return await body


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., Any])


def with_tenant(tenant_id: TenantId) -> Callable[[F], F]:
    """Decorator to run a function with tenant context.

    Example:
        @with_tenant(42)
        def nightly_report():
            ...
    """
    def decorator(func: F) -> F:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                async with TenantContext(tenant_id):
                    return await func(*args, **kwargs)
            return async_wrapper  # type: ignore
        else:
            @functools.wraps(func)
            def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
                with TenantContext(tenant_id):
                    return func(*args, **kwargs)
            return sync_wrapper  # type: ignore

    return decorator


def tenant_required(func: F) -> F:
    """Decorator to require tenant context.

    Raises UnscopedQueryError before calling ``func`` if no tenant is set.
    """
    if asyncio.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            require_tenant()
            return await func(*args, **kwargs)
        return async_wrapper  # type: ignore
    else:
        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            require_tenant()
            return func(*args, **kwargs)
        return sync_wrapper  # type: ignore


class TenantMiddleware:
    """ASGI middleware for setting tenant context.

    Extracts the tenant id from a request header, a path prefix or a
    custom resolver and runs the request inside ``TenantContext``.
    Requests without a tenant run with an explicitly empty context so a
    tenant can never leak from earlier work on the same worker.

    Attributes:
        app: The ASGI application to wrap.
        header_name: Header name containing the tenant id.
        path_prefix: URL path prefix for tenant extraction.
        resolver: Optional callable taking the ASGI scope.
        id_parser: Optional callable converting the raw id, e.g. ``int``.

    Example:
        from fastapi import FastAPI
        from tenantscope.multitenancy.context import TenantMiddleware

        app = FastAPI()
        app.add_middleware(TenantMiddleware, header_name="X-Tenant-ID", id_parser=int)
    """

    def __init__(
        self,
        app: Any,
        header_name: str = "X-Tenant-ID",
        path_prefix: str | None = None,
        resolver: Callable[[dict[str, Any]], Any] | None = None,
        id_parser: Callable[[str], Any] | None = None,
    ):
        self.app = app
        self.header_name = header_name.lower()
        self.path_prefix = path_prefix
        self.resolver = resolver
        self.id_parser = id_parser

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[..., Any],
        send: Callable[..., Any],
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        tenant = self._extract_tenant(scope)
        context = TenantContext(tenant) if tenant is not None else NoTenantContext()
        async with context:
            await self.app(scope, receive, send)

    def _extract_tenant(self, scope: dict[str, Any]) -> Any | None:
        if self.resolver is not None:
            return self.resolver(scope)

        raw: str | None = None

        # Try headers first
        headers = dict(scope.get("headers", []))
        tenant_header = headers.get(self.header_name.encode())
        if tenant_header:
            raw = tenant_header.decode()

        # Try path if prefix configured
        if raw is None and self.path_prefix:
            path = scope.get("path", "")
            if path.startswith(self.path_prefix):
                parts = path[len(self.path_prefix):].split("/")
                if parts and parts[0]:
                    raw = parts[0]

        if raw is None:
            return None
        if self.id_parser is not None:
            try:
                return self.id_parser(raw)
            except ValueError:
                logger.warning(f"[TENANT_WARNING] Ignoring malformed tenant id {raw!r}")
                return None
        return raw

"""Shared fixtures: in-memory database, sessions and clean tenant state."""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

import scoped_models  # noqa: F401 - registers the test models
from tenantscope.db import Base
from tenantscope.multitenancy import context
from tenantscope.multitenancy.context import TenantContext, configure_tenant_resolver
from tenantscope.multitenancy.registry import get_registry


@pytest.fixture(autouse=True)
def clean_tenant_state():
    """Run every test with no tenant, no bypass and no resolver."""
    context._current_tenant_id.set(None)
    context._current_tenant.set(None)
    context._bypass_active.set(False)
    configure_tenant_resolver(None, None)
    yield
    context._current_tenant_id.set(None)
    context._current_tenant.set(None)
    context._bypass_active.set(False)
    configure_tenant_resolver(None, None)


@pytest.fixture
def engine():
    """Shared in-memory SQLite engine with every model's table."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def seeded(session):
    """Two invoices for tenant 1 and one for tenant 2."""
    from scoped_models import Invoice

    with TenantContext(1):
        session.add_all([Invoice(number="A-1"), Invoice(number="A-2")])
        session.flush()
    with TenantContext(2):
        session.add(Invoice(number="B-1"))
        session.flush()
    session.commit()
    return session


@pytest.fixture
def local_base():
    """A throwaway declarative base; its models are unregistered afterwards."""

    class LocalBase(DeclarativeBase):
        pass

    yield LocalBase
    registry = get_registry()
    for mapper in list(LocalBase.registry.mappers):
        registry.unregister(mapper.class_)

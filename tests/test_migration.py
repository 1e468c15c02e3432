"""Tests for tenantscope.migration."""

from __future__ import annotations

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect, text

from tenantscope.migration import add_tenant_column, drop_tenant_column


@pytest.fixture
def connection():
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE organizations (id INTEGER PRIMARY KEY)"))
        conn.execute(text("CREATE TABLE widgets (id INTEGER PRIMARY KEY, label VARCHAR(20))"))
        yield conn
    engine.dispose()


def _run(connection, fn, *args, **kwargs):
    with Operations.context(MigrationContext.configure(connection)):
        fn(*args, **kwargs)


class TestAddTenantColumn:
    """Tests for add_tenant_column()."""

    def test_adds_column_index_and_foreign_key(self, connection):
        _run(connection, add_tenant_column, "widgets")

        inspector = inspect(connection)
        columns = {c["name"]: c for c in inspector.get_columns("widgets")}
        assert "organization_id" in columns
        assert columns["organization_id"]["nullable"] is False

        indexes = {i["name"] for i in inspector.get_indexes("widgets")}
        assert "ix_widgets_organization_id" in indexes

        fks = inspector.get_foreign_keys("widgets")
        assert any(
            fk["referred_table"] == "organizations"
            and fk["constrained_columns"] == ["organization_id"]
            for fk in fks
        )

    def test_custom_column(self, connection):
        _run(connection, add_tenant_column, "widgets", "account_id", nullable=True)

        columns = {c["name"]: c for c in inspect(connection).get_columns("widgets")}
        assert columns["account_id"]["nullable"] is True


class TestDropTenantColumn:
    """Tests for drop_tenant_column()."""

    def test_reverses_add(self, connection):
        _run(connection, add_tenant_column, "widgets")
        _run(connection, drop_tenant_column, "widgets")

        inspector = inspect(connection)
        columns = [c["name"] for c in inspector.get_columns("widgets")]
        assert columns == ["id", "label"]
        assert inspector.get_indexes("widgets") == []

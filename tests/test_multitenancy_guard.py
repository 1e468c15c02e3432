"""Tests for tenantscope.multitenancy.guard - the tenant scoping guard.

This module covers:
- Default filtering of reads to the current tenant
- Automatic tenant assignment and validation on flush
- Immutability of the tenant column
- Bypass operations, their gating and their audit trail
- Read-only bypass
- Compatibility validation at class declaration
"""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import Integer, delete, select, update
from sqlalchemy.orm import Mapped, mapped_column, selectinload

from scoped_models import Country, Invoice, Project
from tenantscope.config.settings import settings
from tenantscope.models import Organization, Role
from tenantscope.multitenancy import (
    SKIP_TENANT_SCOPING,
    AdminAuthorizationError,
    CrossTenantAccessError,
    MissingColumnError,
    ModelIncompatibilityError,
    ReadOnlyRecordError,
    ScopingDisabledError,
    SystemScoped,
    TenantContext,
    TenantScoped,
    TenantValidationError,
    bypass_active,
    configure_tenant_resolver,
    get_current_tenant_id,
    get_registry,
)


def _numbers(session, stmt=None):
    return sorted(i.number for i in session.scalars(stmt if stmt is not None else select(Invoice)))


def _audit_records(caplog):
    return [r for r in caplog.records if hasattr(r, "tenant_audit")]


def _stored_amounts(session_factory):
    stmt = select(Invoice).execution_options(**{SKIP_TENANT_SCOPING: True})
    with session_factory() as fresh:
        return {i.number: i.amount for i in fresh.scalars(stmt)}


def _orgs_with_roles(session):
    """Two organizations, each with one owner role. Returns their ids."""
    acme = Organization(name="Acme")
    globex = Organization(name="Globex")
    session.add_all([
        Role(name="a-secret", role_type="owner", organization=acme),
        Role(name="b-secret", role_type="owner", organization=globex),
    ])
    session.commit()
    return acme.id, globex.id


# ===========================================================================
# Default filtering
# ===========================================================================

class TestDefaultFilter:
    """Reads only see the current tenant's rows."""

    def test_reads_are_limited_to_current_tenant(self, seeded):
        with TenantContext(1):
            assert _numbers(seeded) == ["A-1", "A-2"]
        with TenantContext(2):
            assert _numbers(seeded) == ["B-1"]

    def test_no_tenant_returns_nothing(self, seeded):
        assert _numbers(seeded) == []

    def test_unknown_tenant_returns_nothing(self, seeded):
        with TenantContext(404):
            assert _numbers(seeded) == []

    def test_filter_composes_with_where(self, seeded):
        with TenantContext(1):
            stmt = select(Invoice).where(Invoice.number == "B-1")
            assert _numbers(seeded, stmt) == []
            stmt = select(Invoice).where(Invoice.number == "A-2")
            assert _numbers(seeded, stmt) == ["A-2"]

    def test_get_in_other_tenant_returns_none(self, seeded, session_factory):
        with TenantContext(2):
            b1_id = seeded.scalars(select(Invoice)).one().id

        with session_factory() as fresh, TenantContext(1):
            assert fresh.get(Invoice, b1_id) is None

    def test_aliased_entities_are_filtered(self, seeded):
        from sqlalchemy.orm import aliased

        alias = aliased(Invoice)
        with TenantContext(2):
            assert [i.number for i in seeded.scalars(select(alias))] == ["B-1"]

    def test_system_scoped_models_are_never_filtered(self, session):
        session.add_all([Country(code="NZ"), Country(code="FR")])
        session.commit()

        assert len(session.scalars(select(Country)).all()) == 2
        with TenantContext(1):
            assert len(session.scalars(select(Country)).all()) == 2

    def test_skip_option_disables_filter_for_one_statement(self, seeded):
        stmt = select(Invoice).execution_options(**{SKIP_TENANT_SCOPING: True})
        assert len(seeded.scalars(stmt).all()) == 3

    def test_refreshing_expired_attributes_is_not_filtered(self, seeded):
        with TenantContext(1):
            invoice = seeded.scalars(select(Invoice)).first()
        seeded.expire(invoice)
        assert invoice.number.startswith("A-")


class TestRelationshipLoads:
    """Lazy and selectin loads use the tenant current when they run."""

    def test_lazy_load_under_other_tenant_sees_nothing(self, session, session_factory):
        acme_id, globex_id = _orgs_with_roles(session)

        with session_factory() as fresh:
            with TenantContext(globex_id):
                globex = fresh.get(Organization, globex_id)
            with TenantContext(acme_id):
                assert [r.name for r in globex.roles] == []

    def test_lazy_load_in_own_tenant(self, session, session_factory):
        acme_id, _ = _orgs_with_roles(session)

        with session_factory() as fresh:
            acme = fresh.get(Organization, acme_id)
            with TenantContext(acme_id):
                assert [r.name for r in acme.roles] == ["a-secret"]

    def test_lazy_load_without_tenant_is_empty(self, session, session_factory):
        acme_id, _ = _orgs_with_roles(session)

        with session_factory() as fresh:
            acme = fresh.get(Organization, acme_id)
            assert acme.roles == []

    def test_lazy_load_inside_bypass(self, session, session_factory):
        acme_id, globex_id = _orgs_with_roles(session)

        with session_factory() as fresh:
            with TenantContext(globex_id):
                acme = fresh.get(Organization, acme_id)
            names = Role.without_scoping(lambda stmt: [r.name for r in acme.roles])

        assert names == ["a-secret"]

    def test_selectin_load_is_filtered(self, session, session_factory):
        acme_id, globex_id = _orgs_with_roles(session)
        stmt = select(Organization).options(selectinload(Organization.roles))

        with session_factory() as fresh, TenantContext(acme_id):
            orgs = {o.id: o for o in fresh.scalars(stmt)}
            assert [r.name for r in orgs[acme_id].roles] == ["a-secret"]
            assert orgs[globex_id].roles == []


class TestBulkStatements:
    """ORM bulk UPDATE and DELETE only touch the current tenant's rows."""

    def test_bulk_update_limited_to_current_tenant(self, seeded, session_factory):
        with TenantContext(1):
            result = seeded.execute(update(Invoice).values(amount=999))
            seeded.commit()

        assert result.rowcount == 2
        assert _stored_amounts(session_factory) == {"A-1": 999, "A-2": 999, "B-1": 0}

    def test_bulk_delete_limited_to_current_tenant(self, seeded, session_factory):
        with TenantContext(1):
            seeded.execute(delete(Invoice))
            seeded.commit()

        assert _stored_amounts(session_factory) == {"B-1": 0}
        with session_factory() as fresh, TenantContext(2):
            assert _numbers(fresh) == ["B-1"]

    def test_bulk_filter_composes_with_where(self, seeded, session_factory):
        with TenantContext(1):
            stmt = update(Invoice).where(Invoice.number == "B-1").values(amount=5)
            assert seeded.execute(stmt).rowcount == 0
            seeded.commit()

        assert _stored_amounts(session_factory)["B-1"] == 0

    def test_bulk_statements_without_tenant_touch_nothing(self, seeded, session_factory):
        assert seeded.execute(update(Invoice).values(amount=1)).rowcount == 0
        assert seeded.execute(delete(Invoice)).rowcount == 0
        seeded.commit()

        assert len(_stored_amounts(session_factory)) == 3

    def test_bulk_update_inside_bypass_touches_every_tenant(self, seeded, session_factory):
        with TenantContext(1):
            count = Invoice.without_scoping(
                lambda stmt: seeded.execute(update(Invoice).values(amount=7)).rowcount
            )
            seeded.commit()

        assert count == 3
        assert set(_stored_amounts(session_factory).values()) == {7}

    def test_skip_option_on_bulk_delete(self, seeded, session_factory):
        stmt = delete(Invoice).execution_options(**{SKIP_TENANT_SCOPING: True})
        with TenantContext(1):
            assert seeded.execute(stmt).rowcount == 3
            seeded.commit()

        assert _stored_amounts(session_factory) == {}


# ===========================================================================
# Creation and validation
# ===========================================================================

class TestCreation:
    """Tenant assignment and validation on flush."""

    def test_tenant_assigned_from_context(self, session):
        with TenantContext(5):
            invoice = Invoice(number="N-1")
            session.add(invoice)
            session.flush()
        assert invoice.organization_id == 5

    def test_explicit_tenant_is_kept(self, session):
        with TenantContext(5):
            invoice = Invoice(number="N-1", organization_id=6)
            session.add(invoice)
            session.flush()
        assert invoice.organization_id == 6

    def test_missing_tenant_fails_validation(self, session):
        invoice = Invoice(number="N-1")
        session.add(invoice)

        with pytest.raises(TenantValidationError) as exc:
            session.flush()

        assert exc.value.errors == {"organization_id": ["can't be blank"]}
        assert "can't be blank" in str(exc.value)
        session.rollback()

    def test_validation_error_is_a_value_error(self, session):
        session.add(Invoice(number="N-1"))
        with pytest.raises(ValueError):
            session.flush()
        session.rollback()

    def test_tenant_validation_errors_does_not_raise(self):
        invoice = Invoice(number="N-1")
        assert invoice.tenant_validation_errors() == {"organization_id": ["can't be blank"]}
        invoice.organization_id = 1
        assert invoice.tenant_validation_errors() == {}

    def test_related_tenant_object_satisfies_validation(self, session):
        org = Organization(name="Acme")
        session.add(org)
        session.flush()

        project = Project(name="Roadmap", organization=org)
        session.add(project)
        session.flush()

        assert project.organization_id == org.id

    def test_related_tenant_object_wins_over_context(self, session):
        first = Organization(name="First")
        second = Organization(name="Second")
        session.add_all([first, second])
        session.flush()

        with TenantContext(second.id):
            project = Project(name="Roadmap", organization=first)
            session.add(project)
            session.flush()

        assert project.organization_id == first.id


# ===========================================================================
# Immutability
# ===========================================================================

class TestImmutability:
    """The tenant of a persisted record never changes."""

    def test_changing_tenant_is_rejected(self, session):
        with TenantContext(1):
            invoice = Invoice(number="I-1")
            session.add(invoice)
            session.commit()

            invoice.organization_id = 2
            with pytest.raises(TenantValidationError) as exc:
                session.flush()

        assert exc.value.errors["organization_id"] == [
            "tenant cannot be changed after creation"
        ]
        assert invoice.tenant_validation_errors()["organization_id"] == [
            "tenant cannot be changed after creation"
        ]

    def test_rollback_restores_stored_tenant(self, session):
        with TenantContext(1):
            invoice = Invoice(number="I-1")
            session.add(invoice)
            session.commit()

            invoice.organization_id = 2
            with pytest.raises(TenantValidationError):
                session.commit()
            session.rollback()

            assert invoice.organization_id == 1

    def test_change_is_rejected_even_in_bypass(self, seeded):
        def body(stmt):
            invoice = seeded.scalars(stmt.where(Invoice.number == "A-1")).one()
            invoice.organization_id = 2
            seeded.flush()

        with pytest.raises(TenantValidationError):
            Invoice.without_scoping(body)
        seeded.rollback()

    def test_other_attributes_can_change(self, session):
        with TenantContext(1):
            invoice = Invoice(number="I-1")
            session.add(invoice)
            session.commit()

            invoice.amount = 250
            session.commit()

        assert invoice.amount == 250
        assert invoice.organization_id == 1

    def test_setting_same_tenant_is_not_a_change(self, session):
        with TenantContext(1):
            invoice = Invoice(number="I-1")
            session.add(invoice)
            session.commit()

            invoice.organization_id = 1
            session.commit()

        assert invoice.organization_id == 1


# ===========================================================================
# Bypass operations
# ===========================================================================

class TestBypassOperations:
    """Explicit, audited cross-tenant access."""

    def test_without_scoping_sees_every_tenant(self, seeded):
        with TenantContext(1):
            rows = Invoice.without_scoping(lambda stmt: seeded.scalars(stmt).all())
        assert sorted(i.number for i in rows) == ["A-1", "A-2", "B-1"]

    def test_without_scoping_unfilters_nested_queries(self, seeded):
        with TenantContext(1):
            numbers = Invoice.without_scoping(lambda stmt: _numbers(seeded))
            assert numbers == ["A-1", "A-2", "B-1"]
            assert _numbers(seeded) == ["A-1", "A-2"]

    def test_without_scoping_restores_after_error(self, seeded):
        def body(stmt):
            raise RuntimeError("failed migration")

        with TenantContext(1):
            with pytest.raises(RuntimeError):
                Invoice.without_scoping(body)
            assert bypass_active() is False
            assert _numbers(seeded) == ["A-1", "A-2"]

    def test_without_scoping_is_audited(self, seeded, caplog):
        with caplog.at_level(logging.DEBUG, logger="tenantscope"):
            with TenantContext(1):
                Invoice.without_scoping(lambda stmt: None)

        records = _audit_records(caplog)
        assert len(records) == 1
        audit = records[0].tenant_audit
        assert audit["operation"] == "without_scoping"
        assert audit["model"] == "Invoice"
        assert audit["tenant_id"] == 1
        assert "test_multitenancy_guard.py" in audit["caller"]
        assert records[0].levelno == logging.WARNING

    def test_with_admin_bypass_authorized(self, seeded, caplog):
        with caplog.at_level(logging.DEBUG, logger="tenantscope"):
            count = Invoice.with_admin_bypass(
                lambda: True,
                lambda stmt: len(seeded.scalars(stmt).all()),
            )

        assert count == 3
        outcomes = [r.tenant_audit["outcome"] for r in _audit_records(caplog)]
        assert outcomes == ["authorized"]

    def test_with_admin_bypass_denied(self, seeded, caplog):
        body_calls = []

        with caplog.at_level(logging.DEBUG, logger="tenantscope"):
            with pytest.raises(AdminAuthorizationError, match="Admin authorization required"):
                Invoice.with_admin_bypass(lambda: False, body_calls.append)

        assert body_calls == []
        records = _audit_records(caplog)
        assert len(records) == 1
        assert records[0].tenant_audit["outcome"] == "denied"
        assert records[0].levelno == logging.ERROR

    def test_with_tenant_bypass_switches_tenant(self, seeded):
        with TenantContext(1):
            numbers = Invoice.with_tenant_bypass(2, lambda: _numbers(seeded))
            assert numbers == ["B-1"]
            assert get_current_tenant_id() == 1

    def test_with_tenant_bypass_restores_after_error(self, seeded):
        def block():
            assert get_current_tenant_id() == 2
            raise RuntimeError("boom")

        with TenantContext(1):
            with pytest.raises(RuntimeError, match="boom"):
                Invoice.with_tenant_bypass(2, block)
            assert get_current_tenant_id() == 1
            assert bypass_active() is False

    def test_for_each_tenant(self, seeded):
        configure_tenant_resolver(enumerate_tenants=lambda: [1, 2, 3])

        results = Invoice.for_each_tenant(lambda tenant: _numbers(seeded))

        assert results == {1: ["A-1", "A-2"], 2: ["B-1"], 3: []}
        assert get_current_tenant_id() is None

    def test_for_each_tenant_restores_after_error(self, seeded):
        configure_tenant_resolver(enumerate_tenants=lambda: [1, 2, 3])
        visited = []

        def body(tenant):
            visited.append(get_current_tenant_id())
            if tenant == 2:
                raise RuntimeError("tenant 2 failed")
            return tenant

        with TenantContext(9):
            with pytest.raises(RuntimeError, match="tenant 2 failed"):
                Invoice.for_each_tenant(body)
            assert get_current_tenant_id() == 9
            assert bypass_active() is False

        assert visited == [1, 2]

    def test_for_each_tenant_with_tenant_objects(self, seeded):
        from types import SimpleNamespace

        tenants = [SimpleNamespace(id=1), SimpleNamespace(id=2)]
        configure_tenant_resolver(enumerate_tenants=lambda: tenants)

        results = Invoice.for_each_tenant(lambda tenant: tenant.id * 10)

        assert results == {1: 10, 2: 20}

    def test_for_each_tenant_without_enumerator(self, seeded):
        with pytest.raises(RuntimeError, match="No tenant enumerator"):
            Invoice.for_each_tenant(lambda tenant: None)

    def test_for_tenant(self, seeded):
        with TenantContext(1):
            assert _numbers(seeded, Invoice.for_tenant(2)) == ["B-1"]

    def test_all_tenants_unscoped(self, seeded):
        assert _numbers(seeded, Invoice.all_tenants_unscoped()) == ["A-1", "A-2", "B-1"]

    def test_total_count_all_tenants(self, seeded):
        with TenantContext(1):
            assert Invoice.total_count_all_tenants(seeded) == 3


class TestBypassGating:
    """Bypasses can be disabled globally or per environment."""

    def test_globally_disabled(self, seeded, monkeypatch, caplog):
        monkeypatch.setattr(settings, "TENANT_BYPASSES_DISABLED", True)
        body_calls = []

        with caplog.at_level(logging.DEBUG, logger="tenantscope"):
            with pytest.raises(ScopingDisabledError, match="globally disabled"):
                Invoice.without_scoping(body_calls.append)

        assert body_calls == []
        records = _audit_records(caplog)
        assert len(records) == 1
        assert records[0].tenant_audit["outcome"] == "denied"

    @pytest.mark.parametrize(
        "operation",
        [
            lambda: Invoice.without_scoping(lambda stmt: None),
            lambda: Invoice.with_admin_bypass(lambda: True, lambda stmt: None),
            lambda: Invoice.with_tenant_bypass(2, lambda: None),
            lambda: Invoice.for_each_tenant(lambda tenant: None),
            lambda: Invoice.without_scoping_readonly(lambda stmt: None),
            lambda: Invoice.for_tenant(2),
            lambda: Invoice.all_tenants_unscoped(),
        ],
    )
    def test_every_bypass_is_gated(self, monkeypatch, operation):
        monkeypatch.setattr(settings, "TENANT_BYPASSES_DISABLED", True)
        with pytest.raises(ScopingDisabledError):
            operation()

    def test_admin_check_not_called_when_disabled(self, monkeypatch):
        monkeypatch.setattr(settings, "TENANT_BYPASSES_DISABLED", True)
        checks = []

        with pytest.raises(ScopingDisabledError):
            Invoice.with_admin_bypass(lambda: checks.append(1) or True, lambda stmt: None)

        assert checks == []

    def test_environment_not_enabled(self, monkeypatch):
        monkeypatch.setattr(settings, "TENANT_ENVIRONMENT", "staging")
        with pytest.raises(ScopingDisabledError) as exc:
            Invoice.without_scoping(lambda stmt: None)
        assert exc.value.environment == "staging"

    def test_production_bypass_runs_with_warning(self, seeded, monkeypatch, caplog):
        monkeypatch.setattr(settings, "TENANT_ENVIRONMENT", "production")

        with caplog.at_level(logging.DEBUG, logger="tenantscope"):
            count = Invoice.without_scoping(lambda stmt: len(seeded.scalars(stmt).all()))

        assert count == 3
        assert any(
            "tenant scoping bypass in production" in r.getMessage() for r in caplog.records
        )


# ===========================================================================
# Read-only bypass
# ===========================================================================

class TestReadOnlyBypass:
    """Records loaded through without_scoping_readonly cannot be written."""

    def test_records_are_readable(self, seeded, session_factory):
        with session_factory() as fresh:
            rows = Invoice.without_scoping_readonly(lambda stmt: fresh.scalars(stmt).all())
            assert len(rows) == 3

    def test_modifying_loaded_record_fails(self, seeded, session_factory):
        with session_factory() as fresh:
            rows = Invoice.without_scoping_readonly(lambda stmt: fresh.scalars(stmt).all())
            rows[0].amount = 999
            with pytest.raises(ReadOnlyRecordError):
                fresh.flush()
            fresh.rollback()

    def test_deleting_loaded_record_fails(self, seeded, session_factory):
        with session_factory() as fresh:
            rows = Invoice.without_scoping_readonly(lambda stmt: fresh.scalars(stmt).all())
            fresh.delete(rows[0])
            with pytest.raises(ReadOnlyRecordError):
                fresh.flush()
            fresh.rollback()

    def test_records_already_in_session_stay_writable(self, seeded, session_factory):
        with session_factory() as fresh:
            with TenantContext(1):
                mine = fresh.scalars(select(Invoice)).all()
            rows = Invoice.without_scoping_readonly(lambda stmt: fresh.scalars(stmt).all())
            theirs = next(i for i in rows if i.number == "B-1")

            mine[0].amount = 1
            fresh.flush()

            theirs.amount = 1
            with pytest.raises(ReadOnlyRecordError):
                fresh.flush()
            fresh.rollback()

    def test_regular_loads_stay_writable(self, seeded, session_factory):
        with session_factory() as fresh:
            Invoice.without_scoping_readonly(lambda stmt: None)
            with TenantContext(1):
                invoice = fresh.scalars(select(Invoice)).first()
                invoice.amount = 5
                fresh.commit()
            assert invoice.amount == 5


# ===========================================================================
# Instance helpers and introspection
# ===========================================================================

class TestInstanceHelpers:
    """belongs_to_current_tenant and friends."""

    def test_belongs_to_current_tenant(self):
        invoice = Invoice(number="X", organization_id=1)
        assert invoice.belongs_to_current_tenant() is False
        with TenantContext(1):
            assert invoice.belongs_to_current_tenant() is True
        with TenantContext(2):
            assert invoice.belongs_to_current_tenant() is False

    def test_can_be_accessed_by(self):
        from types import SimpleNamespace

        invoice = Invoice(number="X", organization_id=1)
        assert invoice.can_be_accessed_by(1) is True
        assert invoice.can_be_accessed_by(SimpleNamespace(id=1)) is True
        assert invoice.can_be_accessed_by(2) is False
        assert invoice.can_be_accessed_by(None) is False

    def test_ensure_belongs_to_current_tenant(self):
        invoice = Invoice(number="X", organization_id=1)
        with TenantContext(1):
            invoice.ensure_belongs_to_current_tenant()
        with TenantContext(2):
            with pytest.raises(CrossTenantAccessError) as exc:
                invoice.ensure_belongs_to_current_tenant()
        assert exc.value.record_tenant_id == 1
        assert exc.value.current_tenant_id == 2

    def test_introspection(self):
        assert Invoice.is_tenant_scoped() is True
        assert Invoice.is_system_scoped() is False
        assert Invoice.scoping_type() == "tenant"
        assert Invoice.tenant_column_name() == "organization_id"
        assert Country.is_tenant_scoped() is False
        assert Country.is_system_scoped() is True
        assert Country.scoping_type() == "system"

    def test_class_tenant_scoping_active(self):
        assert Invoice.tenant_scoping_active() is False
        with TenantContext(1):
            assert Invoice.tenant_scoping_active() is True
            assert Invoice.without_scoping(lambda stmt: Invoice.tenant_scoping_active()) is False


# ===========================================================================
# Compatibility validation
# ===========================================================================

class TestCompatibilityValidation:
    """Models are validated when they are declared."""

    def test_missing_column_raises_at_declaration(self, local_base):
        with pytest.raises(MissingColumnError) as exc:
            class Widget(TenantScoped, local_base):
                __tablename__ = "widgets"
                id: Mapped[int] = mapped_column(Integer, primary_key=True)

        message = str(exc.value)
        assert exc.value.column == "organization_id"
        assert exc.value.model_name == "Widget"
        assert "missing column 'organization_id'" in message
        assert "To fix this issue, you have several options:" in message
        assert "add_tenant_column('widgets', 'organization_id')" in message
        assert "SystemScoped" in message
        assert "exclude_model" in message

    def test_missing_column_is_incompatibility(self, local_base):
        with pytest.raises(ModelIncompatibilityError):
            class Gizmo(TenantScoped, local_base):
                __tablename__ = "gizmos"
                id: Mapped[int] = mapped_column(Integer, primary_key=True)

    def test_custom_tenant_column(self, local_base):
        class Ledger(TenantScoped, local_base):
            __tablename__ = "ledgers"
            __tenant_column__ = "account_id"
            id: Mapped[int] = mapped_column(Integer, primary_key=True)
            account_id: Mapped[int] = mapped_column(Integer)

        assert Ledger.tenant_column_name() == "account_id"
        assert get_registry().is_tenant_scoped(Ledger)

    def test_both_markers_conflict(self, local_base):
        with pytest.raises(ModelIncompatibilityError, match="both TenantScoped and SystemScoped"):
            class Hybrid(TenantScoped, SystemScoped, local_base):
                __tablename__ = "hybrids"
                id: Mapped[int] = mapped_column(Integer, primary_key=True)
                organization_id: Mapped[int] = mapped_column(Integer)

    def test_excluded_model_is_skipped(self, local_base, monkeypatch):
        monkeypatch.setattr(settings, "TENANT_EXCLUDED_MODELS", ["LegacyReport"])

        class LegacyReport(TenantScoped, local_base):
            __tablename__ = "legacy_reports"
            id: Mapped[int] = mapped_column(Integer, primary_key=True)

        assert LegacyReport.scoping_type() == "excluded"
        assert LegacyReport.is_tenant_scoped() is False

    def test_runtime_exclusion(self, local_base):
        get_registry().exclude_model("ArchiveRow")
        try:
            class ArchiveRow(TenantScoped, local_base):
                __tablename__ = "archive_rows"
                id: Mapped[int] = mapped_column(Integer, primary_key=True)
        finally:
            get_registry()._excluded_names.discard("ArchiveRow")

        assert get_registry().scoping_type(ArchiveRow) == "excluded"

    def test_abstract_base_is_not_validated(self, local_base):
        class TenantOwned(TenantScoped, local_base):
            __abstract__ = True

        class Note(TenantOwned):
            __tablename__ = "notes"
            id: Mapped[int] = mapped_column(Integer, primary_key=True)
            organization_id: Mapped[int] = mapped_column(Integer)

        registry = get_registry()
        assert not registry.is_registered(TenantOwned)
        assert registry.is_tenant_scoped(Note)

    def test_plain_mixin_subclass_is_not_validated(self):
        class AuditedTenantScoped(TenantScoped):
            pass

        assert not get_registry().is_registered(AuditedTenantScoped)

    def test_system_scoped_registration(self, local_base):
        class Currency(SystemScoped, local_base):
            __tablename__ = "currencies"
            id: Mapped[int] = mapped_column(Integer, primary_key=True)

        assert get_registry().is_system_scoped(Currency)

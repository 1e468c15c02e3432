"""Organization, user, role and membership models.

Provides the database-backed side of multi-tenancy:

- **Organization**: The tenant. System-scoped, never filtered.
- **User**: A person who can belong to several organizations. System-scoped.
- **Role**: Named role inside one organization. Tenant-scoped.
- **Membership**: A user holding a role in an organization. Tenant-scoped.
- **TenantColumnMixin**: Column mixin that adds the indexed
  ``organization_id`` foreign key to a tenant-scoped model.
- **OrganizationDirectory**: Looks up and enumerates organizations for the
  tenant context.

Note
----
An organization always keeps at least one owner: the last owner role cannot
be demoted and the last owner membership cannot be deleted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    event,
    func,
    inspect as sa_inspect,
    select,
)
from sqlalchemy.engine import Connection
from sqlalchemy.orm import (
    Mapped,
    Session,
    mapped_column,
    object_session,
    relationship,
    validates,
)

from tenantscope.db import Base
from tenantscope.multitenancy.context import TenantId, configure_tenant_resolver
from tenantscope.multitenancy.guard import SystemScoped, TenantScoped

logger = logging.getLogger(__name__)

OWNER = "owner"
ADMIN = "admin"
MEMBER = "member"
GUEST = "guest"
ROLE_TYPES = (OWNER, ADMIN, MEMBER, GUEST)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LastOwnerError(ValueError):
    """Raised when an organization would be left without an owner."""


def _organization_id(record: Any) -> int | None:
    if record.organization_id is not None:
        return record.organization_id
    if record.organization is not None:
        return record.organization.id
    return None


# ---------------------------------------------------------------------------
# Mixin
# ---------------------------------------------------------------------------


class TenantColumnMixin:
    """Column mixin that adds an indexed ``organization_id`` foreign key.

    Combine with ``TenantScoped`` for models owned by an organization::

        class Project(TenantColumnMixin, TenantScoped, Base):
            __tablename__ = "projects"
            ...
    """

    __tenant_column__ = "organization_id"

    organization_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )


# ---------------------------------------------------------------------------
# Organization / User
# ---------------------------------------------------------------------------


class Organization(SystemScoped, Base):
    """A tenant.

    ``slug`` holds the lower-cased name so that uniqueness is enforced
    case-insensitively by the database.

    ``roles`` and ``memberships`` are tenant-scoped: loading them outside
    the organization's own tenant context yields an empty collection.
    """

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    slug: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False, unique=True)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    roles: Mapped[list["Role"]] = relationship(
        back_populates="organization", cascade="all, delete-orphan"
    )
    memberships: Mapped[list["Membership"]] = relationship(
        back_populates="organization", cascade="all, delete-orphan"
    )

    @validates("name")
    def _normalize_name(self, key: str, value: str | None) -> str:
        name = " ".join((value or "").split())
        if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
            raise ValueError(
                f"Organization name must be between {NAME_MIN_LENGTH} and "
                f"{NAME_MAX_LENGTH} characters"
            )
        self.slug = name.lower()
        return name

    @property
    def display_name(self) -> str:
        return self.name or "Unnamed Organization"

    @property
    def user_count(self) -> int:
        return len({m.user_id for m in self.memberships})

    @property
    def owners(self) -> list["User"]:
        return [m.user for m in self.memberships if m.is_owner()]

    def archive(self) -> None:
        self.archived = True
        logger.info(f"[MULTI_TENANT] Archived organization {self.id}")

    def __repr__(self) -> str:
        return f"Organization(id={self.id!r}, name={self.name!r})"


class User(SystemScoped, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    memberships: Mapped[list["Membership"]] = relationship(back_populates="user")

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, email={self.email!r})"


# ---------------------------------------------------------------------------
# Role / Membership
# ---------------------------------------------------------------------------


class Role(TenantColumnMixin, TenantScoped, Base):
    """A role inside one organization."""

    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_roles_organization_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    role_type: Mapped[str] = mapped_column(String(20), nullable=False, default=MEMBER)

    organization: Mapped["Organization"] = relationship(back_populates="roles")
    memberships: Mapped[list["Membership"]] = relationship(back_populates="role")

    @validates("role_type")
    def _validate_role_type(self, key: str, value: str) -> str:
        if value not in ROLE_TYPES:
            raise ValueError(f"role_type must be one of {', '.join(ROLE_TYPES)}")
        if self.role_type == OWNER and value != OWNER and sa_inspect(self).has_identity:
            session = object_session(self)
            if session is not None and _other_owner_roles(session.connection(), self) == 0:
                raise LastOwnerError("Role type cannot be changed: last owner role")
        return value

    def is_owner(self) -> bool:
        return self.role_type == OWNER

    def is_admin(self) -> bool:
        return self.role_type in (ADMIN, OWNER)

    def can_manage_organization(self) -> bool:
        return self.is_owner()

    def can_manage_members(self) -> bool:
        return self.is_admin()

    def __repr__(self) -> str:
        return f"Role(id={self.id!r}, name={self.name!r}, role_type={self.role_type!r})"


class Membership(TenantColumnMixin, TenantScoped, Base):
    """A user's role in an organization. One per user per organization."""

    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_memberships_user_organization"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False
    )

    organization: Mapped["Organization"] = relationship(back_populates="memberships")
    user: Mapped["User"] = relationship(back_populates="memberships")
    role: Mapped["Role"] = relationship(back_populates="memberships")

    def is_owner(self) -> bool:
        return self.role is not None and self.role.is_owner()

    def is_admin(self) -> bool:
        return self.role is not None and self.role.is_admin()

    def can_manage_membership(self, target: "Membership") -> bool:
        """Admins manage other members; only owners manage owners."""
        if target is self or target.user_id == self.user_id:
            return False
        if not self.is_admin():
            return False
        return self.is_owner() or not target.is_owner()

    def ensure_not_last_owner(self, connection: Connection | None = None) -> None:
        """Raise LastOwnerError if this is the organization's only owner."""
        if not sa_inspect(self).has_identity:
            return
        if connection is None:
            connection = object_session(self).connection()
        if not _holds_owner_role(connection, self):
            return
        if _other_owner_memberships(connection, self) == 0:
            raise LastOwnerError("Cannot remove the last owner")

    def ensure_role_in_organization(self) -> None:
        if self.role is None:
            return
        own = _organization_id(self)
        theirs = _organization_id(self.role)
        if own is not None and theirs is not None and own != theirs:
            raise ValueError("Membership role must belong to the same organization")

    def __repr__(self) -> str:
        return f"Membership(user_id={self.user_id!r}, role_id={self.role_id!r})"


@event.listens_for(Membership, "before_delete")
def _membership_before_delete(mapper: Any, connection: Any, target: Membership) -> None:
    target.ensure_not_last_owner(connection)


@event.listens_for(Membership, "before_insert")
@event.listens_for(Membership, "before_update")
def _membership_before_save(mapper: Any, connection: Any, target: Membership) -> None:
    target.ensure_role_in_organization()


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


class OrganizationDirectory:
    """Resolves organizations for the tenant context.

    Example:
        directory = OrganizationDirectory(SessionLocal)
        directory.install()
        set_current_tenant_id(1)
        get_current_tenant()   # Organization(id=1, ...)
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def lookup(self, tenant_id: TenantId) -> Organization | None:
        with self._session_factory() as session:
            return session.get(Organization, tenant_id)

    def enumerate_tenants(self) -> list[Organization]:
        """Every non-archived organization, ordered by id."""
        stmt = (
            select(Organization)
            .where(Organization.archived.is_(False))
            .order_by(Organization.id)
        )
        with self._session_factory() as session:
            return list(session.scalars(stmt))

    def install(self) -> None:
        configure_tenant_resolver(lookup=self.lookup, enumerate_tenants=self.enumerate_tenants)


# ---------------------------------------------------------------------------
# Owner counting
# ---------------------------------------------------------------------------

# Core queries; these also run from mapper flush events


def _other_owner_roles(connection: Connection, role: Role) -> int:
    roles = Role.__table__
    stmt = (
        select(func.count())
        .select_from(roles)
        .where(
            roles.c.organization_id == role.organization_id,
            roles.c.role_type == OWNER,
            roles.c.id != role.id,
        )
    )
    return connection.scalar(stmt)


def _other_owner_memberships(connection: Connection, membership: Membership) -> int:
    memberships = Membership.__table__
    roles = Role.__table__
    stmt = (
        select(func.count())
        .select_from(memberships.join(roles, memberships.c.role_id == roles.c.id))
        .where(
            memberships.c.organization_id == membership.organization_id,
            roles.c.role_type == OWNER,
            memberships.c.id != membership.id,
        )
    )
    return connection.scalar(stmt)


def _holds_owner_role(connection: Connection, membership: Membership) -> bool:
    roles = Role.__table__
    stmt = select(roles.c.role_type).where(roles.c.id == membership.role_id)
    return connection.scalar(stmt) == OWNER

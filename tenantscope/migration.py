"""Alembic helpers for bringing existing tables under tenant scoping.

Use from a migration's ``upgrade``/``downgrade``::

    from tenantscope.migration import add_tenant_column, drop_tenant_column

    def upgrade() -> None:
        add_tenant_column("invoices")

    def downgrade() -> None:
        drop_tenant_column("invoices")
"""

from __future__ import annotations

import logging

import sqlalchemy as sa
from alembic import op

from tenantscope.config.settings import settings

logger = logging.getLogger(__name__)


def tenant_index_name(table_name: str, column: str) -> str:
    return f"ix_{table_name}_{column}"


def tenant_foreign_key_name(table_name: str, column: str, referent: str) -> str:
    return f"fk_{table_name}_{column}_{referent}"


def add_tenant_column(
    table_name: str,
    column: str | None = None,
    referent: str = "organizations",
    nullable: bool = False,
    type_: sa.types.TypeEngine | None = None,
) -> None:
    """Add the indexed tenant foreign key to ``table_name``.

    Tables that already hold rows need ``nullable=True`` and a backfill
    before the column can be made non-null.

    Args:
        table_name: Table to alter.
        column: Column name; ``settings.TENANT_COLUMN`` by default.
        referent: Table the foreign key points at.
        nullable: Whether the column accepts NULL.
        type_: Column type; ``Integer`` by default.
    """
    column = column or settings.TENANT_COLUMN
    # batch mode keeps SQLite, which cannot ALTER constraints, working
    with op.batch_alter_table(table_name) as batch:
        batch.add_column(sa.Column(column, type_ or sa.Integer(), nullable=nullable))
        batch.create_foreign_key(
            tenant_foreign_key_name(table_name, column, referent),
            referent,
            [column],
            ["id"],
            ondelete="CASCADE",
        )
    op.create_index(tenant_index_name(table_name, column), table_name, [column])
    logger.info(f"[MULTI_TENANT] Added tenant column {column} to {table_name}")


def drop_tenant_column(
    table_name: str,
    column: str | None = None,
    referent: str = "organizations",
) -> None:
    """Reverse ``add_tenant_column``."""
    column = column or settings.TENANT_COLUMN
    op.drop_index(tenant_index_name(table_name, column), table_name=table_name)
    with op.batch_alter_table(table_name) as batch:
        batch.drop_constraint(
            tenant_foreign_key_name(table_name, column, referent), type_="foreignkey"
        )
        batch.drop_column(column)
    logger.info(f"[MULTI_TENANT] Dropped tenant column {column} from {table_name}")

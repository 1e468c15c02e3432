"""Tenantscope: row-level multi-tenancy for SQLAlchemy applications."""

__version__ = "0.1.0"

"""Database engine, declarative base and session factory."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from tenantscope.config.settings import settings
from tenantscope.multitenancy.guard import install_session_hooks


class Base(DeclarativeBase):
    pass


def make_engine(url: str | None = None, **kwargs: Any) -> Engine:
    """Create an engine for ``url`` (``settings.DATABASE_URL`` by default)."""
    return create_engine(url or settings.DATABASE_URL, **kwargs)


_engine: Engine | None = None

SessionLocal = sessionmaker(expire_on_commit=False)

install_session_hooks()


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = make_engine()
        SessionLocal.configure(bind=_engine)
    return _engine


def __getattr__(name: str) -> Any:
    # Engine is created on first access so importing models needs no database
    if name == "engine":
        return get_engine()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def get_session() -> Iterator[Session]:
    """Yield a session bound to the default engine, closing it afterwards."""
    get_engine()
    with SessionLocal() as session:
        yield session

"""SQLAlchemy engine and session factory.

This module provides:

* ``create_health_engine``   -- Create a SA engine from a URL.
* ``HealthSession``          -- Session with ``expire_on_commit=False``.
* ``health_session_factory`` -- ``sessionmaker`` producing ``HealthSession``.
* ``init_db``                -- Create all tables on an engine.

Tags:
    orm, sqlalchemy, session, engine
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from healthscore.core.orm.base import HealthBase

_MEMORY_URLS = frozenset({"sqlite://", "sqlite:///:memory:"})


def create_health_engine(
    url: str = "sqlite:///data/healthscore.db",
    *,
    echo: bool = False,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    SQLite URLs get ``check_same_thread=False`` plus WAL and foreign keys;
    in-memory SQLite shares one connection so every session sees the same
    database.
    """
    if not url.startswith("sqlite"):
        return _sa_create_engine(url, echo=echo, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    if url in _MEMORY_URLS:
        kwargs.setdefault("poolclass", StaticPool)

    engine = _sa_create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


class HealthSession(Session):
    """Pre-configured session with ``expire_on_commit=False``."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def health_session_factory(engine: Engine) -> sessionmaker[HealthSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``HealthSession`` instances."""
    return sessionmaker(bind=engine, class_=HealthSession, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create every health store table that does not exist yet."""
    from healthscore.core.orm import tables  # noqa: F401  (registers mappers)

    HealthBase.metadata.create_all(engine)


__all__ = [
    "HealthSession",
    "create_health_engine",
    "health_session_factory",
    "init_db",
]

"""SQLAlchemy persistence for the health store.

Modules
-------
base        HealthBase (declarative base + type map)
session     Engine factory, HealthSession, init_db
tables      Mapped table classes (CollectorTable, ExecutionTable, ...)
store       SqlAlchemyHealthStore implementing the HealthStore protocol

Tags:
    orm, sqlalchemy, declarative
"""

from __future__ import annotations

from healthscore.core.orm.base import HealthBase
from healthscore.core.orm.session import (
    HealthSession,
    create_health_engine,
    health_session_factory,
    init_db,
)
from healthscore.core.orm.store import SqlAlchemyHealthStore
from healthscore.core.orm.tables import *  # noqa: F401,F403

__all__ = [
    "HealthBase",
    "HealthSession",
    "SqlAlchemyHealthStore",
    "create_health_engine",
    "health_session_factory",
    "init_db",
]

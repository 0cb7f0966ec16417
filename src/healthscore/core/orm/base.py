"""Declarative base and type-map for the health store tables.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map``
so ``Mapped[...]`` columns can use plain Python types:

* ``str``   → ``Text``
* ``int``   → ``Integer``
* ``bool``  → ``Integer``  (SQLite has no native BOOLEAN)
* ``datetime.datetime`` → ``DateTime(timezone=True)``
* ``Decimal`` → ``Numeric(18, 4)``  (threshold values, weights)
* ``dict`` / ``list`` → ``JSON``
"""

from __future__ import annotations

import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Integer, Numeric, Text
from sqlalchemy.orm import DeclarativeBase


class HealthBase(DeclarativeBase):
    """Shared declarative base for every health store table."""

    type_annotation_map = {
        str: Text,
        int: Integer,
        bool: Integer,
        datetime.datetime: DateTime(timezone=True),
        Decimal: Numeric(18, 4, asdecimal=True),
        dict: JSON,
        list: JSON,
    }


__all__ = ["HealthBase"]

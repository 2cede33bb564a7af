"""SQLAlchemy models for the relational backend.

Table names carry the configured prefix, so the declarative classes are
built per prefix by :func:`build_schema` instead of once at import time.
Each prefix gets its own ``Base`` and therefore its own ``MetaData``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, NamedTuple

from sqlalchemy import Boolean, Column, DateTime, Integer, MetaData, String, Table, Text
from sqlalchemy import orm

USERS = "users"
MIGRATIONS = "migrations"


class Schema(NamedTuple):
    base: Any
    user: Any
    migration: Any

    @property
    def metadata(self) -> MetaData:
        return self.base.metadata

    @property
    def users(self) -> Table:
        return self.user.__table__

    @property
    def migrations(self) -> Table:
        return self.migration.__table__


@lru_cache(maxsize=None)
def build_schema(prefix: str) -> Schema:
    """Return the models for ``prefix``; repeated calls share one ``Base``."""
    Base = orm.declarative_base()

    class UserRecord(Base):
        """ORM model representing an account row."""

        __tablename__ = f"{prefix}{USERS}"

        id = Column(Integer, primary_key=True, autoincrement=True)
        email = Column(String(255), nullable=False, unique=True)
        password = Column(String(255), nullable=False)
        name = Column(String(100), nullable=False)
        role = Column(String(50), nullable=False, default="user")
        active = Column(Boolean, nullable=False, default=True)
        created_at = Column(DateTime(timezone=True), nullable=False)
        updated_at = Column(DateTime(timezone=True), nullable=False)

        def __repr__(self) -> str:
            return f"<UserRecord id={self.id!r} email={self.email!r}>"

    class MigrationRecord(Base):
        __tablename__ = f"{prefix}{MIGRATIONS}"

        version = Column(String(255), primary_key=True)
        description = Column(Text)
        executed_at = Column(DateTime(timezone=True), nullable=False)

    return Schema(base=Base, user=UserRecord, migration=MigrationRecord)

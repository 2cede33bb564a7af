"""User repositories and the factory that picks one for a connection."""

from __future__ import annotations

from account_service.config import DatabaseDriver
from account_service.database import Connection
from account_service.errors import ConfigurationError
from account_service.repository.base import UserRepository
from account_service.repository.document import MongoUserRepository
from account_service.repository.relational import RelationalUserRepository, is_unique_violation


def new_user_repository(connection: Connection) -> UserRepository:
    """Return the repository variant matching ``connection.driver``.

    Raises :class:`ConfigurationError` instead of failing later when the
    connection lacks the handle its driver needs.
    """
    driver = connection.driver
    if driver in (DatabaseDriver.SQLITE, DatabaseDriver.POSTGRES):
        return RelationalUserRepository(connection.engine, connection.table_prefix)
    if driver is DatabaseDriver.MONGO:
        return MongoUserRepository(connection.mongo_database, connection.table_prefix)
    raise ConfigurationError(f"unsupported database driver: {driver}")


__all__ = [
    "MongoUserRepository",
    "RelationalUserRepository",
    "UserRepository",
    "is_unique_violation",
    "new_user_repository",
]

import logging
from typing import Dict
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from account_service.config import DatabaseDriver, DatabaseSettings, JWTSettings
from account_service.database import SQLITE_MEMORY, Connection, sqlite_engine
from account_service.migrations import Migrator, register_migrations
from account_service.repository import RelationalUserRepository
from account_service.schemas import Identity, Role
from account_service.service import UserService
from account_service.tokens import TokenService

TABLE_PREFIX = "test_"
JWT_SECRET = "test-secret"


@pytest_asyncio.fixture
async def connection():
    """An in-memory SQLite connection with nothing created yet."""
    engine = sqlite_engine(DatabaseSettings(sqlite_path=SQLITE_MEMORY))
    conn = Connection(DatabaseDriver.SQLITE, table_prefix=TABLE_PREFIX, engine=engine)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def migrated(connection):
    """The SQLite connection with every shipped migration applied (no seeders)."""
    migrator = Migrator(connection)
    register_migrations(migrator)
    await migrator.migrate()
    return connection


@pytest.fixture
def repository(migrated):
    return RelationalUserRepository(migrated.engine, TABLE_PREFIX)


@pytest.fixture
def jwt_settings():
    return JWTSettings(secret=JWT_SECRET)


@pytest.fixture
def tokens(jwt_settings):
    return TokenService(jwt_settings)


@pytest.fixture
def service(repository, tokens):
    return UserService(repository, tokens)


@pytest.fixture
def admin():
    return Identity(user_id=9999, email="root@example.com", role=Role.ADMIN)


@pytest.fixture
def member():
    return Identity(user_id=9998, email="member@example.com", role=Role.USER)


def make_collection():
    """A motor collection double: async methods are AsyncMocks, ``find`` returns a chainable cursor."""
    collection = MagicMock()
    collection.name = "mock"
    for method in (
        "insert_one",
        "find_one",
        "update_one",
        "count_documents",
        "create_index",
        "create_indexes",
    ):
        setattr(collection, method, AsyncMock())
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[])
    collection.find.return_value = cursor
    return collection


@pytest.fixture
def mongo_collections() -> Dict[str, MagicMock]:
    return {}


@pytest.fixture
def mongo_database(mongo_collections):
    """A motor database double that hands out one collection double per name."""
    database = MagicMock()

    def get_collection(name):
        if name not in mongo_collections:
            mongo_collections[name] = make_collection()
            mongo_collections[name].name = name
        return mongo_collections[name]

    database.__getitem__.side_effect = get_collection
    database.drop_collection = AsyncMock()
    return database


@pytest.fixture
def restore_root_logger():
    """Undo handler changes made by ``configure_logging``."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)

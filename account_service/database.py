"""Database connection holding exactly one backend handle.

For the relational drivers this is an async SQLAlchemy engine; for MongoDB
it is a motor client plus the configured database. The table prefix is part
of the connection so every repository and migration derives the same
storage names from it.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from account_service.config import DatabaseDriver, DatabaseSettings
from account_service.errors import ConfigurationError, StorageError
from account_service.models import Schema, build_schema

logger = logging.getLogger(__name__)

SQLITE_MEMORY = ":memory:"
MONGO_CONNECT_TIMEOUT_MS = 10_000
MONGO_MAX_POOL_SIZE = 25


class Connection:
    """One open backend handle selected by :class:`DatabaseDriver`."""

    def __init__(
        self,
        driver: DatabaseDriver,
        *,
        table_prefix: str = "",
        engine: Optional[AsyncEngine] = None,
        mongo_client: Optional[AsyncIOMotorClient] = None,
        mongo_database: Optional[AsyncIOMotorDatabase] = None,
    ) -> None:
        if driver.is_relational and engine is None:
            raise ConfigurationError(f"an SQLAlchemy engine is required for {driver.value}")
        if driver is DatabaseDriver.MONGO and mongo_database is None:
            raise ConfigurationError("a MongoDB database handle is required for mongo")
        self.driver = driver
        self.table_prefix = table_prefix
        self._engine = engine
        self._mongo_client = mongo_client
        self._mongo_database = mongo_database

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise ConfigurationError(f"no SQLAlchemy engine for driver {self.driver.value}")
        return self._engine

    @property
    def mongo_database(self) -> AsyncIOMotorDatabase:
        if self._mongo_database is None:
            raise ConfigurationError(f"no MongoDB database for driver {self.driver.value}")
        return self._mongo_database

    @property
    def is_relational(self) -> bool:
        return self.driver.is_relational

    @property
    def schema(self) -> Schema:
        return build_schema(self.table_prefix)

    def table_name(self, name: str) -> str:
        """Return ``name`` with the configured prefix applied."""
        return f"{self.table_prefix}{name}"

    async def health(self) -> None:
        """Ping the backend; raises :class:`StorageError` if it is unreachable."""
        try:
            if self._engine is not None:
                async with self._engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                return
            if self._mongo_client is not None:
                await self._mongo_client.admin.command("ping")
                return
        except (SQLAlchemyError, PyMongoError, OSError) as exc:
            raise StorageError.wrap(exc, "Database health check failed") from exc
        raise StorageError("no database connection available")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("SQLAlchemy engine disposed")
        if self._mongo_client is not None:
            self._mongo_client.close()
            logger.info("MongoDB client closed")

    def __repr__(self) -> str:
        return f"<Connection driver={self.driver.value!r} prefix={self.table_prefix!r}>"


def memory_sqlite_url() -> str:
    """A private shared-cache in-memory database, alive while its pooled connection is."""
    return f"sqlite+aiosqlite:///file:memdb_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def sqlite_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Engine holding at most one SQLite connection; concurrent callers queue for it.

    The in-memory variant is never recycled: closing its only connection
    discards the database.
    """
    if settings.sqlite_path == SQLITE_MEMORY:
        return create_async_engine(
            memory_sqlite_url(),
            connect_args={"check_same_thread": False},
            poolclass=AsyncAdaptedQueuePool,
            pool_size=1,
            max_overflow=0,
        )
    Path(settings.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
    # SQLite serialises writers; a single pooled connection avoids "database is locked".
    return create_async_engine(
        settings.sqlalchemy_url(),
        connect_args={"check_same_thread": False},
        pool_size=1,
        max_overflow=0,
        pool_recycle=3600,
    )


def _postgres_engine(settings: DatabaseSettings) -> AsyncEngine:
    connect_args = {}
    if not settings.postgres_dsn and settings.postgres_sslmode != "disable":
        connect_args["ssl"] = settings.postgres_sslmode
    return create_async_engine(
        settings.sqlalchemy_url(),
        connect_args=connect_args,
        pool_size=10,
        max_overflow=15,
        pool_recycle=300,
        pool_pre_ping=True,
    )


async def open_connection(settings: DatabaseSettings) -> Connection:
    """Create the backend handle for ``settings.driver`` and verify it answers.

    Raises :class:`ConfigurationError` for an unusable driver and
    :class:`StorageError` when the backend cannot be reached.
    """
    driver = settings.driver
    if driver is DatabaseDriver.SQLITE:
        conn = Connection(driver, table_prefix=settings.table_prefix, engine=sqlite_engine(settings))
    elif driver is DatabaseDriver.POSTGRES:
        conn = Connection(driver, table_prefix=settings.table_prefix, engine=_postgres_engine(settings))
    elif driver is DatabaseDriver.MONGO:
        client = AsyncIOMotorClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=MONGO_CONNECT_TIMEOUT_MS,
            maxPoolSize=MONGO_MAX_POOL_SIZE,
        )
        conn = Connection(
            driver,
            table_prefix=settings.table_prefix,
            mongo_client=client,
            mongo_database=client[settings.mongo_database],
        )
    else:
        raise ConfigurationError(f"unsupported database driver: {driver}")

    try:
        await conn.health()
    except StorageError:
        await conn.close()
        raise
    logger.info("Connected to %s database", driver.value)
    return conn

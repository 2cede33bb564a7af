"""Versioned migration runner with a persistent ledger.

Each migration runs at most once per database: its version is appended to
the ledger (``<prefix>migrations``) right after its forward action succeeds,
and later runs skip every version already recorded. A failing forward action
stops the run; migrations applied before it stay applied and recorded.

There is no locking between runners: two processes migrating the same
database at once are not supported.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, NamedTuple, Set, Tuple

from pymongo import ASCENDING
from sqlalchemy import insert, select

from account_service.database import Connection
from account_service.errors import MigrationError
from account_service.models import MIGRATIONS
from account_service.repository.base import utcnow

logger = logging.getLogger(__name__)

LEDGER_INDEX = "idx_migrations_version"


class Migration(ABC):
    """A schema change identified by a sortable timestamp ``version``."""

    version: str
    description: str

    @abstractmethod
    async def up(self, connection: Connection) -> None:
        """Apply the change."""

    async def down(self, connection: Connection) -> None:
        """Revert the change. Irreversible migrations leave this as a no-op."""

    def __repr__(self) -> str:
        return f"<Migration {self.version} {self.description!r}>"


class Seeder(ABC):
    """Baseline data for some environments.

    The runner keeps no ledger for seeders, so :meth:`run` must check for
    existing data itself.
    """

    name: str

    @abstractmethod
    async def run(self, connection: Connection) -> None:
        """Insert the data, skipping whatever already exists."""

    @abstractmethod
    def should_run(self, env: str) -> bool:
        """Whether this seeder applies to environment ``env``."""


class MigrationPlan(NamedTuple):
    """What a run would do, as reported by the check and dry-run modes."""

    env: str
    pending: List[Tuple[str, str]]
    seeders_to_run: List[str]
    seeders_skipped: List[str]


class Migrator:
    """Applies registered migrations and seeders against one connection."""

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self._migrations: Dict[str, Migration] = {}
        self._seeders: List[Seeder] = []

    def add_migration(self, migration: Migration) -> None:
        if migration.version in self._migrations:
            raise ValueError(f"duplicate migration version {migration.version}")
        self._migrations[migration.version] = migration

    def add_seeder(self, seeder: Seeder) -> None:
        self._seeders.append(seeder)

    @property
    def migrations(self) -> List[Migration]:
        """Registered migrations sorted ascending by version."""
        return sorted(self._migrations.values(), key=lambda m: m.version)

    @property
    def seeders(self) -> List[Seeder]:
        return list(self._seeders)

    @property
    def ledger_name(self) -> str:
        return self.connection.table_name(MIGRATIONS)

    async def ensure_ledger(self) -> None:
        """Create the ledger table/collection if it does not exist yet."""
        if self.connection.is_relational:
            ledger = self.connection.schema.migrations
            async with self.connection.engine.begin() as conn:
                await conn.run_sync(lambda sync_conn: ledger.create(sync_conn, checkfirst=True))
            return
        collection = self.connection.mongo_database[self.ledger_name]
        await collection.create_index([("version", ASCENDING)], unique=True, name=LEDGER_INDEX)

    async def applied_versions(self) -> Set[str]:
        if self.connection.is_relational:
            ledger = self.connection.schema.migrations
            async with self.connection.engine.connect() as conn:
                rows = await conn.execute(select(ledger.c.version))
                return {row.version for row in rows}
        collection = self.connection.mongo_database[self.ledger_name]
        docs = await collection.find({}, {"version": 1}).to_list(length=None)
        return {doc["version"] for doc in docs if isinstance(doc.get("version"), str)}

    async def _record(self, migration: Migration) -> None:
        record = {
            "version": migration.version,
            "description": migration.description,
            "executed_at": utcnow(),
        }
        if self.connection.is_relational:
            ledger = self.connection.schema.migrations
            async with self.connection.engine.begin() as conn:
                await conn.execute(insert(ledger).values(**record))
            return
        await self.connection.mongo_database[self.ledger_name].insert_one(record)

    async def pending(self) -> List[Migration]:
        """Migrations not yet in the ledger, in execution order."""
        await self.ensure_ledger()
        applied = await self.applied_versions()
        return [m for m in self.migrations if m.version not in applied]

    async def migrate(self) -> List[str]:
        """Run every pending migration; returns the versions applied now.

        Raises :class:`MigrationError` naming the first version that failed.
        """
        await self.ensure_ledger()
        applied = await self.applied_versions()
        executed: List[str] = []

        for migration in self.migrations:
            if migration.version in applied:
                logger.debug("Migration %s already executed (%s)", migration.version, migration.description)
                continue

            logger.info("Running migration %s: %s", migration.version, migration.description)
            try:
                await migration.up(self.connection)
            except Exception as exc:
                logger.error("Migration %s failed: %s", migration.version, exc)
                raise MigrationError(migration.version, exc) from exc

            try:
                await self._record(migration)
            except Exception as exc:
                logger.error("Failed to record migration %s: %s", migration.version, exc)
                raise MigrationError(migration.version, exc, stage="record") from exc

            executed.append(migration.version)
            logger.info("Migration %s completed", migration.version)

        return executed

    async def seed(self, env: str) -> List[str]:
        """Run the seeders that apply to ``env``; returns their names."""
        ran: List[str] = []
        for seeder in self._seeders:
            if not seeder.should_run(env):
                logger.debug("Skipping seeder %s for env %s", seeder.name, env)
                continue
            logger.info("Running seeder %s", seeder.name)
            await seeder.run(self.connection)
            logger.info("Seeder %s completed", seeder.name)
            ran.append(seeder.name)
        return ran

    async def plan(self, env: str) -> MigrationPlan:
        """Report pending migrations and seeder decisions without running any."""
        pending = await self.pending()
        to_run = [s.name for s in self._seeders if s.should_run(env)]
        skipped = [s.name for s in self._seeders if not s.should_run(env)]
        return MigrationPlan(
            env=env,
            pending=[(m.version, m.description) for m in pending],
            seeders_to_run=to_run,
            seeders_skipped=skipped,
        )

"""Schema migrations and seed data.

:func:`build_migrator` returns a :class:`Migrator` with every shipped
migration and seeder registered; :func:`run_migrations` applies them.
"""

from __future__ import annotations

import logging
from typing import List

from account_service.database import Connection
from account_service.migrations.runner import Migration, MigrationPlan, Migrator, Seeder
from account_service.migrations.seeders import AdminUserSeeder, TestUsersSeeder
from account_service.migrations.versions.create_users_table import CreateUsersTable

logger = logging.getLogger(__name__)


def register_migrations(migrator: Migrator) -> None:
    migrator.add_migration(CreateUsersTable())


def register_seeders(migrator: Migrator) -> None:
    migrator.add_seeder(AdminUserSeeder())
    migrator.add_seeder(TestUsersSeeder())


def build_migrator(connection: Connection) -> Migrator:
    migrator = Migrator(connection)
    register_migrations(migrator)
    register_seeders(migrator)
    return migrator


async def run_migrations(connection: Connection, env: str) -> List[str]:
    """Apply pending migrations, then the seeders for ``env``.

    Returns the versions applied by this call.
    """
    migrator = build_migrator(connection)
    applied = await migrator.migrate()
    await migrator.seed(env)
    logger.info("Migrations completed: %d applied", len(applied))
    return applied


__all__ = [
    "Migration",
    "MigrationPlan",
    "Migrator",
    "Seeder",
    "build_migrator",
    "register_migrations",
    "register_seeders",
    "run_migrations",
]

"""Baseline users for non-production environments."""

from __future__ import annotations

import logging
from typing import FrozenSet, List, NamedTuple

from account_service.database import Connection
from account_service.errors import NotFoundError
from account_service.migrations.runner import Seeder
from account_service.repository import new_user_repository
from account_service.repository.base import UserRepository
from account_service.schemas import Role, User
from account_service.security import get_password_hash

logger = logging.getLogger(__name__)


class SeedUser(NamedTuple):
    email: str
    password: str
    name: str
    role: Role = Role.USER
    active: bool = True


async def _seed_user(repository: UserRepository, seed: SeedUser) -> bool:
    """Create ``seed`` unless a user with its email exists; returns whether it was created."""
    try:
        await repository.get_by_email(seed.email)
    except NotFoundError:
        pass
    else:
        logger.info("User %s already exists, skipping", seed.email)
        return False

    user = User(
        email=seed.email,
        password=get_password_hash(seed.password),
        name=seed.name,
        role=seed.role,
        active=seed.active,
    )
    await repository.create(user)
    logger.info("Created user %s", seed.email)
    return True


class EnvironmentSeeder(Seeder):
    environments: FrozenSet[str] = frozenset()

    def should_run(self, env: str) -> bool:
        return env in self.environments


class AdminUserSeeder(EnvironmentSeeder):
    name = "AdminUserSeeder"
    environments = frozenset({"development", "staging"})

    ADMIN = SeedUser(
        email="admin@example.com",
        password="admin123456",
        name="System Administrator",
        role=Role.ADMIN,
    )

    async def run(self, connection: Connection) -> None:
        await _seed_user(new_user_repository(connection), self.ADMIN)


class TestUsersSeeder(EnvironmentSeeder):
    name = "TestUsersSeeder"
    environments = frozenset({"development"})

    # pytest would otherwise try to collect this class.
    __test__ = False

    USERS: List[SeedUser] = [
        SeedUser(email="user1@example.com", password="password123", name="Test User 1"),
        SeedUser(email="user2@example.com", password="password123", name="Test User 2"),
        SeedUser(email="inactive@example.com", password="password123", name="Inactive User", active=False),
    ]

    async def run(self, connection: Connection) -> None:
        repository = new_user_repository(connection)
        for seed in self.USERS:
            await _seed_user(repository, seed)

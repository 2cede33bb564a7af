"""Create the ``users`` table (relational) or collection indexes (MongoDB).

Version: 20240815120000

The relational side is expressed with alembic's ``Operations`` bound to the
running connection, so the DDL is the same one an alembic revision would
emit, without alembic's own version table.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from pymongo import ASCENDING, DESCENDING, IndexModel

from account_service.database import Connection
from account_service.migrations.runner import Migration
from account_service.models import USERS

# (suffix, columns, unique)
INDEXES = [
    ("email", ["email"], True),
    ("name", ["name"], False),
    ("role", ["role"], False),
    ("active", ["active"], False),
    ("role_active", ["role", "active"], False),
    ("created_at", ["created_at"], False),
]


def index_name(table: str, suffix: str) -> str:
    return f"idx_{table}_{suffix}"


def _operations(sync_conn: sa.engine.Connection) -> Operations:
    return Operations(MigrationContext.configure(sync_conn))


def _upgrade(sync_conn: sa.engine.Connection, table: str) -> None:
    op = _operations(sync_conn)
    op.create_table(
        table,
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="user"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    for suffix, columns, unique in INDEXES:
        op.create_index(index_name(table, suffix), table, columns, unique=unique)


def _downgrade(sync_conn: sa.engine.Connection, table: str) -> None:
    op = _operations(sync_conn)
    for suffix, _columns, _unique in reversed(INDEXES):
        op.drop_index(index_name(table, suffix), table_name=table)
    op.drop_table(table)


def _mongo_indexes(collection: str):
    models = []
    for suffix, columns, unique in INDEXES:
        order = DESCENDING if suffix == "created_at" else ASCENDING
        models.append(
            IndexModel(
                [(column, order) for column in columns],
                name=index_name(collection, suffix),
                unique=unique,
            )
        )
    return models


class CreateUsersTable(Migration):
    version = "20240815120000"
    description = "Create users table/collection"

    async def up(self, connection: Connection) -> None:
        name = connection.table_name(USERS)
        if connection.is_relational:
            async with connection.engine.begin() as conn:
                await conn.run_sync(_upgrade, name)
            return
        await connection.mongo_database[name].create_indexes(_mongo_indexes(name))

    async def down(self, connection: Connection) -> None:
        name = connection.table_name(USERS)
        if connection.is_relational:
            async with connection.engine.begin() as conn:
                await conn.run_sync(_downgrade, name)
            return
        await connection.mongo_database.drop_collection(name)

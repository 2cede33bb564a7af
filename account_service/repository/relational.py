"""User repository over SQLAlchemy (SQLite, PostgreSQL)."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import Select

from account_service.errors import AlreadyExistsError, NotFoundError, StorageError
from account_service.models import build_schema
from account_service.repository.base import UserRepository, utcnow
from account_service.schemas import User

# Lower-cased fragments drivers use for unique-constraint violations.
UNIQUE_VIOLATION_MARKERS = (
    "duplicate key",  # PostgreSQL
    "violates unique constraint",  # PostgreSQL
    "unique constraint failed",  # SQLite
    "constraint failed: unique",  # SQLite (older builds)
    "duplicate entry",  # MySQL / MariaDB
)


def is_unique_violation(exc: BaseException) -> bool:
    """Best-effort check whether ``exc`` reports a unique-constraint violation.

    The driver's message text is the only signal available across vendors,
    so this is a string match and may miss phrasings it does not know.
    """
    # TODO: check the SQLSTATE (asyncpg ``UniqueViolationError`` / 23505) and
    # sqlite3 ``sqlite_errorname == "SQLITE_CONSTRAINT_UNIQUE"`` on exc.orig
    # instead of matching message text.
    if exc is None:
        return False
    text = str(exc).lower()
    return any(marker in text for marker in UNIQUE_VIOLATION_MARKERS)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class RelationalUserRepository(UserRepository):
    """Users stored as rows with an auto-increment integer primary key."""

    def __init__(self, engine: AsyncEngine, table_prefix: str = "") -> None:
        self._sessions: sessionmaker = sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._model = build_schema(table_prefix).user

    @staticmethod
    def _to_user(record: Any) -> User:
        return User(
            id=record.id,
            email=record.email,
            password=record.password,
            name=record.name,
            role=record.role,
            active=record.active,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    @staticmethod
    def _values(user: User) -> Dict[str, Any]:
        return {
            "email": user.email,
            "password": user.password,
            "name": user.name,
            "role": user.role.value,
            "active": user.active,
        }

    async def create(self, user: User) -> None:
        now = utcnow()
        record = self._model(created_at=now, updated_at=now, **self._values(user))
        try:
            async with self._sessions() as session:
                async with session.begin():
                    session.add(record)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise AlreadyExistsError() from exc
            raise StorageError.wrap(exc, "Failed to create user") from exc
        except SQLAlchemyError as exc:
            raise StorageError.wrap(exc, "Failed to create user") from exc

        user.id = record.id
        user.created_at = now
        user.updated_at = now

    async def _fetch_one(self, stmt: Select, message: str) -> User:
        try:
            async with self._sessions() as session:
                record = (await session.scalars(stmt)).first()
        except SQLAlchemyError as exc:
            raise StorageError.wrap(exc, message) from exc
        if record is None:
            raise NotFoundError()
        return self._to_user(record)

    async def get_by_id(self, user_id: int) -> User:
        stmt = select(self._model).where(self._model.id == user_id)
        return await self._fetch_one(stmt, "Failed to get user by ID")

    async def get_by_email(self, email: str) -> User:
        stmt = select(self._model).where(self._model.email == email)
        return await self._fetch_one(stmt, "Failed to get user by email")

    async def _execute_write(self, stmt: Any, message: str) -> int:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    result = await session.execute(stmt, execution_options={"synchronize_session": False})
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise AlreadyExistsError() from exc
            raise StorageError.wrap(exc, message) from exc
        except SQLAlchemyError as exc:
            raise StorageError.wrap(exc, message) from exc
        return result.rowcount

    async def update(self, user: User) -> None:
        if user.id is None:
            raise NotFoundError()
        now = utcnow()
        values = self._values(user)
        values["updated_at"] = now
        stmt = update(self._model).where(self._model.id == user.id).values(**values)
        # The row may have been deleted between read and write.
        if await self._execute_write(stmt, "Failed to update user") == 0:
            raise NotFoundError()
        user.updated_at = now

    async def delete(self, user_id: int) -> None:
        stmt = delete(self._model).where(self._model.id == user_id)
        if await self._execute_write(stmt, "Failed to delete user") == 0:
            raise NotFoundError()

    async def _page(self, criteria: List[Any], offset: int, limit: int, action: str) -> Tuple[List[User], int]:
        count_stmt = select(func.count()).select_from(self._model).where(*criteria)
        page_stmt = (
            select(self._model)
            .where(*criteria)
            .order_by(self._model.created_at.desc(), self._model.id.desc())
            .offset(offset)
            .limit(limit)
        )
        try:
            async with self._sessions() as session:
                total = await session.scalar(count_stmt)
                records = (await session.scalars(page_stmt)).all()
        except SQLAlchemyError as exc:
            raise StorageError.wrap(exc, f"Failed to {action} users") from exc
        return [self._to_user(record) for record in records], total

    async def list(self, offset: int, limit: int) -> Tuple[List[User], int]:
        return await self._page([], offset, limit, "list")

    async def search(self, query: str, offset: int, limit: int) -> Tuple[List[User], int]:
        pattern = f"%{_escape_like(query)}%"
        criteria = [
            or_(
                self._model.name.ilike(pattern, escape="\\"),
                self._model.email.ilike(pattern, escape="\\"),
            )
        ]
        return await self._page(criteria, offset, limit, "search")

"""The user data-access contract shared by every backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Tuple

from account_service.schemas import User


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRepository(ABC):
    """Persistence operations for :class:`~account_service.schemas.User`.

    Every method is a coroutine and may block on network or disk I/O.
    Failures are reported with the domain taxonomy from
    :mod:`account_service.errors`; backend-native exceptions never escape.
    Task cancellation is propagated untouched.
    """

    @abstractmethod
    async def create(self, user: User) -> None:
        """Persist ``user`` and set its ``id`` and timestamps.

        Raises ``AlreadyExistsError`` if the email is taken and
        ``StorageError`` for any other backend failure.
        """

    @abstractmethod
    async def get_by_id(self, user_id: int) -> User:
        """Raises ``NotFoundError`` if no such user exists."""

    @abstractmethod
    async def get_by_email(self, email: str) -> User:
        """Exact match on the normalised email; ``NotFoundError`` if absent."""

    @abstractmethod
    async def update(self, user: User) -> None:
        """Persist the mutable fields of ``user`` and refresh ``updated_at``.

        Raises ``NotFoundError`` if the target vanished and
        ``AlreadyExistsError`` on an email clash.
        """

    @abstractmethod
    async def delete(self, user_id: int) -> None:
        """Remove the user; ``NotFoundError`` if absent."""

    @abstractmethod
    async def list(self, offset: int, limit: int) -> Tuple[List[User], int]:
        """A page ordered by ``created_at`` descending, plus the total count."""

    @abstractmethod
    async def search(self, query: str, offset: int, limit: int) -> Tuple[List[User], int]:
        """Case-insensitive substring match on name or email, paged like :meth:`list`."""

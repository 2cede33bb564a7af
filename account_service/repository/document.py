"""User repository over a MongoDB collection (motor).

MongoDB identifies documents by an ObjectId, not a dense integer. For
interface compatibility the integer ``id`` exposed here is a surrogate: the
ObjectId's embedded creation time in whole seconds. The surrogate is lossy,
since two documents created in the same second share it, and it cannot be
turned back into the ObjectId. Consequently:

* :meth:`MongoUserRepository.get_by_id` and :meth:`MongoUserRepository.delete`
  are not supported and always raise ``NotFoundError``;
* :meth:`MongoUserRepository.update` locates the document by email.

:meth:`list` and :meth:`search` only return active users, unlike the
relational repository.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from account_service.errors import AlreadyExistsError, NotFoundError, StorageError
from account_service.models import USERS
from account_service.repository.base import UserRepository, utcnow
from account_service.schemas import User

logger = logging.getLogger(__name__)

INDEX_TIMEOUT_SECONDS = 30
SORT_ORDER = [("created_at", DESCENDING), ("_id", DESCENDING)]


def surrogate_id(object_id: ObjectId) -> int:
    """Derive the numeric id from an ObjectId's creation timestamp."""
    return int(object_id.generation_time.timestamp())


def to_document(user: User) -> Dict[str, Any]:
    return {
        "email": user.email,
        "password": user.password,
        "name": user.name,
        "role": user.role.value,
        "active": user.active,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def from_document(doc: Dict[str, Any]) -> User:
    object_id: Optional[ObjectId] = doc.get("_id")
    return User(
        id=surrogate_id(object_id) if object_id is not None else None,
        email=doc["email"],
        password=doc["password"],
        name=doc["name"],
        role=doc.get("role", "user"),
        active=doc.get("active", True),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def _log_index_outcome(task: "asyncio.Task[bool]") -> None:
    """Retrieve the background index task's result so errors reach the log."""
    if task.cancelled():
        logger.debug("Email index creation cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Email index creation failed: %r", exc)


class MongoUserRepository(UserRepository):
    """Users stored as documents in the ``<prefix>users`` collection."""

    def __init__(self, database: AsyncIOMotorDatabase, table_prefix: str = "") -> None:
        self._collection: AsyncIOMotorCollection = database[f"{table_prefix}{USERS}"]
        self._index_task: Optional[asyncio.Task] = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; email index creation deferred")
        else:
            self._index_task = loop.create_task(self.ensure_indexes())
            self._index_task.add_done_callback(_log_index_outcome)

    async def ensure_indexes(self) -> bool:
        """Create the unique email index; failures are logged, not raised.

        Returns ``True`` when the index is in place.
        """
        try:
            await asyncio.wait_for(
                self._collection.create_index(
                    [("email", ASCENDING)], unique=True, name=f"idx_{self._collection.name}_email"
                ),
                timeout=INDEX_TIMEOUT_SECONDS,
            )
        except (PyMongoError, asyncio.TimeoutError) as exc:
            # Usually the index already exists under another name.
            logger.warning("Failed to create email index: %s", exc)
            return False
        return True

    async def create(self, user: User) -> None:
        now = utcnow()
        doc = to_document(user)
        doc.update(created_at=now, updated_at=now)
        try:
            result = await self._collection.insert_one(doc)
        except DuplicateKeyError as exc:
            raise AlreadyExistsError() from exc
        except PyMongoError as exc:
            raise StorageError.wrap(exc, "Failed to create user") from exc

        if isinstance(result.inserted_id, ObjectId):
            user.id = surrogate_id(result.inserted_id)
        user.created_at = now
        user.updated_at = now

    async def get_by_id(self, user_id: int) -> User:
        raise NotFoundError("GetByID not supported for MongoDB - use get_by_email")

    async def get_by_email(self, email: str) -> User:
        try:
            doc = await self._collection.find_one({"email": email})
        except PyMongoError as exc:
            raise StorageError.wrap(exc, "Failed to get user by email") from exc
        if doc is None:
            raise NotFoundError()
        return from_document(doc)

    async def update(self, user: User) -> None:
        now = utcnow()
        changes = {
            "$set": {
                "name": user.name,
                "role": user.role.value,
                "active": user.active,
                "updated_at": now,
            }
        }
        try:
            result = await self._collection.update_one({"email": user.email}, changes)
        except DuplicateKeyError as exc:
            raise AlreadyExistsError() from exc
        except PyMongoError as exc:
            raise StorageError.wrap(exc, "Failed to update user") from exc

        if result.matched_count == 0:
            raise NotFoundError()
        user.updated_at = now

    async def delete(self, user_id: int) -> None:
        raise NotFoundError("Delete by ID not supported for MongoDB")

    async def _page(self, criteria: Dict[str, Any], offset: int, limit: int, action: str) -> Tuple[List[User], int]:
        try:
            total = await self._collection.count_documents(criteria)
            cursor = self._collection.find(criteria).sort(SORT_ORDER).skip(offset).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as exc:
            raise StorageError.wrap(exc, f"Failed to {action} users") from exc
        return [from_document(doc) for doc in docs], total

    async def list(self, offset: int, limit: int) -> Tuple[List[User], int]:
        return await self._page({"active": True}, offset, limit, "list")

    async def search(self, query: str, offset: int, limit: int) -> Tuple[List[User], int]:
        pattern = {"$regex": re.escape(query), "$options": "i"}
        criteria = {
            "active": True,
            "$or": [{"name": pattern}, {"email": pattern}],
        }
        return await self._page(criteria, offset, limit, "search")

import asyncio
import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, OperationFailure, ServerSelectionTimeoutError

from account_service.config import DatabaseDriver
from account_service.database import Connection
from account_service.errors import AlreadyExistsError, ConfigurationError, NotFoundError, StorageError
from account_service.repository import MongoUserRepository, RelationalUserRepository, new_user_repository
from account_service.repository.document import from_document, surrogate_id
from account_service.schemas import Role, User


def make_user(email="alice@example.com", **kwargs):
    kwargs.setdefault("password", "hash")
    kwargs.setdefault("name", "Alice A")
    return User(email=email, **kwargs)


def make_doc(email="alice@example.com", **overrides):
    doc = {
        "_id": ObjectId(),
        "email": email,
        "password": "hash",
        "name": "Alice A",
        "role": "user",
        "active": True,
        "created_at": datetime.now(timezone.utc),
        "updated_at": datetime.now(timezone.utc),
    }
    doc.update(overrides)
    return doc


@pytest_asyncio.fixture
async def mongo_repository(mongo_database, mongo_collections):
    repo = MongoUserRepository(mongo_database, "fx_")
    await repo._index_task
    return repo


@pytest.fixture
def users(mongo_repository, mongo_collections):
    return mongo_collections["fx_users"]


def test_surrogate_id_is_creation_second():
    oid = ObjectId.from_datetime(datetime(2024, 8, 15, 12, 0, 0, tzinfo=timezone.utc))

    assert surrogate_id(oid) == int(datetime(2024, 8, 15, 12, 0, 0, tzinfo=timezone.utc).timestamp())


def test_from_document_maps_fields():
    doc = make_doc(role="admin", active=False)

    user = from_document(doc)

    assert user.id == surrogate_id(doc["_id"])
    assert user.role is Role.ADMIN
    assert user.active is False


@pytest.mark.asyncio
async def test_construction_schedules_email_index(mongo_repository, users):
    users.create_index.assert_awaited_once()
    args, kwargs = users.create_index.call_args
    assert args[0] == [("email", 1)]
    assert kwargs["unique"] is True
    assert kwargs["name"] == "idx_fx_users_email"


@pytest.mark.asyncio
async def test_index_failure_is_logged_not_raised(mongo_repository, users, caplog):
    users.create_index.side_effect = OperationFailure("Index already exists with a different name")

    with caplog.at_level(logging.WARNING):
        assert await mongo_repository.ensure_indexes() is False

    assert "Failed to create email index" in caplog.text


@pytest.mark.asyncio
async def test_unexpected_index_error_is_logged(mongo_database, caplog):
    mongo_database["fx_users"].create_index.side_effect = RuntimeError("event loop is closed")

    with caplog.at_level(logging.WARNING):
        repo = MongoUserRepository(mongo_database, "fx_")
        await asyncio.wait([repo._index_task])
        await asyncio.sleep(0)

    assert "Email index creation failed" in caplog.text
    assert "event loop is closed" in caplog.text


@pytest.mark.asyncio
async def test_cancelled_index_task_is_quiet(mongo_database, caplog):
    with caplog.at_level(logging.WARNING):
        repo = MongoUserRepository(mongo_database, "fx_")
        repo._index_task.cancel()
        await asyncio.wait([repo._index_task])
        await asyncio.sleep(0)

    assert repo._index_task.cancelled()
    assert caplog.text == ""


def test_construction_without_loop_defers_index(mongo_database):
    repo = MongoUserRepository(mongo_database, "fx_")

    assert repo._index_task is None


@pytest.mark.asyncio
async def test_create_sets_surrogate_id(mongo_repository, users):
    oid = ObjectId()
    users.insert_one.return_value = MagicMock(inserted_id=oid)
    user = make_user()

    await mongo_repository.create(user)

    assert user.id == surrogate_id(oid)
    assert user.created_at is not None
    inserted = users.insert_one.call_args[0][0]
    assert inserted["email"] == "alice@example.com"
    assert inserted["role"] == "user"


@pytest.mark.asyncio
async def test_create_duplicate_key(mongo_repository, users):
    users.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key error collection: fx_users")

    with pytest.raises(AlreadyExistsError):
        await mongo_repository.create(make_user())


@pytest.mark.asyncio
async def test_create_backend_failure(mongo_repository, users):
    users.insert_one.side_effect = ServerSelectionTimeoutError("no servers")

    with pytest.raises(StorageError) as info:
        await mongo_repository.create(make_user())

    assert info.value.details == "no servers"


@pytest.mark.asyncio
async def test_id_operations_unsupported(mongo_repository, users):
    """Lookup and deletion by surrogate id always report not found."""
    with pytest.raises(NotFoundError, match="not supported"):
        await mongo_repository.get_by_id(1)
    with pytest.raises(NotFoundError, match="not supported"):
        await mongo_repository.delete(1)

    users.find_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_by_email(mongo_repository, users):
    users.find_one.return_value = make_doc()

    user = await mongo_repository.get_by_email("alice@example.com")

    assert user.name == "Alice A"
    users.find_one.assert_awaited_once_with({"email": "alice@example.com"})


@pytest.mark.asyncio
async def test_get_by_email_missing(mongo_repository, users):
    users.find_one.return_value = None

    with pytest.raises(NotFoundError):
        await mongo_repository.get_by_email("nobody@example.com")


@pytest.mark.asyncio
async def test_update_matches_by_email(mongo_repository, users):
    users.update_one.return_value = MagicMock(matched_count=1)
    user = make_user(id=123, name="Alice B", role=Role.ADMIN, active=False)

    await mongo_repository.update(user)

    criteria, changes = users.update_one.call_args[0]
    assert criteria == {"email": "alice@example.com"}
    assert changes["$set"]["name"] == "Alice B"
    assert changes["$set"]["role"] == "admin"
    assert changes["$set"]["active"] is False
    assert user.updated_at == changes["$set"]["updated_at"]


@pytest.mark.asyncio
async def test_update_no_match(mongo_repository, users):
    users.update_one.return_value = MagicMock(matched_count=0)

    with pytest.raises(NotFoundError):
        await mongo_repository.update(make_user())


@pytest.mark.asyncio
async def test_list_only_active(mongo_repository, users):
    users.count_documents.return_value = 1
    users.find.return_value.to_list.return_value = [make_doc()]

    result, total = await mongo_repository.list(5, 10)

    assert total == 1
    assert [u.email for u in result] == ["alice@example.com"]
    users.count_documents.assert_awaited_once_with({"active": True})
    users.find.assert_called_once_with({"active": True})
    cursor = users.find.return_value
    cursor.skip.assert_called_once_with(5)
    cursor.limit.assert_called_once_with(10)


@pytest.mark.asyncio
async def test_search_escapes_regex(mongo_repository, users):
    users.count_documents.return_value = 0

    await mongo_repository.search("a.b+", 0, 10)

    criteria = users.find.call_args[0][0]
    assert criteria["active"] is True
    assert criteria["$or"] == [
        {"name": {"$regex": r"a\.b\+", "$options": "i"}},
        {"email": {"$regex": r"a\.b\+", "$options": "i"}},
    ]


@pytest.mark.asyncio
async def test_list_backend_failure(mongo_repository, users):
    users.count_documents.side_effect = OperationFailure("boom")

    with pytest.raises(StorageError):
        await mongo_repository.list(0, 10)


@pytest.mark.asyncio
async def test_factory_selects_variant(mongo_database, connection):
    mongo = Connection(DatabaseDriver.MONGO, table_prefix="fx_", mongo_database=mongo_database)

    mongo_repo = new_user_repository(mongo)
    await mongo_repo._index_task

    assert isinstance(mongo_repo, MongoUserRepository)
    assert isinstance(new_user_repository(connection), RelationalUserRepository)


def test_connection_requires_matching_handle():
    with pytest.raises(ConfigurationError):
        Connection(DatabaseDriver.MONGO)
    with pytest.raises(ConfigurationError):
        Connection(DatabaseDriver.SQLITE)


def test_factory_rejects_unknown_driver(mongo_database):
    conn = Connection(DatabaseDriver.MONGO, mongo_database=mongo_database)
    conn.driver = "cassandra"

    with pytest.raises(ConfigurationError):
        new_user_repository(conn)

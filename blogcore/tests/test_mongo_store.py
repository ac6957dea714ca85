"""Tests for the MongoDB document store: driver calls mocked with unittest.mock."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from blogcore.errors import ConflictError
from blogcore.services.storage.indexes import INDEXES
from blogcore.services.storage.mongo import MongoDocumentStore, create_client


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def client(collection):
    client = MagicMock()
    database = MagicMock()
    database.__getitem__.return_value = collection
    client.__getitem__.return_value = database
    return client


@pytest.fixture
def mongo(client):
    return MongoDocumentStore(client, "blogcore_test")


def test_create_client_uses_settings(mock_settings, monkeypatch):
    fake_client = MagicMock()
    monkeypatch.setattr("blogcore.services.storage.mongo.AsyncMongoClient", fake_client)
    create_client(mock_settings)
    args, kwargs = fake_client.call_args
    assert args == (mock_settings.mongodb_uri,)
    assert kwargs["maxPoolSize"] == 10
    assert kwargs["serverSelectionTimeoutMS"] == 5000
    assert kwargs["socketTimeoutMS"] == 45000
    assert kwargs["tz_aware"] is True


class TestWrites:
    @pytest.mark.asyncio
    async def test_insert_returns_id(self, mongo, collection):
        oid = ObjectId()
        collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=oid))
        assert await mongo.insert_one("posts", {"title": "t"}) == oid

    @pytest.mark.asyncio
    async def test_duplicate_key_becomes_conflict(self, mongo, collection):
        collection.insert_one = AsyncMock(
            side_effect=DuplicateKeyError(
                "E11000 duplicate key", 11000, {"keyValue": {"email": "a@example.com"}}
            )
        )
        with pytest.raises(ConflictError) as exc:
            await mongo.insert_one("users", {"email": "a@example.com"})
        assert exc.value.field == "email"
        assert exc.value.value == "a@example.com"

    @pytest.mark.asyncio
    async def test_update_reports_match(self, mongo, collection):
        collection.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
        assert await mongo.update_one("posts", {"_id": ObjectId()}, {"$set": {"a": 1}}) is False

    @pytest.mark.asyncio
    async def test_increment_uses_inc(self, mongo, collection):
        oid = ObjectId()
        collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
        assert await mongo.increment("posts", oid, "views", 1) is True
        collection.update_one.assert_awaited_once_with({"_id": oid}, {"$inc": {"views": 1}})


class TestReads:
    @pytest.mark.asyncio
    async def test_find_applies_sort_and_paging(self, mongo, collection):
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[{"_id": 1}])
        collection.find.return_value = cursor

        docs = await mongo.find(
            "posts", {"status": "published"}, sort=[("views", -1)], skip=5, limit=10
        )
        assert docs == [{"_id": 1}]
        collection.find.assert_called_once_with({"status": "published"}, None, skip=5, limit=10)
        cursor.sort.assert_called_once_with([("views", -1)])

    @pytest.mark.asyncio
    async def test_aggregate(self, mongo, collection):
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=[{"_id": "Database", "postCount": 2}])
        collection.aggregate = AsyncMock(return_value=cursor)
        rows = await mongo.aggregate("posts", [{"$match": {}}])
        assert rows == [{"_id": "Database", "postCount": 2}]


class TestAdmin:
    @pytest.mark.asyncio
    async def test_ping_failure_is_reported_not_raised(self, mongo, client):
        client.admin.command = AsyncMock(side_effect=PyMongoError("connection refused"))
        assert await mongo.ping() is False

    @pytest.mark.asyncio
    async def test_ping_success(self, mongo, client):
        client.admin.command = AsyncMock(return_value={"ok": 1})
        assert await mongo.ping() is True

    @pytest.mark.asyncio
    async def test_ensure_indexes_creates_text_index_with_weights(self, mongo, collection):
        collection.create_index = AsyncMock()
        await mongo.ensure_indexes()
        assert collection.create_index.await_count == sum(len(s) for s in INDEXES.values())
        text_calls = [
            c for c in collection.create_index.await_args_list if "weights" in c.kwargs
        ]
        assert len(text_calls) == 1
        assert text_calls[0].kwargs["weights"] == {"title": 10, "excerpt": 5, "content": 1}
        assert text_calls[0].kwargs["name"] == "post_text_search"

    @pytest.mark.asyncio
    async def test_close(self, mongo, client):
        client.close = AsyncMock()
        await mongo.close()
        client.close.assert_awaited_once()

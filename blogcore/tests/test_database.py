"""Tests for storage lifecycle and service wiring."""

from unittest.mock import AsyncMock

import pytest

from blogcore.main import BlogCore, lifespan
from blogcore.services.database import Database
from blogcore.services.storage.memory import MemoryDocumentStore


class TestDatabase:
    @pytest.mark.asyncio
    async def test_memory_backend_lifecycle(self, mock_settings):
        database = Database(mock_settings)
        assert await database.healthy() is False

        store = await database.open()
        assert isinstance(store, MemoryDocumentStore)
        assert database.store is store
        assert await database.open() is store
        assert await database.healthy() is True

        await database.close()
        await database.close()
        assert database.is_open is False
        assert await database.healthy() is False
        with pytest.raises(RuntimeError):
            database.store

    @pytest.mark.asyncio
    async def test_defaults_to_global_settings(self, mock_settings):
        database = Database()
        assert isinstance(await database.open(), MemoryDocumentStore)
        await database.close()

    @pytest.mark.asyncio
    async def test_unknown_backend(self, mock_settings):
        mock_settings.storage_backend = "sqlite"
        with pytest.raises(ValueError, match="Unknown storage backend"):
            await Database(mock_settings).open()

    @pytest.mark.asyncio
    async def test_mongo_backend_ensures_indexes(self, mock_settings, monkeypatch):
        mock_settings.storage_backend = "mongo"
        fake_store = AsyncMock()
        monkeypatch.setattr(
            "blogcore.services.database.MongoDocumentStore.from_settings",
            lambda settings: fake_store,
        )
        database = Database(mock_settings)
        assert await database.open() is fake_store
        fake_store.ensure_indexes.assert_awaited_once()

        fake_store.ping.return_value = False
        assert await database.healthy() is False

        await database.close()
        fake_store.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_index_failure_closes_store(self, mock_settings, monkeypatch):
        mock_settings.storage_backend = "mongo"
        fake_store = AsyncMock()
        fake_store.ensure_indexes.side_effect = RuntimeError("no primary")
        monkeypatch.setattr(
            "blogcore.services.database.MongoDocumentStore.from_settings",
            lambda settings: fake_store,
        )
        database = Database(mock_settings)
        with pytest.raises(RuntimeError, match="no primary"):
            await database.open()
        fake_store.close.assert_awaited_once()
        assert database.is_open is False


class TestLifespan:
    @pytest.mark.asyncio
    async def test_wires_services_and_closes(self, mock_settings):
        async with lifespan(mock_settings) as core:
            assert isinstance(core, BlogCore)
            user = await core.users.create_user(
                {
                    "email": "ann@example.com",
                    "username": "ann",
                    "password": "correct-horse",
                    "firstName": "Ann",
                    "lastName": "Author",
                }
            )
            post = await core.posts.create_post(
                {
                    "title": "Wired",
                    "content": "End to end through every service.",
                    "author": user["_id"],
                    "categories": ["Technology"],
                    "status": "published",
                }
            )
            found = await core.posts.get_post_by_slug("wired")
            stats = await core.analytics.get_dashboard_stats()
            assert found["_id"] == post["_id"]
            assert stats.author_stats[0].username == "ann"
            assert await core.database.healthy() is True

        assert core.database.is_open is False

"""Shared fixtures for blogcore tests."""

import itertools

import pytest

from blogcore.services.content_store import ContentStore
from blogcore.services.joins import JoinResolver
from blogcore.services.storage.memory import MemoryDocumentStore


@pytest.fixture(autouse=True)
def _reset_global_state():
    """Reset module-level caches between tests."""
    yield

    from blogcore.config import get_settings

    get_settings.cache_clear()


@pytest.fixture
def mock_settings(monkeypatch):
    """Provide a Settings object with safe test defaults."""
    from blogcore.config import Settings, get_settings

    test_settings = Settings(
        environment="test",
        storage_backend="memory",
        mongodb_database="blogcore_test",
        trusted_commenter_threshold=5,
        analytics_cache_ttl=0,
    )

    get_settings.cache_clear()
    monkeypatch.setattr("blogcore.config.get_settings", lambda: test_settings)

    # Modules that did `from blogcore.config import get_settings` hold their own binding
    for mod_path in [
        "blogcore.services.analytics",
        "blogcore.services.comments",
        "blogcore.services.database",
        "blogcore.main",
    ]:
        monkeypatch.setattr(f"{mod_path}.get_settings", lambda: test_settings)

    return test_settings


@pytest.fixture
def db():
    return MemoryDocumentStore()


@pytest.fixture
def store(db):
    return ContentStore(db)


@pytest.fixture
def joins(db):
    return JoinResolver(db)


@pytest.fixture
def make_user(store):
    """Async factory creating valid users through the content store."""
    counter = itertools.count(1)

    async def _make(**overrides):
        n = next(counter)
        data = {
            "email": f"user{n}@example.com",
            "username": f"user{n}",
            "password": "correct-horse",
            "firstName": "Test",
            "lastName": f"User{n}",
        }
        data.update(overrides)
        return await store.users.create(data)

    return _make


@pytest.fixture
def make_post(store):
    """Async factory creating valid posts; ``author`` is required."""
    counter = itertools.count(1)

    async def _make(author, **overrides):
        n = next(counter)
        data = {
            "title": f"Post number {n}",
            "content": "Some words about databases and queries.",
            "author": author,
            "categories": ["Technology"],
        }
        data.update(overrides)
        return await store.posts.create(data)

    return _make


@pytest.fixture
def insert_comment(db):
    """Insert a comment directly so tests control ``createdAt`` ordering."""

    async def _insert(
        post_id, author_id, created_at, *, approved=True, parent=None, content="Nice post"
    ):
        doc = {
            "post": post_id,
            "author": author_id,
            "content": content,
            "parentComment": parent,
            "isApproved": approved,
            "likes": 0,
            "createdAt": created_at,
            "updatedAt": created_at,
        }
        return await db.insert_one("comments", doc)

    return _insert

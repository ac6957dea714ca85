"""Storage handle lifecycle."""

import logging

from blogcore.config import Settings, get_settings
from blogcore.services.storage.base import DocumentStore
from blogcore.services.storage.memory import MemoryDocumentStore
from blogcore.services.storage.mongo import MongoDocumentStore

logger = logging.getLogger(__name__)


class Database:
    """Owns the one DocumentStore that every service shares.

    ``open()`` builds the backend named by ``storage_backend`` and ensures
    its indexes; ``close()`` is safe to call repeatedly.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._store: DocumentStore | None = None

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            raise RuntimeError("Database is not open")
        return self._store

    @property
    def is_open(self) -> bool:
        return self._store is not None

    async def open(self) -> DocumentStore:
        if self._store is not None:
            return self._store
        backend = self._settings.storage_backend
        if backend == "memory":
            store: DocumentStore = MemoryDocumentStore()
        elif backend == "mongo":
            store = MongoDocumentStore.from_settings(self._settings)
        else:
            raise ValueError(f"Unknown storage backend: {backend!r}")
        try:
            await store.ensure_indexes()
        except Exception:
            logger.exception("Index bootstrap failed on %s backend", backend)
            await store.close()
            raise
        self._store = store
        logger.info("Opened %s storage (database %s)", backend, self._settings.mongodb_database)
        return store

    async def close(self) -> None:
        if self._store is None:
            return
        store, self._store = self._store, None
        await store.close()
        logger.info("Storage closed")

    async def healthy(self) -> bool:
        """True when the store is open and answers a ping."""
        if self._store is None:
            return False
        ok = await self._store.ping()
        if not ok:
            logger.warning("Storage health check failed")
        return ok

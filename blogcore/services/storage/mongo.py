"""MongoDB document store backed by pymongo's asyncio client."""

import logging
from typing import Any

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from blogcore.config import Settings
from blogcore.errors import ConflictError
from blogcore.services.storage.base import Document, DocumentStore, SortSpec
from blogcore.services.storage.indexes import INDEXES

logger = logging.getLogger(__name__)


def _conflict_from(error: DuplicateKeyError) -> ConflictError:
    """Translate a duplicate-key error into the blogcore taxonomy."""
    key_value = (error.details or {}).get("keyValue") or {}
    if key_value:
        field, value = next(iter(key_value.items()))
        return ConflictError(field, value)
    return ConflictError("unknown", None, str(error))


def create_client(settings: Settings) -> AsyncMongoClient:
    """Build an AsyncMongoClient from settings (connects lazily)."""
    return AsyncMongoClient(
        settings.mongodb_uri,
        maxPoolSize=settings.mongodb_max_pool_size,
        serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
        socketTimeoutMS=settings.mongodb_socket_timeout_ms,
        retryWrites=True,
        w="majority",
        tz_aware=True,
    )


class MongoDocumentStore(DocumentStore):
    """DocumentStore over a single MongoDB database."""

    def __init__(self, client: AsyncMongoClient, database: str) -> None:
        self._client = client
        self._db = client[database]

    @classmethod
    def from_settings(cls, settings: Settings) -> "MongoDocumentStore":
        return cls(create_client(settings), settings.mongodb_database)

    async def insert_one(self, collection: str, document: Document) -> ObjectId:
        try:
            result = await self._db[collection].insert_one(document)
        except DuplicateKeyError as e:
            raise _conflict_from(e) from e
        return result.inserted_id

    async def find(
        self,
        collection: str,
        filter: Document | None = None,
        *,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int = 0,
        projection: Document | None = None,
    ) -> list[Document]:
        cursor = self._db[collection].find(
            filter or {}, projection, skip=skip, limit=limit
        )
        if sort:
            cursor = cursor.sort(sort)
        return await cursor.to_list()

    async def find_one(
        self,
        collection: str,
        filter: Document,
        projection: Document | None = None,
    ) -> Document | None:
        return await self._db[collection].find_one(filter, projection)

    async def count_documents(self, collection: str, filter: Document) -> int:
        return await self._db[collection].count_documents(filter)

    async def update_one(
        self, collection: str, filter: Document, update: Document
    ) -> bool:
        try:
            result = await self._db[collection].update_one(filter, update)
        except DuplicateKeyError as e:
            raise _conflict_from(e) from e
        return result.matched_count > 0

    async def delete_one(self, collection: str, filter: Document) -> bool:
        result = await self._db[collection].delete_one(filter)
        return result.deleted_count > 0

    async def distinct(
        self, collection: str, field: str, filter: Document | None = None
    ) -> list[Any]:
        return await self._db[collection].distinct(field, filter or {})

    async def aggregate(
        self, collection: str, pipeline: list[Document]
    ) -> list[Document]:
        cursor = await self._db[collection].aggregate(pipeline)
        return await cursor.to_list()

    async def ping(self) -> bool:
        """Lightweight connectivity check that runs the ``ping`` admin command."""
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning("MongoDB ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self._client.close()

    async def ensure_indexes(self) -> None:
        for collection, specs in INDEXES.items():
            for spec in specs:
                options: dict[str, Any] = {"unique": spec.unique}
                if spec.weights:
                    options["weights"] = spec.weights
                if spec.name:
                    options["name"] = spec.name
                await self._db[collection].create_index(list(spec.keys), **options)
            logger.info("Ensured %d indexes on %s", len(specs), collection)

"""Storage-agnostic document store interface.

Filters, updates and aggregation pipelines use the MongoDB query dialect so
that the Mongo backend is a pass-through and the in-memory backend can be
checked against the same calls.
"""

from abc import ABC, abstractmethod
from typing import Any

from bson import ObjectId

Document = dict[str, Any]
SortSpec = list[tuple[str, Any]]

_MISSING = object()


def get_path(doc: Any, path: str, default: Any = None) -> Any:
    """Read a dotted path from a nested document. Arrays are not traversed."""
    current = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def has_path(doc: Any, path: str) -> bool:
    return get_path(doc, path, _MISSING) is not _MISSING


def set_path(doc: Document, path: str, value: Any) -> None:
    """Write ``value`` at a dotted path, creating intermediate dicts."""
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def unset_path(doc: Document, path: str) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


class DocumentStore(ABC):
    """The narrow query interface every blogcore service talks to."""

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> ObjectId:
        """Insert ``document`` and return its ``_id`` (assigned when absent)."""

    @abstractmethod
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
        """Return matching documents in ``sort`` order (``limit`` 0 = unlimited)."""

    @abstractmethod
    async def find_one(
        self,
        collection: str,
        filter: Document,
        projection: Document | None = None,
    ) -> Document | None: ...

    @abstractmethod
    async def count_documents(self, collection: str, filter: Document) -> int: ...

    @abstractmethod
    async def update_one(
        self, collection: str, filter: Document, update: Document
    ) -> bool:
        """Apply an update document to the first match. Returns True if matched."""

    @abstractmethod
    async def delete_one(self, collection: str, filter: Document) -> bool: ...

    @abstractmethod
    async def distinct(
        self, collection: str, field: str, filter: Document | None = None
    ) -> list[Any]: ...

    @abstractmethod
    async def aggregate(
        self, collection: str, pipeline: list[Document]
    ) -> list[Document]: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None: ...

    async def ensure_indexes(self) -> None:
        """Create the indexes declared in ``indexes.INDEXES`` (no-op by default)."""

    async def increment(
        self, collection: str, doc_id: ObjectId, field: str, delta: int = 1
    ) -> bool:
        """Atomically add ``delta`` to a numeric field of one document.

        Applied by the storage engine, never as a read-modify-write in
        application memory.
        """
        return await self.update_one(
            collection, {"_id": doc_id}, {"$inc": {field: delta}}
        )

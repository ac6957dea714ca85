"""Join resolver: expand reference fields into projected referent records.

Replaces storage-native populate: callers compose joins explicitly, one
field at a time, and every lookup for a batch of entities is a single
``find`` on the referenced collection.
"""

import logging
from collections.abc import Sequence
from typing import Any

from bson import ObjectId

from blogcore.services.storage.base import Document, DocumentStore, get_path, set_path

logger = logging.getLogger(__name__)

AUTHOR_FIELDS = ("username", "firstName", "lastName", "profile.avatar")
AUTHOR_SUMMARY_FIELDS = ("username", "firstName", "lastName")
COMMENT_AUTHOR_FIELDS = ("username", "profile.avatar")
LIKE_FIELDS = ("username",)

# Likes are expanded as a preview; likesCount always reflects the full set
LIKES_PREVIEW_LIMIT = 10


class JoinResolver:
    """Expands ``_id`` references held in entity fields."""

    def __init__(self, db: DocumentStore) -> None:
        self._db = db

    async def resolve(
        self,
        entity: Document,
        field_path: str,
        collection: str,
        fields: Sequence[str],
        match: Document | None = None,
        limit: int | None = None,
    ) -> Document:
        """Resolve one entity. See ``resolve_many``."""
        [resolved] = await self.resolve_many(
            [entity], field_path, collection, fields, match=match, limit=limit
        )
        return resolved

    async def resolve_many(
        self,
        entities: Sequence[Document],
        field_path: str,
        collection: str,
        fields: Sequence[str],
        match: Document | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Replace the reference at ``field_path`` in each entity.

        A single id becomes the referent projected to ``fields``, or ``None``
        when the referent is gone or fails ``match``. A list of ids becomes a
        list of referents with unresolved ids dropped, then capped at ``limit``.
        Input entities are not mutated.
        """
        refs: list[Any] = []
        for entity in entities:
            value = get_path(entity, field_path)
            if isinstance(value, list):
                refs.extend(value)
            elif value is not None:
                refs.append(value)

        wanted = list(dict.fromkeys(r for r in refs if isinstance(r, ObjectId)))
        by_id: dict[ObjectId, Document] = {}
        if wanted:
            query: Document = {"_id": {"$in": wanted}}
            if match:
                query = {"$and": [query, match]}
            projection = {name: 1 for name in fields}
            found = await self._db.find(collection, query, projection=projection)
            by_id = {doc["_id"]: doc for doc in found}
            missing = len(wanted) - len(by_id)
            if missing:
                logger.debug(
                    "%d %s reference(s) at %s did not resolve",
                    missing,
                    collection,
                    field_path,
                )

        resolved: list[Document] = []
        for entity in entities:
            value = get_path(entity, field_path)
            copy = _copy_parents(entity, field_path)
            if isinstance(value, list):
                found_refs = [by_id[i] for i in value if isinstance(i, ObjectId) and i in by_id]
                if limit:
                    found_refs = found_refs[:limit]
                set_path(copy, field_path, found_refs)
            else:
                set_path(
                    copy,
                    field_path,
                    by_id.get(value) if isinstance(value, ObjectId) else None,
                )
            resolved.append(copy)
        return resolved


def _copy_parents(entity: Document, field_path: str) -> Document:
    """Shallow-copy every dict along ``field_path`` so set_path leaves the input intact."""
    root = dict(entity)
    current = root
    for part in field_path.split(".")[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            break
        current[part] = dict(child)
        current = current[part]
    return root

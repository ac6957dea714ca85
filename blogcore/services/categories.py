"""Category taxonomy: creation, tree assembly and postCount maintenance.

Posts reference categories by name. ``postCount`` is denormalized: post
writes adjust it best-effort with atomic increments, and
``reconcile_post_counts`` recomputes it from actual post membership to
repair any drift left by failed or interleaved writes.
"""

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from blogcore.errors import NotFoundError
from blogcore.models.ids import to_object_id
from blogcore.services.content_store import ContentStore
from blogcore.services.storage.base import Document

logger = logging.getLogger(__name__)

_MEMBERSHIP_PIPELINE: list[Document] = [
    {"$unwind": "$categories"},
    {"$group": {"_id": "$categories", "count": {"$sum": 1}}},
]


class CategoryService:
    def __init__(self, store: ContentStore) -> None:
        self._store = store

    async def create_category(self, data: Document) -> Document:
        """Create a category; a given parent must already exist."""
        parent = data.get("parentCategory")
        if parent is not None:
            parent_oid = to_object_id(parent)
            if await self._store.categories.find_by_id(parent_oid, {"_id": 1}) is None:
                raise NotFoundError("categories", parent_oid)
            data = {**data, "parentCategory": parent_oid}
        return await self._store.categories.create(data)

    async def get_subcategories(self, category_id: Any) -> list[Document]:
        """Active direct children of a category, by name."""
        return await self._store.categories.find(
            {"parentCategory": to_object_id(category_id), "isActive": True},
            sort=[("name", 1)],
        )

    async def get_category_tree(self) -> list[Document]:
        """Active root categories, each with nested ``subcategories``.

        Children of an inactive category are not reachable from the tree.
        """
        categories = await self._store.categories.find(
            {"isActive": True}, sort=[("name", 1)]
        )
        children: dict[Any, list[Document]] = {}
        for category in categories:
            children.setdefault(category.get("parentCategory"), []).append(category)

        def build(parent_id: Any, seen: frozenset) -> list[Document]:
            nodes = []
            for category in children.get(parent_id, []):
                if category["_id"] in seen:
                    continue
                node = dict(category)
                node["subcategories"] = build(category["_id"], seen | {category["_id"]})
                nodes.append(node)
            return nodes

        return build(None, frozenset())

    async def _shift(self, name: str, delta: int) -> None:
        query: Document = {"name": name}
        if delta < 0:
            # never drive the counter below zero
            query["postCount"] = {"$gt": 0}
        matched = await self._store.db.update_one(
            "categories", query, {"$inc": {"postCount": delta}}
        )
        if not matched:
            logger.debug("postCount %+d skipped for category %r", delta, name)

    async def adjust_post_counts(
        self, added: Iterable[str] = (), removed: Iterable[str] = ()
    ) -> None:
        """Increment counts for ``added`` names and decrement for ``removed``.

        Each counter moves atomically, but the set of moves is not a
        transaction: a crash midway leaves drift for the reconciliation sweep.
        """
        moves = [self._shift(name, 1) for name in set(added)]
        moves += [self._shift(name, -1) for name in set(removed)]
        if moves:
            await asyncio.gather(*moves)

    async def reconcile_post_counts(self) -> dict[str, int]:
        """Rewrite every drifted ``postCount`` from actual post membership.

        Returns the corrected counts keyed by category name.
        """
        rows = await self._store.db.aggregate("posts", _MEMBERSHIP_PIPELINE)
        actual = {row["_id"]: row["count"] for row in rows}
        categories = await self._store.categories.find(
            projection={"name": 1, "postCount": 1}
        )

        corrected: dict[str, int] = {}
        for category in categories:
            expected = actual.get(category["name"], 0)
            if category.get("postCount", 0) == expected:
                continue
            await self._store.db.update_one(
                "categories",
                {"_id": category["_id"]},
                {"$set": {"postCount": expected}},
            )
            corrected[category["name"]] = expected

        if corrected:
            logger.warning(
                "Reconciled postCount drift on %d categories: %s",
                len(corrected),
                corrected,
            )
        else:
            logger.info("postCount reconciliation found no drift")
        return corrected

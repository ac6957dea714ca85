"""Post search: weighted full-text relevance plus multi-criteria filters."""

import logging
import re
from datetime import datetime
from typing import Any

from bson import ObjectId
from pydantic import BaseModel, model_validator

from blogcore.models.ids import to_object_id
from blogcore.models.post import PostStatus
from blogcore.services.content_store import ContentStore
from blogcore.services.joins import AUTHOR_SUMMARY_FIELDS, JoinResolver
from blogcore.services.storage.base import Document

logger = logging.getLogger(__name__)

SEARCH_RESULT_LIMIT = 50

# List views never carry the full body
SUMMARY_PROJECTION: Document = {"content": 0}
SIMILAR_PROJECTION: Document = {
    "title": 1,
    "slug": 1,
    "excerpt": 1,
    "author": 1,
    "publishedAt": 1,
    "views": 1,
    "likes": 1,
}
COMMENTED_PROJECTION: Document = {
    "title": 1,
    "slug": 1,
    "author": 1,
    "publishedAt": 1,
    "views": 1,
}

AUTHOR_NAME_FIELDS = ("firstName", "lastName", "username")


class DateRange(BaseModel):
    """Inclusive bounds on ``publishedAt``."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("date range start must not be after end")
        return self


class SearchCriteria(BaseModel):
    """Search options; every given option narrows the result (logical AND)."""

    text: str | None = None
    categories: list[str] = []
    tags: list[str] = []
    author: str | None = None
    date_range: DateRange | None = None
    min_views: int | None = None
    has_image: bool | None = None


class SearchEngine:
    """Search over published posts."""

    def __init__(self, store: ContentStore, joins: JoinResolver) -> None:
        self._store = store
        self._joins = joins

    async def _find_authors_by_name(self, name: str) -> list[ObjectId]:
        """Ids of users whose first, last or user name contains ``name`` (any case)."""
        pattern = re.escape(name)
        users = await self._store.users.find(
            {
                "$or": [
                    {field: {"$regex": pattern, "$options": "i"}}
                    for field in AUTHOR_NAME_FIELDS
                ]
            },
            projection={"_id": 1},
        )
        return [user["_id"] for user in users]

    async def search_posts(self, criteria: SearchCriteria) -> list[Document]:
        """Return up to 50 published post summaries matching ``criteria``.

        With ``text``, results are ordered by relevance (title weighted 10,
        excerpt 5, body 1) and then by newest publication; otherwise by newest
        publication only. An author name matching nobody yields no results.
        """
        query: Document = {"status": PostStatus.PUBLISHED.value}
        projection: Document = dict(SUMMARY_PROJECTION)
        sort: list[tuple[str, Any]] = [("publishedAt", -1)]

        if criteria.text:
            query["$text"] = {"$search": criteria.text, "$caseSensitive": False}
            projection["score"] = {"$meta": "textScore"}
            sort = [("score", {"$meta": "textScore"}), ("publishedAt", -1)]

        if criteria.categories:
            query["categories"] = {"$in": criteria.categories}

        if criteria.tags:
            query["tags"] = {"$in": criteria.tags}

        if criteria.author:
            author_ids = await self._find_authors_by_name(criteria.author)
            if not author_ids:
                logger.debug("No authors match %r; search is empty", criteria.author)
                return []
            query["author"] = {"$in": author_ids}

        if criteria.date_range:
            query["publishedAt"] = {
                "$gte": criteria.date_range.start,
                "$lte": criteria.date_range.end,
            }

        if criteria.min_views is not None:
            query["views"] = {"$gte": criteria.min_views}

        if criteria.has_image is True:
            query["featuredImage"] = {"$exists": True, "$ne": None}
        elif criteria.has_image is False:
            query["featuredImage"] = None

        posts = await self._store.posts.find(
            query, sort=sort, limit=SEARCH_RESULT_LIMIT, projection=projection
        )
        return await self._joins.resolve_many(
            posts, "author", "users", AUTHOR_SUMMARY_FIELDS
        )

    async def find_similar_posts(self, post_id: Any, limit: int = 5) -> list[Document]:
        """Published posts sharing a category or tag with ``post_id``, newest first.

        The source post is never part of its own result; a missing source
        yields an empty list.
        """
        oid = to_object_id(post_id)
        source = await self._store.posts.find_by_id(oid, {"categories": 1, "tags": 1})
        if source is None:
            return []

        similar = await self._store.posts.find(
            {
                "_id": {"$ne": oid},
                "status": PostStatus.PUBLISHED.value,
                "$or": [
                    {"categories": {"$in": source.get("categories", [])}},
                    {"tags": {"$in": source.get("tags", [])}},
                ],
            },
            sort=[("publishedAt", -1)],
            limit=limit,
            projection=SIMILAR_PROJECTION,
        )
        return await self._joins.resolve_many(
            similar, "author", "users", AUTHOR_SUMMARY_FIELDS
        )

    async def find_posts_with_approved_comments(self) -> list[Document]:
        """Published posts with at least one approved comment, newest first."""
        post_ids = await self._store.db.distinct(
            "comments", "post", {"isApproved": True}
        )
        if not post_ids:
            return []
        posts = await self._store.posts.find(
            {"_id": {"$in": post_ids}, "status": PostStatus.PUBLISHED.value},
            sort=[("publishedAt", -1)],
            projection=COMMENTED_PROJECTION,
        )
        return await self._joins.resolve_many(
            posts, "author", "users", AUTHOR_SUMMARY_FIELDS
        )

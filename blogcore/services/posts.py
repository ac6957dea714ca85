"""Post reads and lifecycle writes.

Read paths compose the join resolver and the comment thread builder; write
paths keep category ``postCount`` in step through the category service.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from blogcore.errors import NotFoundError, ValidationError
from blogcore.models.ids import to_object_id
from blogcore.models.post import PostStatus
from blogcore.services.categories import CategoryService
from blogcore.services.comments import CommentThreadBuilder
from blogcore.services.content_store import ContentStore
from blogcore.services.joins import (
    AUTHOR_FIELDS,
    AUTHOR_SUMMARY_FIELDS,
    LIKE_FIELDS,
    LIKES_PREVIEW_LIMIT,
    JoinResolver,
)
from blogcore.services.pagination import Page, offset
from blogcore.services.storage.base import Document

logger = logging.getLogger(__name__)

SORT_FIELDS = ("createdAt", "views", "likes")


class PostService:
    def __init__(
        self,
        store: ContentStore,
        joins: JoinResolver,
        categories: CategoryService,
        threads: CommentThreadBuilder,
    ) -> None:
        self._store = store
        self._joins = joins
        self._categories = categories
        self._threads = threads

    # -- writes --------------------------------------------------------------

    async def create_post(self, data: Document) -> Document:
        """Create a post for an existing author and count it in its categories."""
        author = data.get("author")
        if author is not None:
            author_oid = to_object_id(author)
            if await self._store.users.find_by_id(author_oid, {"_id": 1}) is None:
                raise NotFoundError("users", author_oid)
            data = {**data, "author": author_oid}
        post = await self._store.posts.create(data)
        await self._categories.adjust_post_counts(added=post["categories"])
        return post

    async def update_post(self, post_id: Any, partial: Document) -> Document:
        oid = to_object_id(post_id)
        before = await self._store.posts.find_by_id(oid, {"categories": 1})
        if before is None:
            raise NotFoundError("posts", oid)
        post = await self._store.posts.update(oid, partial)
        old, new = set(before.get("categories", [])), set(post.get("categories", []))
        if old != new:
            await self._categories.adjust_post_counts(added=new - old, removed=old - new)
        return post

    async def delete_post(self, post_id: Any) -> Document:
        removed = await self._store.posts.hard_delete(post_id)
        await self._categories.adjust_post_counts(removed=removed.get("categories", []))
        return removed

    async def publish_post(self, post_id: Any) -> Document:
        """Move a draft to published; ``publishedAt`` is stamped if unset."""
        post = await self._store.posts.update(post_id, {"status": PostStatus.PUBLISHED.value})
        logger.info("Published post %s (%s)", post["_id"], post["slug"])
        return post

    async def archive_post(self, post_id: Any) -> Document:
        post = await self._store.posts.update(post_id, {"status": PostStatus.ARCHIVED.value})
        logger.info("Archived post %s", post["_id"])
        return post

    async def like_post(self, post_id: Any, user_id: Any) -> None:
        await self._store.posts.add_like(post_id, user_id)

    async def unlike_post(self, post_id: Any, user_id: Any) -> None:
        await self._store.posts.remove_like(post_id, user_id)

    async def increment_views(self, post_id: Any) -> None:
        await self._store.posts.increment(post_id, "views", 1)

    # -- reads ---------------------------------------------------------------

    async def get_post_by_slug(self, slug: str) -> Document | None:
        """A published post with its author and a preview of who liked it.

        The author resolves to None when the account is inactive. Finding the
        post counts as a view; the returned document shows the count as read.
        """
        post = await self._store.posts.find_one(
            {"slug": slug, "status": PostStatus.PUBLISHED.value}
        )
        if post is None:
            return None
        post = await self._joins.resolve(
            post, "author", "users", AUTHOR_FIELDS, match={"isActive": True}
        )
        post = await self._joins.resolve(
            post, "likes", "users", LIKE_FIELDS, limit=LIKES_PREVIEW_LIMIT
        )
        await self._store.posts.increment(post["_id"], "views", 1)
        return post

    async def get_post_with_comments(
        self, post_id: Any
    ) -> tuple[Document | None, list[Document]]:
        """A post with its author and approved comment threads.

        A malformed id raises InvalidReferenceError; a missing post gives
        ``(None, [])``.
        """
        oid = to_object_id(post_id)
        post = await self._store.posts.find_by_id(oid)
        if post is None:
            return None, []
        post, threads = await asyncio.gather(
            self._joins.resolve(post, "author", "users", AUTHOR_FIELDS),
            self._threads.build(oid),
        )
        return post, threads

    async def get_posts_by_category(
        self,
        category: str,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> Page:
        """Published posts in ``category``, one page at a time, without bodies."""
        errors: dict[str, str] = {}
        if sort_by not in SORT_FIELDS:
            errors["sortBy"] = f"must be one of {', '.join(SORT_FIELDS)}"
        if sort_order not in ("asc", "desc"):
            errors["sortOrder"] = "must be asc or desc"
        if page < 1:
            errors["page"] = "must be at least 1"
        if limit < 1:
            errors["limit"] = "must be at least 1"
        if errors:
            raise ValidationError(errors)

        query: Document = {
            "categories": category,
            "status": PostStatus.PUBLISHED.value,
            "publishedAt": {"$lte": datetime.now(timezone.utc)},
        }
        direction = -1 if sort_order == "desc" else 1
        sort_field = "likesCount" if sort_by == "likes" else sort_by
        pipeline: list[Document] = [
            {"$match": query},
            {"$addFields": {"likesCount": {"$size": {"$ifNull": ["$likes", []]}}}},
            {"$sort": {sort_field: direction, "_id": direction}},
            {"$skip": offset(page, limit)},
            {"$limit": limit},
            {"$project": {"content": 0}},
        ]
        rows, total = await asyncio.gather(
            self._store.db.aggregate("posts", pipeline),
            self._store.posts.count(query),
        )
        posts = [self._store.posts.serialize(row) for row in rows]
        posts = await self._joins.resolve_many(
            posts, "author", "users", AUTHOR_SUMMARY_FIELDS
        )
        return Page.create(posts, total, page, limit)

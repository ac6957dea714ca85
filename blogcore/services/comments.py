"""Comment threads and comment writes.

Threads are rebuilt on demand from the flat ``comments`` collection via the
``parentComment`` pointer. Only one level of replies is expanded per call;
callers wanting deeper chains build again rooted at a reply.
"""

import asyncio
import logging
from typing import Any

from blogcore.config import Settings, get_settings
from blogcore.errors import NotFoundError, ValidationError
from blogcore.models.ids import to_object_id
from blogcore.services.content_store import ContentStore
from blogcore.services.joins import COMMENT_AUTHOR_FIELDS, JoinResolver
from blogcore.services.storage.base import Document

logger = logging.getLogger(__name__)

TOP_LEVEL_LIMIT = 50
REPLIES_LIMIT = 50


class CommentThreadBuilder:
    """Assembles approved top-level comments with their approved direct replies."""

    def __init__(self, store: ContentStore, joins: JoinResolver) -> None:
        self._store = store
        self._joins = joins

    async def build(self, post_id: Any, root_comment_id: Any = None) -> list[Document]:
        """Return the approved thread for a post.

        Top-level comments (``parentComment`` unset, or equal to
        ``root_comment_id`` when given) come newest first, at most 50. Each
        carries ``replies``: its approved direct replies, oldest first, at
        most 50. Authors are resolved at both levels. Unapproved comments are
        never returned.
        """
        post_oid = to_object_id(post_id)
        parent = to_object_id(root_comment_id) if root_comment_id is not None else None

        top_level = await self._store.comments.find(
            {"post": post_oid, "isApproved": True, "parentComment": parent},
            sort=[("createdAt", -1)],
            limit=TOP_LEVEL_LIMIT,
        )
        if not top_level:
            return []

        reply_lists = await asyncio.gather(
            *(
                self._store.comments.find(
                    {
                        "post": post_oid,
                        "parentComment": comment["_id"],
                        "isApproved": True,
                    },
                    sort=[("createdAt", 1)],
                    limit=REPLIES_LIMIT,
                )
                for comment in top_level
            )
        )

        # One author lookup for both levels
        flat = list(top_level)
        for replies in reply_lists:
            flat.extend(replies)
        resolved = await self._joins.resolve_many(
            flat, "author", "users", COMMENT_AUTHOR_FIELDS
        )

        threads: list[Document] = []
        cursor = len(top_level)
        for comment, replies in zip(resolved[: len(top_level)], reply_lists):
            thread = dict(comment)
            thread["replies"] = resolved[cursor : cursor + len(replies)]
            cursor += len(replies)
            threads.append(thread)
        return threads


class CommentService:
    """Comment writes: posting with trust-based auto-approval, approval, likes."""

    def __init__(self, store: ContentStore, settings: Settings | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()

    async def is_trusted(self, author_id: Any) -> bool:
        """Authors with more approved comments than the threshold skip moderation."""
        approved = await self._store.comments.count(
            {"author": to_object_id(author_id), "isApproved": True}
        )
        return approved > self._settings.trusted_commenter_threshold

    async def add_comment(
        self,
        post_id: Any,
        author_id: Any,
        content: str,
        parent_comment_id: Any = None,
    ) -> Document:
        """Create a comment, auto-approving it when the author is trusted.

        A reply must target an existing comment on the same post.
        """
        post_oid = to_object_id(post_id)
        author_oid = to_object_id(author_id)
        parent_oid = (
            to_object_id(parent_comment_id) if parent_comment_id is not None else None
        )

        if await self._store.posts.find_by_id(post_oid, {"_id": 1}) is None:
            raise NotFoundError("posts", post_oid)
        if parent_oid is not None:
            parent = await self._store.comments.find_by_id(parent_oid, {"post": 1})
            if parent is None:
                raise NotFoundError("comments", parent_oid)
            if parent["post"] != post_oid:
                raise ValidationError(
                    {"parentComment": "Parent comment belongs to a different post"}
                )

        trusted = await self.is_trusted(author_oid)
        comment = await self._store.comments.create(
            {
                "post": post_oid,
                "author": author_oid,
                "content": content,
                "parentComment": parent_oid,
                "isApproved": trusted,
            }
        )
        if trusted:
            logger.info(
                "Auto-approved comment %s from trusted author %s", comment["_id"], author_oid
            )
        return comment

    async def approve_comment(self, comment_id: Any) -> Document:
        return await self._store.comments.update(comment_id, {"isApproved": True})

    async def like_comment(self, comment_id: Any) -> None:
        await self._store.comments.increment(comment_id, "likes", 1)

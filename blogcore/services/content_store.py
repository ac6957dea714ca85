"""Content store: typed accessors for users, posts, comments and categories.

Every write validates the complete candidate document before it reaches
storage; a failure raises ValidationError and writes nothing. Updates only
``$set`` the fields that changed so concurrent counter increments are never
overwritten.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from blogcore.errors import ConflictError, NotFoundError, ValidationError
from blogcore.models.category import Category
from blogcore.models.comment import Comment
from blogcore.models.ids import to_object_id
from blogcore.models.post import STATUS_TRANSITIONS, Post, PostStatus
from blogcore.models.user import User, full_name
from blogcore.services.derive import compute_read_time, derive_excerpt, slugify
from blogcore.services.storage.base import Document, DocumentStore, SortSpec

logger = logging.getLogger(__name__)

# Maintained by the store itself; never accepted from callers
_SYSTEM_FIELDS = ("_id", "createdAt", "updatedAt")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def validate_document(model: type[BaseModel], candidate: Document) -> Document:
    """Validate ``candidate`` against ``model`` and return the storable dict."""
    try:
        instance = model.model_validate(candidate)
    except PydanticValidationError as e:
        errors = {
            ".".join(str(part) for part in err["loc"]) or "__root__": err["msg"]
            for err in e.errors()
        }
        raise ValidationError(errors) from e
    return instance.model_dump(by_alias=True, exclude_none=True)


class EntityStore:
    """Accessor for one collection. Subclasses declare the entity's rules."""

    collection: str
    model: type[BaseModel]
    unique_fields: tuple[str, ...] = ()
    unique_messages: dict[str, str] = {}
    # Counters change only through increment(); updates never $set them
    counter_fields: tuple[str, ...] = ()
    # Stripped from update() partials
    protected_fields: tuple[str, ...] = ()

    def __init__(self, db: DocumentStore) -> None:
        self._db = db

    def prepare(self, candidate: Document, existing: Document | None) -> Document:
        """Compute derived fields on the candidate before validation."""
        return candidate

    def serialize(self, doc: Document) -> Document:
        """Shape a stored document for callers."""
        return doc

    async def _check_unique(
        self, document: Document, exclude_id: ObjectId | None = None
    ) -> None:
        for field in self.unique_fields:
            value = document.get(field)
            if value is None:
                continue
            query: Document = {field: value}
            if exclude_id is not None:
                query["_id"] = {"$ne": exclude_id}
            if await self._db.count_documents(self.collection, query):
                raise ConflictError(field, value, self.unique_messages.get(field))

    async def create(self, data: Document) -> Document:
        candidate = {k: v for k, v in data.items() if k not in _SYSTEM_FIELDS}
        candidate = self.prepare(candidate, None)
        document = validate_document(self.model, candidate)
        await self._check_unique(document)
        now = _now()
        document["createdAt"] = now
        document["updatedAt"] = now
        document["_id"] = await self._db.insert_one(self.collection, document)
        logger.info("Created %s %s", self.collection, document["_id"])
        return self.serialize(document)

    async def find_by_id(
        self, doc_id: Any, projection: Document | None = None
    ) -> Document | None:
        doc = await self._db.find_one(
            self.collection, {"_id": to_object_id(doc_id)}, projection
        )
        return self.serialize(doc) if doc else None

    async def find_one(
        self, filter: Document, projection: Document | None = None
    ) -> Document | None:
        doc = await self._db.find_one(self.collection, filter, projection)
        return self.serialize(doc) if doc else None

    async def find(
        self,
        filter: Document | None = None,
        *,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int = 0,
        projection: Document | None = None,
    ) -> list[Document]:
        docs = await self._db.find(
            self.collection,
            filter,
            sort=sort,
            skip=skip,
            limit=limit,
            projection=projection,
        )
        return [self.serialize(d) for d in docs]

    async def count(self, filter: Document) -> int:
        return await self._db.count_documents(self.collection, filter)

    async def update(self, doc_id: Any, partial: Document) -> Document:
        oid = to_object_id(doc_id)
        existing = await self._db.find_one(self.collection, {"_id": oid})
        if existing is None:
            raise NotFoundError(self.collection, oid)

        changes = {
            k: v
            for k, v in partial.items()
            if k not in _SYSTEM_FIELDS and k not in self.protected_fields
        }
        candidate = self.prepare({**existing, **changes}, existing)
        document = validate_document(self.model, candidate)
        await self._check_unique(document, exclude_id=oid)

        to_set = {
            k: v
            for k, v in document.items()
            if k not in self.counter_fields and existing.get(k) != v
        }
        to_unset = [
            k
            for k in existing
            if k not in document
            and k not in _SYSTEM_FIELDS
            and k not in self.counter_fields
        ]
        to_set["updatedAt"] = _now()
        update: Document = {"$set": to_set}
        if to_unset:
            update["$unset"] = {k: "" for k in to_unset}

        if not await self._db.update_one(self.collection, {"_id": oid}, update):
            raise NotFoundError(self.collection, oid)
        updated = await self._db.find_one(self.collection, {"_id": oid})
        if updated is None:
            raise NotFoundError(self.collection, oid)
        logger.info("Updated %s %s (%s)", self.collection, oid, ", ".join(sorted(to_set)))
        return self.serialize(updated)

    async def hard_delete(self, doc_id: Any) -> Document:
        """Permanently remove a document and return what was removed."""
        oid = to_object_id(doc_id)
        existing = await self._db.find_one(self.collection, {"_id": oid})
        if existing is None or not await self._db.delete_one(
            self.collection, {"_id": oid}
        ):
            raise NotFoundError(self.collection, oid)
        logger.info("Deleted %s %s", self.collection, oid)
        return self.serialize(existing)

    async def increment(self, doc_id: Any, field: str, delta: int = 1) -> None:
        """Atomically add ``delta`` to a counter field."""
        if field not in self.counter_fields:
            raise ValueError(f"{field!r} is not a counter of {self.collection}")
        oid = to_object_id(doc_id)
        if not await self._db.increment(self.collection, oid, field, delta):
            raise NotFoundError(self.collection, oid)


class ActivatableStore(EntityStore):
    """Entity with an ``isActive`` flag that supports soft deletion."""

    async def soft_delete(self, doc_id: Any) -> None:
        oid = to_object_id(doc_id)
        matched = await self._db.update_one(
            self.collection,
            {"_id": oid},
            {"$set": {"isActive": False, "updatedAt": _now()}},
        )
        if not matched:
            raise NotFoundError(self.collection, oid)
        logger.info("Soft deleted %s %s", self.collection, oid)


class UserStore(ActivatableStore):
    collection = "users"
    model = User
    unique_fields = ("email", "username")
    unique_messages = {
        "email": "Email already registered",
        "username": "Username already taken",
    }
    protected_fields = ("password",)

    def serialize(self, doc: Document) -> Document:
        public = {k: v for k, v in doc.items() if k != "password"}
        if "firstName" in public and "lastName" in public:
            public["fullName"] = full_name(public)
        return public


class PostStore(EntityStore):
    collection = "posts"
    model = Post
    unique_fields = ("slug",)
    counter_fields = ("views", "likes")
    protected_fields = ("views", "likes", "readTime")

    def prepare(self, candidate: Document, existing: Document | None) -> Document:
        """Derive slug, readTime, publishedAt and excerpt, in that order."""
        if existing is not None:
            before = existing.get("status", PostStatus.DRAFT.value)
            after = candidate.get("status", before)
            after = getattr(after, "value", after)
            if after not in STATUS_TRANSITIONS.get(before, {after}):
                raise ValidationError(
                    {"status": f"Cannot change status from {before} to {after}"}
                )

        title = candidate.get("title")
        if not candidate.get("slug") and isinstance(title, str):
            candidate["slug"] = slugify(title)

        content = candidate.get("content")
        if isinstance(content, str) and (
            existing is None or existing.get("content") != content
        ):
            candidate["readTime"] = compute_read_time(content)

        if candidate.get("status") == PostStatus.PUBLISHED and not candidate.get(
            "publishedAt"
        ):
            candidate["publishedAt"] = _now()

        if not candidate.get("excerpt") and isinstance(content, str) and content:
            candidate["excerpt"] = derive_excerpt(content)
        return candidate

    def serialize(self, doc: Document) -> Document:
        if isinstance(doc.get("likes"), list):
            doc = {**doc, "likesCount": len(doc["likes"])}
        if "readTime" in doc:
            doc = {**doc, "readTimeText": f"{doc['readTime']} min read"}
        return doc

    async def add_like(self, post_id: Any, user_id: Any) -> None:
        """Add a user to the like set in one atomic write."""
        oid = to_object_id(post_id)
        matched = await self._db.update_one(
            self.collection,
            {"_id": oid},
            {"$addToSet": {"likes": to_object_id(user_id)}},
        )
        if not matched:
            raise NotFoundError(self.collection, oid)

    async def remove_like(self, post_id: Any, user_id: Any) -> None:
        oid = to_object_id(post_id)
        matched = await self._db.update_one(
            self.collection,
            {"_id": oid},
            {"$pull": {"likes": to_object_id(user_id)}},
        )
        if not matched:
            raise NotFoundError(self.collection, oid)


class CommentStore(EntityStore):
    collection = "comments"
    model = Comment
    counter_fields = ("likes",)
    protected_fields = ("likes", "post", "author", "parentComment")


class CategoryStore(ActivatableStore):
    collection = "categories"
    model = Category
    unique_fields = ("name", "slug")
    counter_fields = ("postCount",)
    protected_fields = ("postCount",)

    def prepare(self, candidate: Document, existing: Document | None) -> Document:
        name = candidate.get("name")
        if not candidate.get("slug") and isinstance(name, str):
            candidate["slug"] = slugify(name)
        return candidate


class ContentStore:
    """The four entity accessors sharing one storage handle."""

    def __init__(self, db: DocumentStore) -> None:
        self.db = db
        self.users = UserStore(db)
        self.posts = PostStore(db)
        self.comments = CommentStore(db)
        self.categories = CategoryStore(db)

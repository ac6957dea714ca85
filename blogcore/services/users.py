"""User accounts: registration, lookup and paginated listing.

Passwords are stored as given (hashing belongs to the caller) and never
leave the content store.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any

from blogcore.errors import NotFoundError, ValidationError
from blogcore.models.ids import to_object_id
from blogcore.services.content_store import ContentStore
from blogcore.services.pagination import Page, offset
from blogcore.services.storage.base import Document

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("firstName", "lastName", "username", "email")


class UserService:
    def __init__(self, store: ContentStore) -> None:
        self._store = store

    async def create_user(self, data: Document) -> Document:
        user = await self._store.users.create(data)
        logger.info("User created: %s (ID: %s)", user["email"], user["_id"])
        return user

    async def get_user_by_id(self, user_id: Any) -> Document | None:
        return await self._store.users.find_by_id(user_id)

    async def get_user_by_email(self, email: str) -> Document | None:
        """Active user with this email; matching ignores case and padding."""
        return await self._store.users.find_one(
            {"email": email.strip().lower(), "isActive": True}
        )

    async def get_users(
        self,
        page: int = 1,
        limit: int = 10,
        role: str | None = None,
        is_active: bool = True,
        search: str | None = None,
    ) -> Page:
        """Users newest first, filtered by role, activity and a name/email substring."""
        if page < 1 or limit < 1:
            raise ValidationError({"page": "page and limit must be at least 1"})

        query: Document = {"isActive": is_active}
        if role:
            query["roles"] = role
        if search:
            pattern = re.escape(search)
            query["$or"] = [
                {field: {"$regex": pattern, "$options": "i"}} for field in SEARCH_FIELDS
            ]

        users, total = await asyncio.gather(
            self._store.users.find(
                query,
                sort=[("createdAt", -1), ("_id", -1)],
                skip=offset(page, limit),
                limit=limit,
                projection={"password": 0},
            ),
            self._store.users.count(query),
        )
        return Page.create(users, total, page, limit)

    async def update_user(self, user_id: Any, data: Document) -> Document:
        """Apply a partial update. ``password`` is ignored here."""
        user = await self._store.users.update(user_id, data)
        logger.info("User updated: %s (ID: %s)", user["email"], user["_id"])
        return user

    async def soft_delete_user(self, user_id: Any) -> None:
        await self._store.users.soft_delete(user_id)

    async def hard_delete_user(self, user_id: Any) -> Document:
        user = await self._store.users.hard_delete(user_id)
        logger.info("User permanently deleted: %s (ID: %s)", user["email"], user["_id"])
        return user

    async def update_last_login(self, user_id: Any) -> None:
        oid = to_object_id(user_id)
        matched = await self._store.db.update_one(
            "users", {"_id": oid}, {"$set": {"lastLogin": datetime.now(timezone.utc)}}
        )
        if not matched:
            raise NotFoundError("users", oid)

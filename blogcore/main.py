"""
blogcore

Query and aggregation engine for a blog content backend: content store,
joins, comment threads, search and analytics over a document store.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from blogcore.config import Settings, get_settings
from blogcore.services.analytics import AnalyticsAggregator
from blogcore.services.categories import CategoryService
from blogcore.services.comments import CommentService, CommentThreadBuilder
from blogcore.services.content_store import ContentStore
from blogcore.services.database import Database
from blogcore.services.joins import JoinResolver
from blogcore.services.posts import PostService
from blogcore.services.search import SearchEngine
from blogcore.services.storage.base import DocumentStore
from blogcore.services.users import UserService

logger = logging.getLogger(__name__)


@dataclass
class BlogCore:
    """Every service, wired to one shared store."""

    database: Database
    content: ContentStore
    joins: JoinResolver
    threads: CommentThreadBuilder
    comments: CommentService
    search: SearchEngine
    analytics: AnalyticsAggregator
    categories: CategoryService
    posts: PostService
    users: UserService

    @classmethod
    def build(cls, database: Database, store: DocumentStore, settings: Settings) -> "BlogCore":
        content = ContentStore(store)
        joins = JoinResolver(store)
        threads = CommentThreadBuilder(content, joins)
        categories = CategoryService(content)
        return cls(
            database=database,
            content=content,
            joins=joins,
            threads=threads,
            comments=CommentService(content, settings),
            search=SearchEngine(content, joins),
            analytics=AnalyticsAggregator(store, settings),
            categories=categories,
            posts=PostService(content, joins, categories, threads),
            users=UserService(content),
        )


@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncGenerator[BlogCore, None]:
    """Open storage, yield the wired services, close storage on exit."""
    settings = settings or get_settings()
    database = Database(settings)
    store = await database.open()
    logger.info("blogcore started (%s)", settings.environment)
    try:
        yield BlogCore.build(database, store, settings)
    finally:
        await database.close()
        logger.info("blogcore stopped")

"""Blog analytics: multi-stage aggregation pipelines over published posts.

The three global summaries can be cached for ``analytics_cache_ttl`` seconds (off by default).
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from blogcore.config import Settings, get_settings
from blogcore.models.analytics import (
    AuthorStats,
    CategoryStats,
    DashboardStats,
    PopularPost,
    RecentActivity,
)
from blogcore.models.ids import to_object_id
from blogcore.models.post import PostStatus
from blogcore.services.cache import TTLCache
from blogcore.services.storage.base import Document, DocumentStore

logger = logging.getLogger(__name__)

MS_PER_DAY = 1000 * 60 * 60 * 24
POPULAR_WINDOW_DAYS = 7
POPULAR_LIMIT = 10
LIKE_WEIGHT = 5
RECENT_ACTIVITY_LIMIT = 10

_PUBLISHED = {"$match": {"status": PostStatus.PUBLISHED.value}}
_LIKES_COUNT = {"$size": {"$ifNull": ["$likes", []]}}


def category_stats_pipeline() -> list[Document]:
    return [
        _PUBLISHED,
        # one row per (post, category): a post counts once in each of its categories
        {"$unwind": "$categories"},
        {
            "$group": {
                "_id": "$categories",
                "postCount": {"$sum": 1},
                "totalViews": {"$sum": "$views"},
                "avgViews": {"$avg": "$views"},
                "maxViews": {"$max": "$views"},
                "latestPost": {"$max": "$publishedAt"},
            }
        },
        {"$sort": {"postCount": -1, "_id": 1}},
    ]


def author_stats_pipeline(now: datetime) -> list[Document]:
    return [
        _PUBLISHED,
        {
            "$group": {
                "_id": "$author",
                "postCount": {"$sum": 1},
                "totalViews": {"$sum": "$views"},
                "totalLikes": {"$sum": _LIKES_COUNT},
                "avgViews": {"$avg": "$views"},
                "firstPost": {"$min": "$publishedAt"},
                "latestPost": {"$max": "$publishedAt"},
            }
        },
        {
            "$lookup": {
                "from": "users",
                "localField": "_id",
                "foreignField": "_id",
                "as": "authorInfo",
                "pipeline": [{"$project": {"username": 1, "firstName": 1, "lastName": 1}}],
            }
        },
        {"$unwind": "$authorInfo"},
        {
            "$project": {
                "username": "$authorInfo.username",
                "fullName": {
                    "$concat": ["$authorInfo.firstName", " ", "$authorInfo.lastName"]
                },
                "postCount": 1,
                "totalViews": 1,
                "totalLikes": 1,
                "avgViews": {"$round": ["$avgViews", 2]},
                "firstPost": 1,
                "latestPost": 1,
                "daysSinceFirstPost": {
                    "$divide": [{"$subtract": [now, "$firstPost"]}, MS_PER_DAY]
                },
                "engagement": {
                    "$cond": [
                        {"$eq": ["$totalViews", 0]},
                        None,
                        {"$divide": ["$totalLikes", "$totalViews"]},
                    ]
                },
            }
        },
        {"$sort": {"totalViews": -1, "_id": 1}},
    ]


def popular_posts_pipeline(now: datetime) -> list[Document]:
    since = now - timedelta(days=POPULAR_WINDOW_DAYS)
    return [
        {"$match": {"status": PostStatus.PUBLISHED.value, "publishedAt": {"$gte": since}}},
        {"$addFields": {"likesCount": _LIKES_COUNT}},
        {
            "$project": {
                "title": 1,
                "slug": 1,
                "author": 1,
                "views": 1,
                "likesCount": 1,
                "publishedAt": 1,
                "engagementScore": {
                    "$add": [
                        {"$multiply": ["$views", 1]},
                        {"$multiply": ["$likesCount", LIKE_WEIGHT]},
                    ]
                },
            }
        },
        {"$sort": {"engagementScore": -1, "publishedAt": -1}},
        {"$limit": POPULAR_LIMIT},
        {
            "$lookup": {
                "from": "users",
                "localField": "author",
                "foreignField": "_id",
                "as": "author",
                "pipeline": [{"$project": {"username": 1, "firstName": 1, "lastName": 1}}],
            }
        },
        {"$unwind": "$author"},
    ]


def recent_activity_pipeline(author_id: Any = None) -> list[Document]:
    match: Document = {}
    if author_id is not None:
        match["author"] = to_object_id(author_id)
    return [
        {"$match": match},
        {"$sort": {"updatedAt": -1}},
        {"$limit": RECENT_ACTIVITY_LIMIT},
        {
            "$lookup": {
                "from": "users",
                "localField": "author",
                "foreignField": "_id",
                "as": "author",
            }
        },
        {"$unwind": "$author"},
        {"$project": {"title": 1, "status": 1, "updatedAt": 1, "author.username": 1}},
    ]


class AnalyticsAggregator:
    """Runs the reporting pipelines against the posts collection."""

    def __init__(self, db: DocumentStore, settings: Settings | None = None) -> None:
        self._db = db
        settings = settings or get_settings()
        self._cache = TTLCache(ttl=settings.analytics_cache_ttl, max_size=8)

    def invalidate(self) -> None:
        """Forget cached summaries (e.g. after bulk imports)."""
        self._cache.invalidate()

    async def get_post_stats_by_category(self) -> list[CategoryStats]:
        """Post count and view totals per category, most posts first."""
        cached = self._cache.get("category_stats")
        if cached is not None:
            return cached
        rows = await self._db.aggregate("posts", category_stats_pipeline())
        result = [CategoryStats.model_validate(row) for row in rows]
        self._cache.set("category_stats", result)
        return result

    async def get_author_statistics(self) -> list[AuthorStats]:
        """Per-author totals joined with identity, most viewed first.

        Authors whose user record no longer exists are omitted.
        """
        cached = self._cache.get("author_stats")
        if cached is not None:
            return cached
        now = datetime.now(timezone.utc)
        rows = await self._db.aggregate("posts", author_stats_pipeline(now))
        result = [AuthorStats.model_validate(row) for row in rows]
        self._cache.set("author_stats", result)
        return result

    async def get_popular_posts_this_week(self) -> list[PopularPost]:
        """Top 10 posts published in the last 7 days by views + 5 x likes."""
        cached = self._cache.get("popular_posts")
        if cached is not None:
            return cached
        now = datetime.now(timezone.utc)
        rows = await self._db.aggregate("posts", popular_posts_pipeline(now))
        result = [PopularPost.model_validate(row) for row in rows]
        self._cache.set("popular_posts", result)
        return result

    async def get_recent_activity(self, author_id: Any = None) -> list[RecentActivity]:
        """The 10 most recently updated posts of any status."""
        rows = await self._db.aggregate("posts", recent_activity_pipeline(author_id))
        return [RecentActivity.model_validate(row) for row in rows]

    async def get_dashboard_stats(self, author_id: Any = None) -> DashboardStats:
        """All four reports, computed concurrently."""
        category_stats, author_stats, popular_posts, recent_activity = (
            await asyncio.gather(
                self.get_post_stats_by_category(),
                self.get_author_statistics(),
                self.get_popular_posts_this_week(),
                self.get_recent_activity(author_id),
            )
        )
        logger.info(
            "Dashboard: %d categories, %d authors, %d popular posts",
            len(category_stats),
            len(author_stats),
            len(popular_posts),
        )
        return DashboardStats(
            category_stats=category_stats,
            author_stats=author_stats,
            popular_posts=popular_posts,
            recent_activity=recent_activity,
        )

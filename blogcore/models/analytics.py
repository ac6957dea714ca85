"""Analytics result models, shaped from aggregation pipeline rows."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from blogcore.models.ids import PyObjectId

RESULT_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    arbitrary_types_allowed=True,
)


class CategoryStats(BaseModel):
    """Per-category totals over published posts."""

    model_config = RESULT_CONFIG

    category: str = Field(alias="_id")
    post_count: int
    total_views: int
    avg_views: float | None = None
    max_views: int | None = None
    latest_post: datetime | None = None


class AuthorStats(BaseModel):
    """Per-author totals over published posts.

    ``engagement`` is likes per view, and None when the author has no views.
    """

    model_config = RESULT_CONFIG

    author_id: PyObjectId = Field(alias="_id")
    username: str
    full_name: str
    post_count: int
    total_views: int
    total_likes: int
    avg_views: float | None = None
    first_post: datetime | None = None
    latest_post: datetime | None = None
    days_since_first_post: float | None = None
    engagement: float | None = None


class PostAuthor(BaseModel):
    model_config = RESULT_CONFIG

    id: PyObjectId = Field(alias="_id")
    username: str
    first_name: str
    last_name: str


class PopularPost(BaseModel):
    """A recently published post ranked by views + 5 x likes."""

    model_config = RESULT_CONFIG

    id: PyObjectId = Field(alias="_id")
    title: str
    slug: str
    author: PostAuthor
    views: int
    likes_count: int
    published_at: datetime
    engagement_score: int


class ActivityAuthor(BaseModel):
    model_config = RESULT_CONFIG

    username: str


class RecentActivity(BaseModel):
    model_config = RESULT_CONFIG

    id: PyObjectId = Field(alias="_id")
    title: str
    status: str
    updated_at: datetime
    author: ActivityAuthor


class DashboardStats(BaseModel):
    model_config = RESULT_CONFIG

    category_stats: list[CategoryStats]
    author_stats: list[AuthorStats]
    popular_posts: list[PopularPost]
    recent_activity: list[RecentActivity]

"""Post data models."""

from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field, StringConstraints, field_validator

from blogcore.models.ids import PyObjectId
from blogcore.models.user import DOCUMENT_CONFIG, IMAGE_URL_PATTERN


class PostStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


# Allowed status moves; archived is terminal.
STATUS_TRANSITIONS: dict[str, set[str]] = {
    PostStatus.DRAFT.value: {"draft", "published", "archived"},
    PostStatus.PUBLISHED.value: {"published", "archived"},
    PostStatus.ARCHIVED.value: {"archived"},
}


class SeoData(BaseModel):
    model_config = DOCUMENT_CONFIG

    meta_title: str | None = Field(None, max_length=60)
    meta_description: str | None = Field(None, max_length=160)
    keywords: list[str] = Field(default_factory=list, max_length=10)
    canonical_url: str | None = Field(None, pattern=r"^https?://.+")


class Post(BaseModel):
    """A stored post document.

    ``slug``, ``readTime``, ``excerpt`` and ``publishedAt`` are derived by the
    content store before validation runs.
    """

    model_config = DOCUMENT_CONFIG

    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
    slug: str = Field(..., pattern=r"^[a-z0-9-]+$")
    content: str = Field(..., min_length=1)
    excerpt: Annotated[str, StringConstraints(strip_whitespace=True, max_length=300)] | None = None
    author: PyObjectId
    categories: list[str] = Field(..., min_length=1, max_length=5)
    tags: list[str] = Field(default_factory=list, max_length=10)
    featured_image: str | None = Field(None, pattern=IMAGE_URL_PATTERN)
    status: PostStatus = PostStatus.DRAFT
    published_at: datetime | None = None
    read_time: int = Field(1, ge=1)
    views: int = Field(0, ge=0)
    likes: list[PyObjectId] = Field(default_factory=list)
    seo_data: SeoData = Field(default_factory=SeoData)

    @field_validator("slug", mode="before")
    @classmethod
    def _lowercase_slug(cls, v: object) -> object:
        if isinstance(v, str):
            return v.lower()
        return v

    @field_validator("likes")
    @classmethod
    def _unique_likes(cls, v: list) -> list:
        return list(dict.fromkeys(v))

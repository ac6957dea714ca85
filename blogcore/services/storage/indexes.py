"""Index declarations for the four collections."""

from dataclasses import dataclass, field
from typing import Any

from pymongo import ASCENDING, DESCENDING, TEXT


@dataclass(frozen=True)
class IndexSpec:
    keys: tuple[tuple[str, Any], ...]
    unique: bool = False
    weights: dict[str, int] = field(default_factory=dict)
    name: str | None = None


POST_TEXT_WEIGHTS = {"title": 10, "excerpt": 5, "content": 1}

INDEXES: dict[str, list[IndexSpec]] = {
    "users": [
        IndexSpec((("email", ASCENDING),), unique=True),
        IndexSpec((("username", ASCENDING),), unique=True),
        IndexSpec((("email", ASCENDING), ("isActive", ASCENDING))),
        IndexSpec((("username", ASCENDING), ("isActive", ASCENDING))),
        IndexSpec((("createdAt", DESCENDING),)),
        IndexSpec((("lastLogin", ASCENDING),)),
    ],
    "posts": [
        IndexSpec((("slug", ASCENDING),), unique=True),
        IndexSpec((("status", ASCENDING), ("publishedAt", DESCENDING))),
        IndexSpec((("author", ASCENDING), ("status", ASCENDING))),
        IndexSpec(
            (
                ("categories", ASCENDING),
                ("status", ASCENDING),
                ("publishedAt", DESCENDING),
            )
        ),
        IndexSpec((("tags", ASCENDING), ("status", ASCENDING))),
        IndexSpec((("views", DESCENDING),)),
        IndexSpec(
            tuple((name, TEXT) for name in POST_TEXT_WEIGHTS),
            weights=POST_TEXT_WEIGHTS,
            name="post_text_search",
        ),
    ],
    "comments": [
        IndexSpec(
            (("post", ASCENDING), ("isApproved", ASCENDING), ("createdAt", DESCENDING))
        ),
        IndexSpec((("author", ASCENDING), ("createdAt", DESCENDING))),
        IndexSpec((("parentComment", ASCENDING), ("isApproved", ASCENDING))),
    ],
    "categories": [
        IndexSpec((("name", ASCENDING),), unique=True),
        IndexSpec((("slug", ASCENDING),), unique=True),
        IndexSpec((("parentCategory", ASCENDING),)),
        IndexSpec((("isActive", ASCENDING),)),
    ],
}


def unique_fields(collection: str) -> list[str]:
    """Single-field unique keys declared for ``collection``."""
    return [
        spec.keys[0][0]
        for spec in INDEXES.get(collection, [])
        if spec.unique and len(spec.keys) == 1
    ]


def text_weights(collection: str) -> dict[str, int]:
    """Field weights of the collection's text index, empty when it has none."""
    for spec in INDEXES.get(collection, []):
        if spec.weights:
            return spec.weights
    return {}

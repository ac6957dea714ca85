"""Derived post fields: slug, read time and excerpt.

Pure functions; the content store applies them in a fixed order on every
post write.
"""

import math
import re

WORDS_PER_MINUTE = 200
EXCERPT_SOURCE_CHARS = 150

_NON_SLUG_CHARS_RE = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE_RE = re.compile(r"\s+")
_HYPHENS_RE = re.compile(r"-+")
_HTML_TAG_RE = re.compile(r"<[^>]+>", re.IGNORECASE)


def slugify(text: str) -> str:
    """Turn a title into a URL-safe slug.

    >>> slugify("Learn MongoDB in 2025!!")
    'learn-mongodb-in-2025'
    """
    slug = _NON_SLUG_CHARS_RE.sub("", text.lower())
    slug = _WHITESPACE_RE.sub("-", slug)
    slug = _HYPHENS_RE.sub("-", slug)
    return slug.strip("- \t\n\r\f\v")


def count_words(content: str) -> int:
    return len(content.split())


def compute_read_time(content: str) -> int:
    """Minutes to read ``content`` at 200 words per minute, never below 1."""
    return max(1, math.ceil(count_words(content) / WORDS_PER_MINUTE))


def derive_excerpt(content: str) -> str:
    """Strip HTML tags, keep the first 150 characters and append an ellipsis."""
    text = _HTML_TAG_RE.sub("", content)
    return text[:EXCERPT_SOURCE_CHARS].strip() + "..."

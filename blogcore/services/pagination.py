"""Pagination shared by every list-producing operation."""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass(frozen=True)
class PageInfo:
    current_page: int
    total_pages: int


def offset(page: int, limit: int) -> int:
    """Number of records to skip for a 1-based ``page``."""
    return (page - 1) * limit


def paginate(total_count: int, page: int, limit: int) -> PageInfo:
    """Page metadata for ``total_count`` records.

    ``page`` and ``limit`` must both be >= 1; they are not clamped here.
    """
    return PageInfo(current_page=page, total_pages=-(-total_count // limit))


class Page(BaseModel):
    """One page of a list result."""

    items: list[Any]
    total_count: int
    current_page: int
    total_pages: int

    @classmethod
    def create(cls, items: list[Any], total_count: int, page: int, limit: int) -> "Page":
        info = paginate(total_count, page, limit)
        return cls(
            items=items,
            total_count=total_count,
            current_page=info.current_page,
            total_pages=info.total_pages,
        )

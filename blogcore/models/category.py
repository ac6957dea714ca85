"""Category data model."""

from typing import Annotated

from pydantic import BaseModel, Field, StringConstraints

from blogcore.models.ids import PyObjectId
from blogcore.models.user import DOCUMENT_CONFIG


class Category(BaseModel):
    """Taxonomy node; ``postCount`` is a denormalized, eventually-consistent counter."""

    model_config = DOCUMENT_CONFIG

    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
    slug: str = Field(..., pattern=r"^[a-z0-9-]+$")
    description: Annotated[str, StringConstraints(strip_whitespace=True, max_length=200)] | None = None
    color: str = Field(..., pattern=r"^#[0-9A-Fa-f]{6}$")
    post_count: int = Field(0, ge=0)
    parent_category: PyObjectId | None = None
    is_active: bool = True

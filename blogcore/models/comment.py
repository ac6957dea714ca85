"""Comment data model."""

from typing import Annotated

from pydantic import BaseModel, Field, StringConstraints

from blogcore.models.ids import PyObjectId
from blogcore.models.user import DOCUMENT_CONFIG


class Comment(BaseModel):
    """A comment on a post, optionally replying to another comment."""

    model_config = DOCUMENT_CONFIG

    post: PyObjectId
    author: PyObjectId
    content: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=1000)]
    parent_comment: PyObjectId | None = None
    is_approved: bool = False
    likes: int = Field(0, ge=0)

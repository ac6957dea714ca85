"""ObjectId helpers shared by the entity models and services."""

from typing import Annotated, Any

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BeforeValidator

from blogcore.errors import InvalidReferenceError


def to_object_id(value: Any) -> ObjectId:
    """Parse ``value`` into an ObjectId or raise InvalidReferenceError."""
    if isinstance(value, ObjectId):
        return value
    if value is None:
        # ObjectId(None) would mint a fresh id
        raise InvalidReferenceError(value)
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as e:
        raise InvalidReferenceError(value) from e


def _coerce_object_id(value: Any) -> Any:
    if value is None or isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValueError(f"{value!r} is not a valid ObjectId")


PyObjectId = Annotated[ObjectId, BeforeValidator(_coerce_object_id)]

"""Error taxonomy shared by the content store, search and analytics services."""

from typing import Any


class BlogCoreError(Exception):
    """Base class for every error raised by blogcore services."""


class ValidationError(BlogCoreError):
    """A candidate document failed one or more field constraints.

    ``errors`` maps a dotted field path to its message. Nothing is written
    when this is raised.
    """

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = errors
        detail = "; ".join(f"{field}: {msg}" for field, msg in errors.items())
        super().__init__(f"Validation failed: {detail}")


class NotFoundError(BlogCoreError):
    """An operation targeted an id that does not resolve to a live record."""

    def __init__(self, collection: str, doc_id: Any) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection} with id {doc_id} not found")


class ConflictError(BlogCoreError):
    """A uniqueness constraint would be violated."""

    def __init__(self, field: str, value: Any, message: str | None = None) -> None:
        self.field = field
        self.value = value
        super().__init__(message or f"{field} {value!r} already exists")


class InvalidReferenceError(BlogCoreError):
    """A supplied id is not a well-formed storage identifier."""

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(f"Invalid id: {value!r}")

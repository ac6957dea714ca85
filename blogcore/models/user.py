"""User data models."""

from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

DOCUMENT_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    arbitrary_types_allowed=True,
    use_enum_values=True,
    validate_default=True,
    extra="ignore",
)

IMAGE_URL_PATTERN = r"(?i)^https?://.+\.(jpg|jpeg|png|gif|webp)$"

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    MODERATOR = "moderator"


class SocialLinks(BaseModel):
    model_config = DOCUMENT_CONFIG

    twitter: str | None = Field(None, pattern=r"^@?\w+$")
    linkedin: str | None = None
    github: str | None = Field(None, pattern=r"^[\w-]+$")


class UserProfile(BaseModel):
    """Embedded public profile."""

    model_config = DOCUMENT_CONFIG

    bio: Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)] | None = None
    avatar: str | None = Field(None, pattern=IMAGE_URL_PATTERN)
    location: str | None = Field(None, max_length=100)
    website: str | None = Field(None, pattern=r"^https?://.+\..+")
    social_links: SocialLinks = Field(default_factory=SocialLinks)


class User(BaseModel):
    """A stored user document, validated before every write.

    ``password`` is write-only: the content store never hands it back.
    """

    model_config = DOCUMENT_CONFIG

    email: str = Field(..., pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9_]+$")
    password: str = Field(..., min_length=8)
    first_name: Name
    last_name: Name
    age: int | None = Field(None, ge=13, le=120)
    roles: list[UserRole] = Field(default_factory=lambda: [UserRole.USER], min_length=1)
    profile: UserProfile = Field(default_factory=UserProfile)
    is_active: bool = True
    last_login: datetime | None = None

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("roles")
    @classmethod
    def _dedupe_roles(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


def full_name(doc: dict) -> str:
    return f"{doc.get('firstName', '')} {doc.get('lastName', '')}"

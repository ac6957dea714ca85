"""Application configuration via environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App
    environment: str = "development"

    # Storage backend: "mongo" for a live MongoDB, "memory" for an in-process store
    storage_backend: str = "mongo"

    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "blogcore"
    mongodb_max_pool_size: int = 10
    mongodb_server_selection_timeout_ms: int = 5000
    mongodb_socket_timeout_ms: int = 45_000

    # Comments from authors with more approved comments than this are auto-approved
    trusted_commenter_threshold: int = 5

    # Analytics summaries cache (seconds, 0 disables); writes do not invalidate it
    analytics_cache_ttl: float = 0

    model_config = {"env_file": ".env", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()

"""Configuration management using Pydantic Settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .feed.models import FeedFilter


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote feed endpoint
    feed_endpoint: str = Field(
        default="http://localhost:3000/api/feed", alias="FEED_ENDPOINT"
    )
    feed_auth_token: Optional[str] = Field(default=None, alias="FEED_AUTH_TOKEN")
    feed_default_filter: str = Field(default="public", alias="FEED_DEFAULT_FILTER")

    # Paging and timeouts
    feed_page_size: int = Field(default=20, alias="FEED_PAGE_SIZE")
    feed_request_timeout_seconds: float = Field(
        default=15, alias="FEED_REQUEST_TIMEOUT_SECONDS"
    )
    feed_fetch_timeout_seconds: float = Field(
        default=30, alias="FEED_FETCH_TIMEOUT_SECONDS"
    )
    feed_response_cache_seconds: float = Field(
        default=5, alias="FEED_RESPONSE_CACHE_SECONDS"
    )

    # Rate limiting (pause every N pages)
    rate_limit_pages: int = Field(default=6, alias="RATE_LIMIT_PAGES")
    rate_limit_cooldown_ms: int = Field(default=3000, alias="RATE_LIMIT_COOLDOWN_MS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def default_filter(self) -> FeedFilter:
        """Parsed default filter, falling back to public on bad values."""
        try:
            return FeedFilter.parse(self.feed_default_filter)
        except ValueError:
            return FeedFilter.PUBLIC


# Global settings instance
settings = Settings()

"""Feed pagination and caching for the gallery client."""

from .cache_store import CacheStore
from .content_fetcher import (
    ContentFetcher,
    HTTPContentFetcher,
    extract_images,
    parse_page,
    resolve_has_more,
)
from .feed_manager import FeedManager
from .filter_state import FilterState
from .models import (
    AuthRequiredError,
    CacheEntry,
    CacheKey,
    FeedError,
    FeedFilter,
    FeedPage,
    FeedState,
    FetchError,
    ImageRecord,
    LoadOutcome,
    RenderAction,
    RenderInstruction,
    UserInfo,
    normalize_tags,
)
from .rate_limiter import RateLimiter
from .renderers import FeedRenderer, LoggingRenderer

__all__ = [
    "AuthRequiredError",
    "CacheEntry",
    "CacheKey",
    "CacheStore",
    "ContentFetcher",
    "FeedError",
    "FeedFilter",
    "FeedManager",
    "FeedPage",
    "FeedRenderer",
    "FeedState",
    "FetchError",
    "FilterState",
    "HTTPContentFetcher",
    "ImageRecord",
    "LoadOutcome",
    "LoggingRenderer",
    "RateLimiter",
    "RenderAction",
    "RenderInstruction",
    "UserInfo",
    "extract_images",
    "normalize_tags",
    "parse_page",
    "resolve_has_more",
]

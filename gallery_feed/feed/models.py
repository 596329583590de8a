"""Core data types for the gallery feed: filters, cache keys, records and render instructions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Union


class FeedFilter(str, Enum):
    """Visibility scope of a feed view."""

    PUBLIC = "public"
    PRIVATE = "private"

    @classmethod
    def parse(cls, value: Union["FeedFilter", str]) -> "FeedFilter":
        """Parse a filter value, accepting the legacy "site"/"user" names."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        legacy = {"site": cls.PUBLIC, "user": cls.PRIVATE}
        if normalized in legacy:
            return legacy[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Invalid feed filter: {value!r}") from None

    @property
    def requires_auth(self) -> bool:
        return self is FeedFilter.PRIVATE


def normalize_tags(tags: Union[None, str, Iterable[str]]) -> tuple[str, ...]:
    """Return the canonical form of a tag set: lowercased, stripped, unique and sorted."""
    if not tags:
        return ()
    if isinstance(tags, str):
        tags = tags.split(",")
    cleaned = {str(tag).strip().lower() for tag in tags}
    cleaned.discard("")
    return tuple(sorted(cleaned))


@dataclass(frozen=True)
class CacheKey:
    """Identifies one feed view: a filter plus a set of tags.

    Always build keys through `CacheKey.of` so the tag tuple is canonical;
    equality then ignores the order the tags were supplied in.
    """

    filter: FeedFilter
    tags: tuple[str, ...] = ()

    @classmethod
    def of(
        cls,
        feed_filter: Union[FeedFilter, str],
        tags: Union[None, str, Iterable[str]] = None,
    ) -> "CacheKey":
        return cls(filter=FeedFilter.parse(feed_filter), tags=normalize_tags(tags))

    @property
    def label(self) -> str:
        """Readable form used in logs and stats."""
        if self.tags:
            return f"{self.filter.value}-tags-{','.join(self.tags)}"
        return self.filter.value


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _tag_names(raw_tags: Any) -> frozenset[str]:
    names = []
    for tag in raw_tags or []:
        if isinstance(tag, dict):
            tag = tag.get("name")
        if tag:
            names.append(str(tag))
    return frozenset(normalize_tags(names))


@dataclass
class ImageRecord:
    """A single gallery image as shown in the feed."""

    id: str
    url: str = ""
    prompt_text: str = ""
    is_public: bool = False
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None
    tags: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_dict(cls, data: dict) -> "ImageRecord":
        """Build a record from one item of a feed response.

        Raises:
            ValueError: if the item has no id
        """
        image_id = data.get("id")
        if image_id is None or image_id == "":
            raise ValueError("Image record is missing an id")

        owner_id = data.get("userId", data.get("ownerId"))
        if owner_id is None and isinstance(data.get("user"), dict):
            owner_id = data["user"].get("id")

        return cls(
            id=str(image_id),
            url=data.get("imageUrl") or data.get("url") or "",
            prompt_text=data.get("prompt") or data.get("promptText") or "",
            is_public=data.get("isPublic") is True,
            owner_id=str(owner_id) if owner_id is not None else None,
            created_at=_parse_timestamp(data.get("createdAt")),
            tags=_tag_names(data.get("tags")),
        )

    def to_dict(self) -> dict:
        """Convert to the wire form for JSON serialization."""
        return {
            "id": self.id,
            "imageUrl": self.url,
            "prompt": self.prompt_text,
            "isPublic": self.is_public,
            "userId": self.owner_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "tags": sorted(self.tags),
        }


@dataclass
class CacheEntry:
    """Accumulated pages for one cache key."""

    images: list[ImageRecord] = field(default_factory=list)
    has_more: bool = True
    next_page_cursor: int = 0
    is_loaded: bool = False
    scroll_position: float = 0.0

    def ids(self) -> set[str]:
        return {image.id for image in self.images}

    def to_dict(self) -> dict:
        return {
            "image_count": len(self.images),
            "next_page_cursor": self.next_page_cursor,
            "has_more": self.has_more,
            "is_loaded": self.is_loaded,
            "scroll_position": self.scroll_position,
        }


@dataclass
class FeedPage:
    """One normalized page returned by a content fetcher."""

    images: list[ImageRecord]
    has_more: bool
    page: int
    malformed: bool = False


@dataclass
class UserInfo:
    """Caller identity decoded from an auth token."""

    id: Optional[str]
    email: Optional[str] = None
    username: Optional[str] = None


class FeedState(Enum):
    IDLE = "idle"
    LOADING_INITIAL = "loading_initial"
    READY = "ready"
    LOADING_MORE = "loading_more"
    ERROR = "error"


class LoadOutcome(Enum):
    """Result of a feed load operation."""

    LOADED = "loaded"
    NO_RESULTS = "no_results"
    AUTH_REQUIRED = "auth_required"
    ERROR = "error"
    STALE = "stale"
    SKIPPED = "skipped"


class RenderAction(Enum):
    ADD_IMAGE = "add_image"
    PREPEND_IMAGE = "prepend_image"
    CLEAR_FEED = "clear_feed"
    SHOW_NO_RESULTS = "show_no_results"
    SHOW_LOGIN_REQUIRED = "show_login_required"
    SHOW_ERROR = "show_error"
    SET_LOADING = "set_loading"


@dataclass(frozen=True)
class RenderInstruction:
    """An instruction for the external renderer. The feed never touches presentation."""

    action: RenderAction
    image: Optional[ImageRecord] = None
    message: Optional[str] = None
    loading: Optional[bool] = None
    key: Optional[CacheKey] = None


class FeedError(Exception):
    """Base class for feed errors."""


class AuthRequiredError(FeedError):
    """The requested filter needs an authenticated caller."""


class FetchError(FeedError):
    """A page request failed, timed out or returned a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

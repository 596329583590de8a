"""Active filter, tag set and caller authentication for a feed view."""

import base64
import binascii
import json
from typing import Iterable, Optional, Union

from ..utils import get_logger
from .models import CacheKey, FeedFilter, UserInfo, normalize_tags

logger = get_logger(__name__)


class FilterState:
    """Tracks which feed view is selected and who is asking for it."""

    def __init__(
        self,
        initial_filter: Union[FeedFilter, str] = FeedFilter.PUBLIC,
        tags: Union[None, str, Iterable[str]] = None,
        auth_token: Optional[str] = None,
    ):
        self._auth_token = auth_token or None
        self._active_tags = normalize_tags(tags)

        feed_filter = FeedFilter.parse(initial_filter)
        if not self.can_view(feed_filter):
            logger.info("Private feed requested without authentication, using public feed")
            feed_filter = FeedFilter.PUBLIC
        self._active_filter = feed_filter

    @property
    def active_filter(self) -> FeedFilter:
        return self._active_filter

    @property
    def active_tags(self) -> tuple[str, ...]:
        return self._active_tags

    @property
    def is_authenticated(self) -> bool:
        return self._auth_token is not None

    def cache_key(self) -> CacheKey:
        return CacheKey.of(self._active_filter, self._active_tags)

    def can_view(self, feed_filter: FeedFilter) -> bool:
        return not feed_filter.requires_auth or self.is_authenticated

    def available_filters(self) -> list[FeedFilter]:
        return [f for f in FeedFilter if self.can_view(f)]

    def set_filter(self, value: Union[FeedFilter, str]) -> bool:
        """Select a filter. Returns True if it changed."""
        feed_filter = FeedFilter.parse(value)
        if feed_filter is self._active_filter:
            return False
        self._active_filter = feed_filter
        return True

    def set_tags(self, tags: Union[None, str, Iterable[str]]) -> bool:
        """Replace the tag set. Returns True if it changed."""
        canonical = normalize_tags(tags)
        if canonical == self._active_tags:
            return False
        self._active_tags = canonical
        return True

    # ========== Authentication ==========

    def set_auth_token(self, token: Optional[str]) -> None:
        self._auth_token = token or None

    def clear_auth(self) -> None:
        self._auth_token = None

    def auth_headers(self) -> dict[str, str]:
        if not self._auth_token:
            return {}
        return {"Authorization": f"Bearer {self._auth_token}"}

    def current_user(self) -> Optional[UserInfo]:
        """Decode the caller from the JWT payload segment. The signature is not checked."""
        if not self._auth_token:
            return None
        parts = self._auth_token.split(".")
        if len(parts) < 2:
            return None
        segment = parts[1] + "=" * (-len(parts[1]) % 4)
        try:
            payload = json.loads(base64.urlsafe_b64decode(segment))
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Could not decode auth token: {e}")
            return None
        if not isinstance(payload, dict):
            return None

        user_id = payload.get("userId", payload.get("id"))
        return UserInfo(
            id=str(user_id) if user_id is not None else None,
            email=payload.get("email"),
            username=payload.get("username"),
        )

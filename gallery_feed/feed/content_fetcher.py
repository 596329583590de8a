"""Feed page fetching and response normalization."""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

import requests

from ..utils import get_logger
from .models import (
    AuthRequiredError,
    FeedFilter,
    FeedPage,
    FetchError,
    ImageRecord,
    normalize_tags,
)

if TYPE_CHECKING:
    from .filter_state import FilterState

logger = get_logger(__name__)

USER_AGENT = "gallery-feed/0.1 (+python-requests)"


def resolve_has_more(payload: Any, first_page: bool) -> bool:
    """
    Resolve the "more pages available" flag of a feed response.

    The endpoint reports it in one of three places. They are checked in a
    fixed order and the first boolean found wins:

      1. top-level ``hasMore``
      2. ``data.hasMore``
      3. ``pagination.hasMore``

    If none is present the first page of a view is assumed to have more
    (optimistic) and any later page is assumed to be the last (conservative),
    so an ambiguous response can never keep infinite scroll looping.

    Args:
        payload: Decoded JSON body
        first_page: True when resolving page 0 of a view

    Returns:
        The resolved flag
    """
    if isinstance(payload, Mapping):
        candidates = [payload.get("hasMore")]
        for container in ("data", "pagination"):
            nested = payload.get(container)
            if isinstance(nested, Mapping):
                candidates.append(nested.get("hasMore"))
        for value in candidates:
            if isinstance(value, bool):
                return value
    return first_page


def extract_images(payload: Any) -> tuple[list[dict], bool]:
    """
    Find the raw image list in a feed response.

    Checked in order: ``images``, ``data.items``, ``data.images``, ``items``.

    Returns:
        Tuple of (raw image dicts, malformed). ``malformed`` is True when the
        payload has no usable list at all.
    """
    if not isinstance(payload, Mapping):
        return [], True

    data = payload.get("data")
    candidates = [payload.get("images")]
    if isinstance(data, Mapping):
        candidates.extend([data.get("items"), data.get("images")])
    candidates.append(payload.get("items"))

    for candidate in candidates:
        if isinstance(candidate, list):
            return [item for item in candidate if isinstance(item, Mapping)], False
    return [], True


def parse_page(payload: Any, page: int) -> FeedPage:
    """Normalize a decoded response body into a FeedPage."""
    raw_items, malformed = extract_images(payload)

    images = []
    for raw in raw_items:
        try:
            images.append(ImageRecord.from_dict(dict(raw)))
        except ValueError as e:
            logger.warning(f"Skipping unusable image record on page {page}: {e}")

    if malformed:
        logger.warning(f"Feed response for page {page} has no image list")
        has_more = False
    else:
        has_more = resolve_has_more(payload, first_page=page == 0)

    return FeedPage(images=images, has_more=has_more, page=page, malformed=malformed)


class ContentFetcher(ABC):
    """Abstract source of feed pages.

    Implementations raise FetchError on failure (AuthRequiredError when the
    endpoint refuses the caller) and never retry; the feed manager decides
    what to do with failures.
    """

    @abstractmethod
    async def fetch_page(
        self,
        feed_filter: FeedFilter,
        page: int,
        tags: Iterable[str] = (),
    ) -> FeedPage:
        """Fetch one page of a feed view.

        Args:
            feed_filter: Visibility filter
            page: Zero-based page number
            tags: Tag set restricting the view

        Returns:
            Normalized FeedPage
        """
        pass

    def clear_cache(self) -> None:
        """Drop any response memo the fetcher keeps."""


class HTTPContentFetcher(ContentFetcher):
    """Fetches feed pages from a JSON endpoint with requests."""

    def __init__(
        self,
        endpoint: str,
        filter_state: Optional["FilterState"] = None,
        page_size: int = 20,
        request_timeout: float = 15,
        response_cache_seconds: float = 5,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint
        self.filter_state = filter_state
        self.page_size = page_size
        self.request_timeout = request_timeout
        self.response_cache_seconds = response_cache_seconds
        self._responses: dict[tuple, tuple[float, FeedPage]] = {}
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        })

    def build_params(
        self, feed_filter: FeedFilter, page: int, tags: Iterable[str] = ()
    ) -> dict[str, Union[str, int]]:
        """Query parameters for one page request."""
        if page < 0:
            raise ValueError(f"Page must be >= 0, got {page}")
        params: dict[str, Union[str, int]] = {
            "filter": FeedFilter.parse(feed_filter).value,
            "page": page,
            "limit": self.page_size,
        }
        canonical = normalize_tags(tags)
        if canonical:
            params["tags"] = ",".join(canonical)
        return params

    def _auth_headers(self) -> dict[str, str]:
        if self.filter_state is None:
            return {}
        return self.filter_state.auth_headers()

    def _get_cached(self, request_key: tuple) -> Optional[FeedPage]:
        cached = self._responses.get(request_key)
        if not cached:
            return None
        stored_at, page = cached
        if time.monotonic() - stored_at >= self.response_cache_seconds:
            del self._responses[request_key]
            return None
        return page

    def _set_cached(self, request_key: tuple, page: FeedPage) -> None:
        now = time.monotonic()
        self._responses[request_key] = (now, page)
        expired = [
            key for key, (stored_at, _) in self._responses.items()
            if now - stored_at >= self.response_cache_seconds
        ]
        for key in expired:
            del self._responses[key]

    def _http_get(self, params: dict) -> requests.Response:
        return self._session.get(
            self.endpoint,
            params=params,
            headers=self._auth_headers(),
            timeout=self.request_timeout,
        )

    def _fetch_sync(self, params: dict) -> FeedPage:
        page = int(params["page"])
        try:
            response = self._http_get(params)
        except requests.RequestException as e:
            logger.error(f"HTTP error fetching feed page {page}: {e}")
            raise FetchError(f"Request failed: {e}") from e

        if response.status_code in (401, 403):
            logger.warning(f"Feed endpoint refused credentials ({response.status_code})")
            raise AuthRequiredError(f"Feed endpoint returned HTTP {response.status_code}")

        if not response.ok:
            logger.error(f"Feed endpoint returned {response.status_code} for page {page}")
            raise FetchError(
                f"Feed endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            logger.warning(f"Feed page {page} is not valid JSON: {e}")
            payload = None

        return parse_page(payload, page)

    async def fetch_page(
        self,
        feed_filter: FeedFilter,
        page: int,
        tags: Iterable[str] = (),
    ) -> FeedPage:
        params = self.build_params(feed_filter, page, tags)
        auth = self._auth_headers().get("Authorization", "")
        request_key = (params["filter"], page, params.get("tags", ""), auth)

        if self.response_cache_seconds > 0:
            cached = self._get_cached(request_key)
            if cached is not None:
                logger.debug(f"Using cached response for page {page} ({params['filter']})")
                return cached

        logger.debug(f"Fetching feed page: {params}")
        result = await asyncio.to_thread(self._fetch_sync, params)
        logger.debug(f"Fetched {len(result.images)} images (hasMore={result.has_more})")

        if self.response_cache_seconds > 0:
            self._set_cached(request_key, result)
        return result

    def clear_cache(self) -> None:
        self._responses.clear()

"""Shared fixtures and fakes for the feed tests."""

import asyncio
from typing import Iterable, Optional

import pytest

from gallery_feed.feed import (
    CacheStore,
    ContentFetcher,
    FeedFilter,
    FeedManager,
    FeedPage,
    FeedRenderer,
    FilterState,
    ImageRecord,
    RateLimiter,
    RenderAction,
    RenderInstruction,
    normalize_tags,
)


def make_image(image_id: str, is_public: bool = True, **kwargs) -> ImageRecord:
    return ImageRecord(id=image_id, url=f"https://img.test/{image_id}.png", is_public=is_public, **kwargs)


def make_page(prefix: str, page: int, count: int = 4, has_more: bool = True) -> FeedPage:
    images = [make_image(f"{prefix}-p{page}-{i}") for i in range(count)]
    return FeedPage(images=images, has_more=has_more, page=page)


class RecordingRenderer(FeedRenderer):
    """Collects every render instruction."""

    def __init__(self):
        self.instructions: list[RenderInstruction] = []

    def render(self, instruction: RenderInstruction) -> None:
        self.instructions.append(instruction)

    def actions(self) -> list[RenderAction]:
        return [i.action for i in self.instructions]

    def image_ids(self, action: RenderAction = RenderAction.ADD_IMAGE) -> list[str]:
        return [i.image.id for i in self.instructions if i.action is action]

    def clear(self) -> None:
        self.instructions.clear()


class FakeFetcher(ContentFetcher):
    """Serves scripted pages and records every call.

    Unscripted requests get a full page of public images with hasMore=True.
    """

    def __init__(self, page_size: int = 4):
        self.page_size = page_size
        self.calls: list[tuple[FeedFilter, int, tuple[str, ...]]] = []
        self.scripted: dict[tuple, object] = {}
        self.cleared = 0

    def script(self, feed_filter, page: int, result, tags: Iterable[str] = ()) -> None:
        self.scripted[(FeedFilter.parse(feed_filter), page, normalize_tags(tags))] = result

    async def fetch_page(self, feed_filter, page, tags=()):
        request = (FeedFilter.parse(feed_filter), page, normalize_tags(tags))
        self.calls.append(request)
        await asyncio.sleep(0)
        result = self.scripted.get(request)
        if isinstance(result, Exception):
            raise result
        if result is None:
            prefix = "-".join([request[0].value, *request[2]])
            return make_page(prefix, page, self.page_size)
        return result

    def clear_cache(self) -> None:
        self.cleared += 1


class ControlledFetcher(ContentFetcher):
    """Fetches that stay pending until the test resolves them."""

    def __init__(self):
        self.pending: dict[tuple, asyncio.Future] = {}
        self.calls: list[tuple] = []

    async def fetch_page(self, feed_filter, page, tags=()):
        request = (FeedFilter.parse(feed_filter), page, normalize_tags(tags))
        self.calls.append(request)
        future = asyncio.get_running_loop().create_future()
        self.pending[request] = future
        return await future

    def resolve(self, feed_filter, page: int, result, tags: Iterable[str] = ()) -> None:
        future = self.pending.pop((FeedFilter.parse(feed_filter), page, normalize_tags(tags)))
        if isinstance(result, Exception):
            future.set_exception(result)
        else:
            future.set_result(result)


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def filter_state() -> FilterState:
    return FilterState(auth_token="header.e30.signature")


def build_manager(
    fetcher: ContentFetcher,
    filter_state: Optional[FilterState] = None,
    renderer: Optional[FeedRenderer] = None,
    threshold: int = 6,
    cooldown_ms: int = 3000,
    **kwargs,
) -> FeedManager:
    return FeedManager(
        fetcher=fetcher,
        filter_state=filter_state or FilterState(auth_token="header.e30.signature"),
        cache=CacheStore(),
        rate_limiter=RateLimiter(threshold=threshold, cooldown_ms=cooldown_ms),
        renderers=[renderer] if renderer else None,
        **kwargs,
    )

"""Feed orchestration: pagination, caching, throttling and view switching."""

import asyncio
from typing import Callable, Iterable, Optional, Union

from ..utils import get_logger
from .cache_store import CacheStore
from .content_fetcher import ContentFetcher
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
    normalize_tags,
)
from .rate_limiter import RateLimiter
from .renderers import FeedRenderer

logger = get_logger(__name__)

DEFAULT_FETCH_TIMEOUT = 30.0


class FeedManager:
    """
    Drives one logical feed view.

    States: IDLE -> LOADING_INITIAL -> READY <-> LOADING_MORE. A filter or
    tag change drops back to IDLE and reloads; a failed fetch passes through
    ERROR. Results are pushed to subscribed renderers as RenderInstructions.

    Runs on a single asyncio loop. The only suspension points are fetcher
    calls, so the cache needs no locking. Every fetch remembers the view
    generation it was issued under and its result is discarded if the view
    has changed by the time it arrives.
    """

    def __init__(
        self,
        fetcher: ContentFetcher,
        filter_state: FilterState,
        cache: Optional[CacheStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        renderers: Optional[Iterable[FeedRenderer]] = None,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        near_end_probe: Optional[Callable[[], bool]] = None,
        scroll_probe: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the feed manager.

        Args:
            fetcher: Source of feed pages
            filter_state: Active filter, tags and authentication
            cache: Page cache (a fresh one is created if omitted)
            rate_limiter: Session page budget (defaults: 6 pages, 3s cooldown)
            renderers: Initial render subscribers, in delivery order
            fetch_timeout: Seconds before an unanswered fetch counts as failed
            near_end_probe: Answers whether the viewport is still near the end
                of the feed; checked when a cooldown expires
            scroll_probe: Reports the current scroll offset; read before a
                filter or tag switch so the old view can be restored later
        """
        self.fetcher = fetcher
        self.filter_state = filter_state
        self.cache = cache if cache is not None else CacheStore()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.fetch_timeout = fetch_timeout
        self.near_end_probe = near_end_probe
        self.scroll_probe = scroll_probe

        self._renderers: list[FeedRenderer] = list(renderers or [])
        self._state = FeedState.IDLE
        self._generation = 0
        self._loading_more = False
        self._initial_task: Optional[asyncio.Task] = None
        self._initial_key: Optional[CacheKey] = None
        self._background_tasks: set[asyncio.Task] = set()

        self.rate_limiter.on_cooldown_end(self._handle_cooldown_end)

    # ========== Accessors ==========

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def current_key(self) -> CacheKey:
        return self.filter_state.cache_key()

    @property
    def is_loading(self) -> bool:
        return self._state in (FeedState.LOADING_INITIAL, FeedState.LOADING_MORE)

    def current_entry(self) -> Optional[CacheEntry]:
        return self.cache.get(self.current_key)

    def current_images(self) -> list[ImageRecord]:
        entry = self.current_entry()
        return list(entry.images) if entry else []

    def stats(self) -> dict:
        """Snapshot of the view and cache for debugging."""
        return {
            "state": self._state.value,
            "key": self.current_key.label,
            "pages_loaded_this_session": self.rate_limiter.pages_loaded,
            "cooling_down": self.rate_limiter.is_cooling_down,
            "cache": self.cache.stats(),
        }

    # ========== Render subscribers ==========

    def subscribe(self, renderer: FeedRenderer) -> None:
        if renderer not in self._renderers:
            self._renderers.append(renderer)

    def unsubscribe(self, renderer: FeedRenderer) -> None:
        if renderer in self._renderers:
            self._renderers.remove(renderer)

    def _emit(self, action: RenderAction, **kwargs) -> None:
        instruction = RenderInstruction(action=action, **kwargs)
        for renderer in list(self._renderers):
            try:
                renderer.render(instruction)
            except Exception as e:
                logger.error(f"Renderer {type(renderer).__name__} failed on {action.value}: {e}")

    def _emit_images(self, key: CacheKey, images: Iterable[ImageRecord]) -> None:
        for image in images:
            self._emit(RenderAction.ADD_IMAGE, image=image, key=key)

    # ========== Loading ==========

    async def load_initial(self, force: bool = False) -> LoadOutcome:
        """
        Load page 0 of the active view.

        Concurrent calls for the same view share one in-flight fetch and
        receive the same outcome. The loaded result set is the view's cache
        entry; read it with current_images(). Without `force`, a view that
        is already cached is rendered from the cache.

        Args:
            force: Ignore cached pages and refetch from the endpoint

        Returns:
            LoadOutcome of the load
        """
        key = self.current_key

        if not self.filter_state.can_view(key.filter):
            logger.info(f"Feed {key.label} requires authentication")
            self._state = FeedState.IDLE
            self._emit(RenderAction.SHOW_LOGIN_REQUIRED, message="Log in to see your images", key=key)
            return LoadOutcome.AUTH_REQUIRED

        task = self._initial_task
        if task is not None and not task.done() and self._initial_key == key:
            logger.debug(f"Initial load for {key.label} already in flight, joining it")
            return await asyncio.shield(task)

        if not force:
            entry = self.cache.get(key)
            if entry is not None and entry.is_loaded:
                logger.debug(f"Cache hit: {key.label} ({len(entry.images)} images)")
                return self._render_cached(key, entry)

        if force:
            self.fetcher.clear_cache()
            self._generation += 1
            self._loading_more = False

        self._state = FeedState.LOADING_INITIAL
        task = asyncio.ensure_future(self._run_initial(key, self._generation))
        self._initial_task = task
        self._initial_key = key
        task.add_done_callback(self._clear_initial_task)
        return await asyncio.shield(task)

    def _clear_initial_task(self, task: asyncio.Task) -> None:
        if self._initial_task is task:
            self._initial_task = None
            self._initial_key = None

    def _render_cached(self, key: CacheKey, entry: CacheEntry) -> LoadOutcome:
        self._state = FeedState.READY
        self._emit(RenderAction.CLEAR_FEED, key=key)
        self._emit_images(key, entry.images)
        if not entry.images:
            self._emit(RenderAction.SHOW_NO_RESULTS, key=key)
            return LoadOutcome.NO_RESULTS
        return LoadOutcome.LOADED

    async def _run_initial(self, key: CacheKey, generation: int) -> LoadOutcome:
        logger.info(f"Loading feed {key.label}")
        self._emit(RenderAction.SET_LOADING, loading=True, key=key)

        try:
            page = await self._fetch(key, 0)
        except FeedError as e:
            if self._is_stale(key, generation):
                return self._discard(key, 0, generation)
            self._emit(RenderAction.SET_LOADING, loading=False, key=key)
            return self._fail(key, e, initial=True)

        if self._is_stale(key, generation):
            return self._discard(key, 0, generation)

        images = self._visible(key, page.images)
        self.cache.put(key, CacheEntry(
            images=images,
            has_more=page.has_more,
            next_page_cursor=1,
            is_loaded=True,
        ))
        self._state = FeedState.READY
        self._emit(RenderAction.SET_LOADING, loading=False, key=key)

        entry = self.cache.get(key)
        logger.info(f"Loaded {len(entry.images)} images for {key.label} (hasMore={entry.has_more})")
        return self._render_cached(key, entry)

    async def load_more(self) -> LoadOutcome:
        """
        Load the next page of the active view and append it.

        Skipped unless the view is READY with nothing in flight, the rate
        limiter is not cooling down and the cache says more pages exist.
        The cursor advances by one page whatever the number of images
        returned.

        Returns:
            LoadOutcome of the load
        """
        key = self.current_key

        if self._state is not FeedState.READY or self._loading_more:
            logger.debug(f"Load more skipped: feed is {self._state.value}")
            return LoadOutcome.SKIPPED
        if not self.rate_limiter.can_load():
            logger.debug("Load more skipped: rate limit cooldown")
            return LoadOutcome.SKIPPED

        entry = self.cache.get(key)
        if entry is None or not entry.has_more:
            return LoadOutcome.SKIPPED

        page_number = entry.next_page_cursor
        generation = self._generation
        self._loading_more = True
        self._state = FeedState.LOADING_MORE
        self._emit(RenderAction.SET_LOADING, loading=True, key=key)

        try:
            page = await self._fetch(key, page_number)
        except FeedError as e:
            if self._is_stale(key, generation):
                return self._discard(key, page_number, generation)
            self._loading_more = False
            self._emit(RenderAction.SET_LOADING, loading=False, key=key)
            return self._fail(key, e, initial=False)

        # The entry may have been dropped while the page was in flight.
        if self._is_stale(key, generation) or key not in self.cache:
            return self._discard(key, page_number, generation)
        self._loading_more = False

        # An empty later page means the backend is inconsistent; stop paging.
        has_more = page.has_more and bool(page.images)
        added = self.cache.append(key, self._visible(key, page.images))
        self.cache.set_pagination(key, page_number + 1, has_more)
        self._state = FeedState.READY

        self._emit_images(key, added)
        cooling_down = self.rate_limiter.record_page()
        self._emit(RenderAction.SET_LOADING, loading=cooling_down, key=key)

        logger.info(
            f"Loaded page {page_number} of {key.label}: "
            f"+{len(added)} images (hasMore={has_more})"
        )
        return LoadOutcome.LOADED

    async def _fetch(self, key: CacheKey, page: int) -> FeedPage:
        try:
            return await asyncio.wait_for(
                self.fetcher.fetch_page(key.filter, page, key.tags),
                timeout=self.fetch_timeout,
            )
        except FeedError:
            raise
        except asyncio.TimeoutError as e:
            logger.error(f"Fetching page {page} of {key.label} timed out after {self.fetch_timeout}s")
            raise FetchError(f"Timed out after {self.fetch_timeout}s") from e
        except Exception as e:
            logger.error(f"Unexpected error fetching page {page} of {key.label}: {e}")
            raise FetchError(str(e)) from e

    def _is_stale(self, key: CacheKey, generation: int) -> bool:
        return generation != self._generation or key != self.current_key

    def _discard(self, key: CacheKey, page: int, generation: int) -> LoadOutcome:
        logger.debug(f"Discarding stale response for page {page} of {key.label}")
        if generation == self._generation:
            # The view moved without a reset; nothing else will release it.
            self._loading_more = False
            self._state = FeedState.IDLE
            self._emit(RenderAction.SET_LOADING, loading=False, key=key)
        return LoadOutcome.STALE

    def _fail(self, key: CacheKey, error: FeedError, initial: bool) -> LoadOutcome:
        if isinstance(error, AuthRequiredError):
            logger.warning(f"Endpoint rejected credentials for {key.label}: {error}")
            self._state = FeedState.IDLE
            self._emit(RenderAction.SHOW_LOGIN_REQUIRED, message="Log in to see your images", key=key)
            return LoadOutcome.AUTH_REQUIRED

        self._state = FeedState.ERROR
        logger.error(f"Failed to load {key.label}: {error}")
        self._emit(RenderAction.SHOW_ERROR, message="Could not load images. Try again.", key=key)
        # Content already on screen stays scrollable after a failed page.
        self._state = FeedState.IDLE if initial else FeedState.READY
        return LoadOutcome.ERROR

    def _visible(self, key: CacheKey, images: list[ImageRecord]) -> list[ImageRecord]:
        if key.filter is FeedFilter.PUBLIC:
            return [image for image in images if image.is_public]
        return list(images)

    # ========== Triggers ==========

    def _reset_view(self) -> None:
        self._generation += 1
        self._loading_more = False
        self._initial_task = None
        self._initial_key = None
        self._state = FeedState.IDLE

    def _save_scroll_position(self) -> None:
        if self.scroll_probe is not None:
            self.remember_scroll_position(self.scroll_probe())

    async def on_filter_changed(self, new_filter: Union[FeedFilter, str]) -> LoadOutcome:
        """
        Switch the visibility filter and load the new view.

        The scroll offset of the old view is saved first. The rate limiter
        starts a fresh session budget.
        """
        feed_filter = FeedFilter.parse(new_filter)
        if feed_filter is self.filter_state.active_filter:
            return LoadOutcome.SKIPPED

        if not self.filter_state.can_view(feed_filter):
            logger.info(f"Cannot switch to {feed_filter.value} feed without authentication")
            self._emit(
                RenderAction.SHOW_LOGIN_REQUIRED,
                message="Log in to see your images",
                key=CacheKey.of(feed_filter, self.filter_state.active_tags),
            )
            return LoadOutcome.AUTH_REQUIRED

        logger.info(f"Filter changed: {self.filter_state.active_filter.value} -> {feed_filter.value}")
        self._save_scroll_position()
        self.filter_state.set_filter(feed_filter)
        self.rate_limiter.reset()
        self._reset_view()
        return await self.load_initial()

    async def on_tags_changed(self, new_tags: Union[None, str, Iterable[str]]) -> LoadOutcome:
        """
        Replace the active tag set and load the new view.

        Unlike a filter change this keeps the rate limiter's session count.
        """
        if normalize_tags(new_tags) == self.filter_state.active_tags:
            return LoadOutcome.SKIPPED

        self._save_scroll_position()
        self.filter_state.set_tags(new_tags)

        logger.info(f"Tags changed: {list(self.filter_state.active_tags)}")
        self._reset_view()
        return await self.load_initial()

    async def on_scroll_near_end(self) -> LoadOutcome:
        """Infinite-scroll trigger."""
        if self._state is not FeedState.READY:
            return LoadOutcome.SKIPPED
        entry = self.current_entry()
        if entry is None or not entry.has_more:
            return LoadOutcome.SKIPPED
        return await self.load_more()

    async def refresh(self) -> LoadOutcome:
        """Manual refresh: refetch page 0 of the active view."""
        return await self.load_initial(force=True)

    async def on_auth_changed(self, token: Optional[str]) -> LoadOutcome:
        """
        Apply a login or logout.

        Private views cached for the previous caller are dropped along with
        the fetcher's response memo. Logging out while viewing the private
        feed switches to the public feed; a new login on it reloads the view.
        """
        self.filter_state.set_auth_token(token)
        for key in self.cache.keys():
            if key.filter is FeedFilter.PRIVATE:
                self.cache.invalidate(key)
        self.fetcher.clear_cache()

        if self.filter_state.active_filter is not FeedFilter.PRIVATE:
            return LoadOutcome.SKIPPED
        if not self.filter_state.is_authenticated:
            logger.info("Logged out while viewing private feed, switching to public")
            return await self.on_filter_changed(FeedFilter.PUBLIC)

        logger.info("Credentials changed while viewing private feed, reloading")
        self._reset_view()
        return await self.load_initial()

    async def add_tag(self, tag: str) -> LoadOutcome:
        return await self.on_tags_changed(self.filter_state.active_tags + (tag,))

    async def remove_tag(self, tag: str) -> LoadOutcome:
        removed = set(normalize_tags([tag]))
        return await self.on_tags_changed([t for t in self.filter_state.active_tags if t not in removed])

    async def clear_tags(self) -> LoadOutcome:
        return await self.on_tags_changed(())

    def _handle_cooldown_end(self) -> None:
        self._emit(RenderAction.SET_LOADING, loading=False, key=self.current_key)
        if self.near_end_probe is None or not self.near_end_probe():
            return
        logger.debug("Cooldown over and viewport still near end, loading more")
        task = asyncio.ensure_future(self.on_scroll_near_end())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # ========== Mutations from elsewhere in the app ==========

    def add_item_to_top(self, image: Union[ImageRecord, dict]) -> bool:
        """
        Show a newly created image at the top of the current view.

        Pagination is left untouched. Returns True if the image was added.
        """
        record = image if isinstance(image, ImageRecord) else ImageRecord.from_dict(image)
        key = self.current_key
        if key.filter is FeedFilter.PUBLIC and not record.is_public:
            return False
        if not self.cache.prepend(key, record):
            return False
        self._emit(RenderAction.PREPEND_IMAGE, image=record, key=key)
        return True

    def on_visibility_toggled(self, image_id: Optional[str] = None, is_public: Optional[bool] = None) -> None:
        """
        An image's visibility changed elsewhere; every cached view is stale.

        Loads still in flight are discarded when they land. The view drops
        to IDLE and the next load_initial() refetches page 0.
        """
        visibility = "" if is_public is None else (" (now public)" if is_public else " (now private)")
        logger.info(f"Visibility toggled for image {image_id}{visibility}, invalidating feed cache")
        self.cache.invalidate_all()
        self.fetcher.clear_cache()
        self._reset_view()

    def remember_scroll_position(self, position: float) -> None:
        self.cache.save_scroll_position(self.current_key, position)

    def scroll_position(self) -> float:
        return self.cache.scroll_position(self.current_key)

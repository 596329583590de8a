"""Gallery Feed - browse a remote image feed from the terminal."""

import argparse
import asyncio
import json
import sys

from .config import settings
from .feed import (
    CacheStore,
    FeedFilter,
    FeedManager,
    FilterState,
    HTTPContentFetcher,
    LoadOutcome,
    LoggingRenderer,
    RateLimiter,
)
from .utils import get_logger, setup_logging

logger = get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Gallery Feed - page through a remote image feed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m gallery_feed.main                          # First page of the public feed
  python -m gallery_feed.main --pages 3                # Plus three more pages
  python -m gallery_feed.main --tags cats,dogs         # Restrict to tags
  python -m gallery_feed.main --filter private --token <jwt>
  python -m gallery_feed.main --debug                  # Enable debug logging
        """,
    )

    parser.add_argument(
        "--endpoint",
        type=str,
        default=settings.feed_endpoint,
        help="Feed endpoint URL",
    )
    parser.add_argument(
        "--filter",
        type=str,
        default=settings.default_filter.value,
        choices=[f.value for f in FeedFilter] + ["site", "user"],
        help="Visibility filter",
    )
    parser.add_argument(
        "--tags",
        type=str,
        default="",
        help="Comma-separated tags to restrict the feed to",
    )
    parser.add_argument(
        "--pages",
        type=int,
        default=0,
        help="Number of extra pages to load after the first",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=settings.feed_auth_token,
        help="Bearer token for the private feed",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def build_feed_manager(args: argparse.Namespace) -> FeedManager:
    """Wire the feed components from settings and command line overrides."""
    filter_state = FilterState(
        initial_filter=args.filter,
        tags=args.tags,
        auth_token=args.token,
    )
    fetcher = HTTPContentFetcher(
        endpoint=args.endpoint,
        filter_state=filter_state,
        page_size=settings.feed_page_size,
        request_timeout=settings.feed_request_timeout_seconds,
        response_cache_seconds=settings.feed_response_cache_seconds,
    )
    return FeedManager(
        fetcher=fetcher,
        filter_state=filter_state,
        cache=CacheStore(),
        rate_limiter=RateLimiter(
            threshold=settings.rate_limit_pages,
            cooldown_ms=settings.rate_limit_cooldown_ms,
        ),
        renderers=[LoggingRenderer()],
        fetch_timeout=settings.feed_fetch_timeout_seconds,
    )


async def browse(manager: FeedManager, extra_pages: int) -> LoadOutcome:
    """
    Load the first page, then up to `extra_pages` more, waiting out cooldowns.

    Returns:
        Outcome of the initial load
    """
    outcome = await manager.load_initial()
    if outcome not in (LoadOutcome.LOADED, LoadOutcome.NO_RESULTS):
        return outcome

    loaded = 0
    while loaded < extra_pages:
        entry = manager.current_entry()
        if entry is None or not entry.has_more:
            logger.info("End of feed reached")
            break
        if manager.rate_limiter.is_cooling_down:
            await asyncio.sleep(manager.rate_limiter.cooldown_ms / 1000)
            continue
        result = await manager.on_scroll_near_end()
        if result is LoadOutcome.ERROR:
            break
        if result is LoadOutcome.LOADED:
            loaded += 1
    return outcome


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    log_level = "DEBUG" if args.debug else settings.log_level
    setup_logging(level=log_level)

    manager = build_feed_manager(args)
    logger.info(f"Browsing {args.endpoint} ({manager.current_key.label})")

    try:
        outcome = asyncio.run(browse(manager, max(args.pages, 0)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130

    print(json.dumps(manager.stats(), indent=2))
    return 0 if outcome in (LoadOutcome.LOADED, LoadOutcome.NO_RESULTS) else 1


if __name__ == "__main__":
    sys.exit(main())

"""Session page budget with periodic cooldowns."""

import asyncio
from typing import Callable, Optional

from ..utils import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Pauses pagination for a while after every `threshold` pages.

    The counter covers the current browsing session, which starts over
    whenever the active filter changes.
    """

    def __init__(self, threshold: int = 6, cooldown_ms: int = 3000):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        if cooldown_ms < 0:
            raise ValueError(f"cooldown_ms must be >= 0, got {cooldown_ms}")
        self.threshold = threshold
        self.cooldown_ms = cooldown_ms
        self._pages_loaded = 0
        self._cooling_down = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._listeners: list[Callable[[], None]] = []

    @property
    def pages_loaded(self) -> int:
        return self._pages_loaded

    @property
    def is_cooling_down(self) -> bool:
        return self._cooling_down

    def can_load(self) -> bool:
        return not self._cooling_down

    def on_cooldown_end(self, callback: Callable[[], None]) -> None:
        """Register a callback fired (in registration order) when a cooldown expires."""
        self._listeners.append(callback)

    def record_page(self) -> bool:
        """
        Count one successfully loaded page.

        Returns:
            True if this page started a cooldown
        """
        self._pages_loaded += 1
        if self._pages_loaded % self.threshold != 0:
            return False

        self._cooling_down = True
        logger.info(
            f"Rate limit: {self._pages_loaded} pages loaded, "
            f"pausing for {self.cooldown_ms}ms"
        )
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.cooldown_ms / 1000, self.end_cooldown)
        return True

    def end_cooldown(self) -> None:
        """End the current cooldown and notify listeners."""
        self._cancel_timer()
        if not self._cooling_down:
            return
        self._cooling_down = False
        logger.debug("Rate limit cooldown finished")
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                logger.error(f"Cooldown listener failed: {e}")

    def reset(self) -> None:
        """Start a fresh session budget. Pending cooldowns are dropped silently."""
        self._cancel_timer()
        self._pages_loaded = 0
        self._cooling_down = False

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

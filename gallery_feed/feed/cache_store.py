"""In-memory page cache keyed by (filter, tag set)."""

from typing import Iterable, Optional

from ..utils import get_logger
from .models import CacheEntry, CacheKey, ImageRecord

logger = get_logger(__name__)


class CacheStore:
    """Keyed store of accumulated feed pages.

    Every operation is synchronous and touches nothing but the store's own
    map. The feed manager is the only writer.
    """

    def __init__(self):
        self._entries: dict[CacheKey, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def put(self, key: CacheKey, entry: CacheEntry) -> None:
        """Replace the entry for a key wholesale."""
        unique: list[ImageRecord] = []
        seen: set[str] = set()
        for image in entry.images:
            if image.id not in seen:
                seen.add(image.id)
                unique.append(image)
        entry.images = unique
        self._entries[key] = entry
        logger.debug(f"Cache put {key.label}: {len(unique)} images")

    def append(self, key: CacheKey, images: Iterable[ImageRecord]) -> list[ImageRecord]:
        """
        Merge images into an entry, skipping ids that are already present.

        Args:
            key: Cache key to append to (created if absent)
            images: Records in page order

        Returns:
            The genuinely new records, in the order they were appended
        """
        entry = self._entries.setdefault(key, CacheEntry())
        existing_ids = entry.ids()
        added: list[ImageRecord] = []
        for image in images:
            if image.id in existing_ids:
                continue
            existing_ids.add(image.id)
            entry.images.append(image)
            added.append(image)
        logger.debug(f"Cache append {key.label}: +{len(added)} images ({len(entry.images)} total)")
        return added

    def prepend(self, key: CacheKey, image: ImageRecord) -> bool:
        """Put a single new image at the front of an existing entry."""
        entry = self._entries.get(key)
        if entry is None or image.id in entry.ids():
            return False
        entry.images.insert(0, image)
        return True

    def set_pagination(self, key: CacheKey, cursor: int, has_more: bool) -> None:
        if cursor < 0:
            raise ValueError(f"Pagination cursor must be >= 0, got {cursor}")
        entry = self._entries.setdefault(key, CacheEntry())
        entry.next_page_cursor = cursor
        entry.has_more = has_more

    def invalidate(self, key: CacheKey) -> None:
        """Drop a single entry."""
        self._entries.pop(key, None)

    def invalidate_all(self) -> None:
        """Drop every entry so the next view of any key refetches."""
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Invalidated {count} cached feed views")

    def save_scroll_position(self, key: CacheKey, position: float) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.scroll_position = position

    def scroll_position(self, key: CacheKey) -> float:
        entry = self._entries.get(key)
        return entry.scroll_position if entry else 0.0

    def stats(self) -> dict[str, dict]:
        """Per-key summary for debugging."""
        return {key.label: entry.to_dict() for key, entry in self._entries.items()}

"""
Deduplicator
============

Decides which items of a scan are new for a feed.

A feed's history is an insertion-ordered set of stable identifiers with a
fixed capacity; the oldest identifier is evicted first. Classification
walks items oldest-published-first so that announcements come out in
chronological order.

The very first scan of a feed (empty history) announces at most
``initial_notify_count`` of the most recently published items and records
the rest silently, so registering a feed with a long backlog does not
flood its targets.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Iterable, Iterator, Optional

from ..database.models import CanonicalItem
from ..utils.logging import get_logger_for_component

DEFAULT_HISTORY_CAPACITY = 200
DEFAULT_INITIAL_NOTIFY_COUNT = 2

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

logger = get_logger_for_component("deduplicator")


class SeenHistory:
    """Bounded insertion-ordered set of item identifiers.

    Membership is a dict lookup; eviction pops the oldest key.
    """

    def __init__(self, identifiers: Iterable[str] = (), capacity: int = DEFAULT_HISTORY_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries = {}
        for identifier in identifiers:
            self.add(identifier)

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def add(self, identifier: str) -> bool:
        """Insert ``identifier``; returns False when it was already present."""
        if identifier in self._entries:
            return False
        self._entries[identifier] = None
        while len(self._entries) > self.capacity:
            del self._entries[next(iter(self._entries))]
        return True

    def to_list(self) -> List[str]:
        """Identifiers oldest first."""
        return list(self._entries)


@dataclass
class DedupResult:
    """Outcome of classifying one scan's items."""

    new_items: List[CanonicalItem] = field(default_factory=list)
    history: List[str] = field(default_factory=list)
    initial_scan: bool = False
    backfilled: int = 0
    skipped: int = 0


def _has_identity(item: CanonicalItem) -> bool:
    return bool(item.guid or item.link or item.title or item.iso_date or item.pub_date)


def chronological(items: List[CanonicalItem]) -> List[CanonicalItem]:
    """Oldest-published first.

    Undated items sort before dated ones. Feeds list newest first, so ties
    keep reversed feed order.
    """
    return sorted(reversed(items), key=lambda item: item.published_at or _EPOCH)


def classify(
    history: Iterable[str],
    items: List[CanonicalItem],
    capacity: int = DEFAULT_HISTORY_CAPACITY,
    initial_notify_count: int = DEFAULT_INITIAL_NOTIFY_COUNT,
    feed_id: Optional[str] = None,
) -> DedupResult:
    """Partition ``items`` into new and already-seen.

    Args:
        history: Identifiers already seen for the feed, oldest first
        items: Canonical items of the current scan, in feed order
        capacity: History size limit
        initial_notify_count: Items announced on a first scan
        feed_id: Used for log context only

    Returns:
        DedupResult with new items in chronological order and the updated history
    """
    seen = SeenHistory(history, capacity=capacity)
    result = DedupResult(initial_scan=len(seen) == 0)

    usable = []
    for item in items:
        if _has_identity(item):
            usable.append(item)
        else:
            result.skipped += 1
            logger.warning(
                "Skipping item without guid, link, title or date",
                extra={"feed_id": feed_id or item.feed_id, "item_id": item.id},
            )

    ordered = chronological(usable)

    if result.initial_scan:
        announce = set()
        for item in reversed(ordered):
            if len(announce) >= initial_notify_count:
                break
            announce.add(item.id)

        for item in ordered:
            if not seen.add(item.id):
                continue
            if item.id in announce:
                result.new_items.append(item)
            else:
                result.backfilled += 1
    else:
        for item in ordered:
            if seen.add(item.id):
                result.new_items.append(item)

    result.history = seen.to_list()
    return result

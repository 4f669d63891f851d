"""
In-memory feed registry shared by the scheduler and management services.

All accessors are synchronous and expect the caller to hold :attr:`lock`
so that read-modify-write sequences on one feed are atomic.
"""

import asyncio
from typing import Dict, Iterator, List, Optional

from ..database.models import Feed


class FeedRegistry:
    """Feeds keyed by id, guarded by an asyncio lock."""

    def __init__(self):
        self.lock = asyncio.Lock()
        self._feeds: Dict[str, Feed] = {}

    def __contains__(self, feed_id: str) -> bool:
        return feed_id in self._feeds

    def __len__(self) -> int:
        return len(self._feeds)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._feeds))

    def get(self, feed_id: str) -> Optional[Feed]:
        """Copy of the stored feed, so callers cannot mutate registry state."""
        feed = self._feeds.get(feed_id)
        return feed.model_copy(deep=True) if feed is not None else None

    def put(self, feed: Feed) -> None:
        self._feeds[feed.id] = feed.model_copy(deep=True)

    def update(self, feed_id: str, **changes) -> Optional[Feed]:
        """Apply ``changes`` to a stored feed.

        Returns:
            The updated copy, or None when the feed is not registered
        """
        feed = self._feeds.get(feed_id)
        if feed is None:
            return None
        updated = feed.model_copy(update=changes, deep=True)
        self._feeds[feed_id] = updated
        return updated.model_copy(deep=True)

    def delete(self, feed_id: str) -> Optional[Feed]:
        return self._feeds.pop(feed_id, None)

    def snapshot(self) -> List[Feed]:
        """Copies of every feed in registration order."""
        return [feed.model_copy(deep=True) for feed in self._feeds.values()]

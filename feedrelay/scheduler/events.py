"""
Presentation events emitted by the scheduler.

The scheduler pushes two kinds of events to whatever front end is attached:
the full feed list after a scan changed it, and a lightweight notice per
newly discovered item.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..database.models import CanonicalItem, Feed
from ..utils.logging import get_logger_for_component


def new_item_event(feed: Feed, item: CanonicalItem) -> Dict[str, Any]:
    """Build the ``new_item`` payload for one item."""
    return {
        "feedId": feed.id,
        "feedTitle": feed.title,
        "item": {"title": item.title, "link": item.link, "guid": item.guid or item.id},
    }


class EventPublisher(ABC):
    """Push interface towards the presentation layer."""

    @abstractmethod
    def feeds_changed(self, feeds: List[Dict[str, Any]]) -> None:
        """Full feed list, JSON-ready with list fields expanded."""

    @abstractmethod
    def new_item(self, event: Dict[str, Any]) -> None:
        """One newly discovered item: ``{feedId, feedTitle, item}``."""


class LoggingEventPublisher(EventPublisher):
    """Default publisher when no front end is attached."""

    def __init__(self):
        self.logger = get_logger_for_component("events")

    def feeds_changed(self, feeds: List[Dict[str, Any]]) -> None:
        self.logger.debug(f"Feed list changed ({len(feeds)} feeds)")

    def new_item(self, event: Dict[str, Any]) -> None:
        item = event.get("item", {})
        self.logger.info(
            f"New item: {item.get('title') or item.get('link')}",
            extra={"feed_id": event.get("feedId")},
        )

"""
Feed Service
============

Operator-facing feed management: add, edit, pause, delete and field
detection. Every change is persisted first and then mirrored into the
running scheduler so timers follow the new settings.
"""

from typing import Any, Dict, Iterable, List, Optional

from ..config.settings import FeedRelaySettings, get_settings
from ..database.models import (
    DEFAULT_SELECTED_FIELDS,
    Feed,
    FeedStatus,
    ITEM_FIELD_ATTRS,
    WELL_KNOWN_FIELDS,
)
from ..ingestion.feed_fetcher import FeedFetcher
from ..ingestion.field_extractor import (
    FieldExtractor,
    HTML_CANDIDATE_FIELDS,
    detect_fields,
    sample_fields,
)
from ..scheduler.feed_scheduler import FeedScheduler
from ..storage.feed_repository import FeedRepository
from ..storage.integration_repository import IntegrationRepository
from ..utils.exceptions import (
    FetchError,
    ParseError,
    NotFoundError,
    ValidationError,
    ErrorCode,
)
from ..utils.logging import get_logger_for_component
from ..utils.validators import URLValidator, FeedValidator

_UNSET = object()

MINIMAL_SELECTED_FIELDS = ["title", "link"]


class FeedService:
    """Manages feeds on behalf of operators."""

    def __init__(
        self,
        feed_repository: FeedRepository,
        scheduler: FeedScheduler,
        integration_repository: Optional[IntegrationRepository] = None,
        fetcher: Optional[FeedFetcher] = None,
        extractor: Optional[FieldExtractor] = None,
        settings: Optional[FeedRelaySettings] = None,
    ):
        self.settings = settings or get_settings()
        self.feeds = feed_repository
        self.scheduler = scheduler
        self.integrations = integration_repository
        self.fetcher = fetcher or scheduler.fetcher
        self.extractor = extractor or FieldExtractor()
        self.logger = get_logger_for_component("feed_service")

    async def add_feed(
        self,
        title: str,
        url: str,
        interval: Optional[int] = None,
        selected_fields: Optional[Iterable[str]] = None,
        associated_integrations: Optional[Iterable[str]] = None,
        show_all_prefixes: bool = False,
    ) -> Feed:
        """Validate, store and schedule a new feed.

        Available fields are detected from the source up front; when that
        fails the well-known defaults are used. The first scan runs shortly
        after the feed is registered.

        Raises:
            ValidationError: Bad title, URL, interval or field selection
            NotFoundError: Unknown associated integration
        """
        title = FeedValidator.validate_title(title)
        url = URLValidator.validate_feed_url(url)
        interval = FeedValidator.validate_interval(
            interval if interval is not None else self.settings.scheduler.default_interval_minutes
        )
        targets = self._check_integrations(associated_integrations or [])

        available = await self._common_fields(url)
        selected = self._check_selection(selected_fields or [], available)
        if not selected:
            selected = list(available) or list(MINIMAL_SELECTED_FIELDS)

        feed = Feed(
            title=title,
            url=url,
            interval=interval,
            status=FeedStatus.PENDING,
            status_details="Scheduled for first check",
            selected_fields=selected,
            available_fields=available,
            associated_integrations=targets,
            show_all_prefixes=show_all_prefixes,
        )
        self.feeds.create_feed(feed)
        await self.scheduler.register_feed(feed, delay=self.settings.scheduler.new_feed_delay_seconds)

        self.logger.info(f"Added feed '{feed.title}'", extra={"feed_id": feed.id, "url": feed.url})
        return feed

    async def update_feed(
        self,
        feed_id: str,
        title=_UNSET,
        url=_UNSET,
        interval=_UNSET,
        selected_fields=_UNSET,
        associated_integrations=_UNSET,
        show_all_prefixes=_UNSET,
    ) -> Feed:
        """Apply a partial user edit. Scan-derived state is never touched.

        A new URL re-detects the available fields; an empty selection is
        then reset to everything available.

        Raises:
            NotFoundError: Unknown feed or associated integration
            ValidationError: Bad value
        """
        current = self.get_feed(feed_id)
        changes: Dict[str, Any] = {}

        if title is not _UNSET:
            changes["title"] = FeedValidator.validate_title(title)
        if interval is not _UNSET:
            changes["interval"] = FeedValidator.validate_interval(interval)
        if show_all_prefixes is not _UNSET:
            changes["show_all_prefixes"] = bool(show_all_prefixes)
        if associated_integrations is not _UNSET:
            changes["associated_integrations"] = self._check_integrations(associated_integrations or [])

        available = current.available_fields
        if url is not _UNSET:
            new_url = URLValidator.validate_feed_url(url)
            if new_url != current.url:
                changes["url"] = new_url
                available = await self._common_fields(new_url)
                changes["available_fields"] = available

        if selected_fields is not _UNSET:
            changes["selected_fields"] = self._check_selection(selected_fields or [], available)
        if "url" in changes and not changes.get("selected_fields", current.selected_fields):
            changes["selected_fields"] = list(available)

        if not changes:
            return current

        if not self.feeds.update_user_fields(feed_id, **changes):
            raise NotFoundError("feed", feed_id)
        if feed_id in self.scheduler.registry:
            await self.scheduler.apply_user_edit(feed_id, **changes)

        self.logger.info(f"Updated feed: {sorted(changes)}", extra={"feed_id": feed_id})
        return self.get_feed(feed_id)

    async def delete_feed(self, feed_id: str) -> None:
        """Unschedule and delete a feed. Routes and stats rows cascade.

        Raises:
            NotFoundError: Unknown feed
        """
        unscheduled = await self.scheduler.remove_feed(feed_id)
        deleted = self.feeds.delete_feed(feed_id)
        if not (unscheduled or deleted):
            raise NotFoundError("feed", feed_id)
        self.logger.info("Deleted feed", extra={"feed_id": feed_id})

    async def set_paused(self, feed_id: str, paused: bool) -> Feed:
        """Raises NotFoundError for an unknown feed."""
        if not self.feeds.update_user_fields(feed_id, paused=bool(paused)):
            raise NotFoundError("feed", feed_id)
        if feed_id in self.scheduler.registry:
            await self.scheduler.set_paused(feed_id, bool(paused))
        return self.get_feed(feed_id)

    async def detect_feed_fields(self, url: str) -> Dict[str, Any]:
        """Fetch a source and report the fields of its first item.

        Returns:
            ``{"url", "fields", "sample_item"}``

        Raises:
            ValidationError: Bad URL or a feed without items
            FetchError: Source unreachable
            ParseError: Source is not a feed
        """
        url = URLValidator.validate_feed_url(url)
        fetched = await self.fetcher.fetch(url)
        items = self.extractor.extract_items(fetched.items[:1], feed_id="")
        if not items:
            raise ValidationError(
                "No items found in feed",
                field_name="url",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
            )
        return {"url": url, "fields": sample_fields(items), "sample_item": items[0].to_dict()}

    def list_feeds(self) -> List[Feed]:
        return self.feeds.list_feeds()

    def get_feed(self, feed_id: str) -> Feed:
        """Raises NotFoundError for an unknown id."""
        feed = self.feeds.get_feed(feed_id)
        if feed is None:
            raise NotFoundError("feed", feed_id)
        return feed

    async def _common_fields(self, url: str) -> List[str]:
        """Notification-friendly fields of a source, defaults on any failure."""
        try:
            fetched = await self.fetcher.fetch(url)
        except (FetchError, ParseError) as e:
            self.logger.warning(f"Field detection failed for {url}: {e}")
            return list(DEFAULT_SELECTED_FIELDS)

        items = self.extractor.extract_items(fetched.items[:1], feed_id="")
        return detect_fields(items)

    def _check_integrations(self, integration_ids: Iterable[str]) -> List[str]:
        ids = list(dict.fromkeys(integration_ids))
        if self.integrations is not None:
            for integration_id in ids:
                if self.integrations.get_integration(integration_id) is None:
                    raise NotFoundError("integration", integration_id)
        return ids

    def _check_selection(self, selected: Iterable[str], available: Iterable[str]) -> List[str]:
        allowed = set(available) | set(WELL_KNOWN_FIELDS) | set(ITEM_FIELD_ATTRS) | {"categories"}
        allowed |= {f"{name}_text" for name in HTML_CANDIDATE_FIELDS}
        return FeedValidator.validate_selected_fields(selected, allowed)

"""
FeedRelay Feed Scheduler
========================

Runs every feed on its own polling loop.

Each feed moves through ``idle -> fetching -> (ok | error) -> idle``. A
per-feed timer task fires the next scan after ``interval`` minutes; the scan
itself runs as a separate task so one slow source never holds up another.
Pausing suppresses the timer without touching the scan state.

Features:
- Staggered startup scans so a restart does not hit every source at once
- In-flight guard: a due trigger while a feed is fetching is a no-op
- Scan results are committed under the registry lock and discarded when
  the feed was deleted while its fetch was in progress
- Failures are recorded on the feed and retried on the normal interval
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from ..config.settings import FeedRelaySettings, get_settings
from ..database.models import (
    CanonicalItem,
    Feed,
    FeedStatus,
    KeywordRoute,
    USER_EDITABLE_FIELDS,
    utc_now,
)
from ..delivery.dispatcher import NotificationDispatcher
from ..delivery.formatters import Notification
from ..ingestion.feed_fetcher import FeedFetcher, FetchedFeed
from ..ingestion.field_extractor import FieldExtractor, sample_fields
from ..processing.deduplicator import classify
from ..routing.keyword_router import KeywordRouter
from ..stats.recorder import StatsRecorder
from ..storage.feed_repository import FeedRepository
from ..storage.keyword_route_repository import KeywordRouteRepository
from ..utils.exceptions import DatabaseError, FetchError, ParseError, NotFoundError
from ..utils.logging import get_logger_for_component, PerformanceLogger
from .events import EventPublisher, LoggingEventPublisher, new_item_event
from .registry import FeedRegistry


class ScanState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"


@dataclass
class FeedRuntime:
    """Scheduling state of one registered feed."""

    feed_id: str
    state: ScanState = ScanState.IDLE
    timer: Optional[asyncio.Task] = None
    timer_delay: Optional[float] = None
    scan_task: Optional[asyncio.Task] = None

    @property
    def timer_armed(self) -> bool:
        return self.timer is not None and not self.timer.done()


@dataclass
class ScanReport:
    """Outcome of one scan."""

    feed_id: str
    status: FeedStatus
    status_details: str = ""
    items_found: int = 0
    new_items: List[CanonicalItem] = field(default_factory=list)
    notifications_queued: int = 0
    bytes_transferred: int = 0
    processing_time_ms: int = 0
    initial_scan: bool = False
    discarded: bool = False

    @property
    def success(self) -> bool:
        return self.status is FeedStatus.OK and not self.discarded


class FeedScheduler:
    """Owns the feed registry and the per-feed polling loops."""

    def __init__(
        self,
        feed_repository: FeedRepository,
        route_repository: KeywordRouteRepository,
        dispatcher: NotificationDispatcher,
        stats_recorder: StatsRecorder,
        fetcher: Optional[FeedFetcher] = None,
        extractor: Optional[FieldExtractor] = None,
        router: Optional[KeywordRouter] = None,
        events: Optional[EventPublisher] = None,
        registry: Optional[FeedRegistry] = None,
        settings: Optional[FeedRelaySettings] = None,
    ):
        self.settings = settings or get_settings()
        self.feed_repository = feed_repository
        self.route_repository = route_repository
        self.dispatcher = dispatcher
        self.stats = stats_recorder
        self.fetcher = fetcher or FeedFetcher(
            timeout=self.settings.limits.request_timeout,
            max_feed_bytes=self.settings.limits.max_feed_bytes,
        )
        self.extractor = extractor or FieldExtractor()
        self.router = router or KeywordRouter()
        self.events = events or LoggingEventPublisher()
        self.registry = registry or FeedRegistry()
        self.logger = get_logger_for_component("scheduler")

        self._runtimes: Dict[str, FeedRuntime] = {}
        self._scan_tasks: Set[asyncio.Task] = set()
        self._running = False
        self._stopping = False

    @property
    def is_running(self) -> bool:
        return self._running

    # Lifecycle

    async def start(self) -> int:
        """Load stored feeds and arm a staggered first scan for each active one.

        Returns:
            Number of feeds registered
        """
        self._stopping = False
        feeds = self.feed_repository.list_feeds()
        for feed in feeds:
            await self.register_feed(feed)
        self._running = True

        self.logger.info(
            f"Scheduler started with {len(feeds)} feeds",
            extra={"paused_feeds": sum(1 for f in feeds if f.paused)},
        )
        return len(feeds)

    async def stop(self) -> None:
        """Cancel every timer and in-flight scan."""
        self._stopping = True
        async with self.registry.lock:
            for runtime in self._runtimes.values():
                self._cancel_timer(runtime)
            tasks = list(self._scan_tasks)

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._running = False
        self.logger.info("Scheduler stopped", extra={"cancelled_scans": len(tasks)})

    async def wait_for_scans(self) -> None:
        """Wait for scans that are currently in flight."""
        tasks = list(self._scan_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Registry management

    async def register_feed(self, feed: Feed, delay: Optional[float] = None) -> None:
        """Add a feed and arm its first scan.

        Args:
            feed: Feed to schedule
            delay: Seconds before the first scan, defaults to a random
                startup stagger
        """
        async with self.registry.lock:
            self.registry.put(feed)
            runtime = self._runtimes.setdefault(feed.id, FeedRuntime(feed.id))
            if feed.paused:
                self.logger.info("Feed is paused, not scheduling", extra={"feed_id": feed.id})
                return

            if delay is None:
                delay = random.uniform(
                    self.settings.scheduler.startup_delay_min_seconds,
                    self.settings.scheduler.startup_delay_max_seconds,
                )
            self._arm_timer(runtime, delay)

    async def remove_feed(self, feed_id: str) -> bool:
        """Forget a feed, cancel its timer and drop its queued notifications.

        An in-flight scan for the feed completes but its result is discarded.

        Returns:
            True if the feed was registered
        """
        async with self.registry.lock:
            runtime = self._runtimes.pop(feed_id, None)
            if runtime is not None:
                self._cancel_timer(runtime)
            removed = self.registry.delete(feed_id)
            self.dispatcher.purge_feed(feed_id)

        if removed is not None:
            self.logger.info("Feed removed from scheduler", extra={"feed_id": feed_id})
        return removed is not None

    async def set_paused(self, feed_id: str, paused: bool) -> Feed:
        """Pause cancels the pending timer; unpause re-arms one without scanning now.

        Raises:
            NotFoundError: Unknown feed
        """
        async with self.registry.lock:
            feed = self.registry.update(feed_id, paused=paused)
            if feed is None:
                raise NotFoundError("feed", feed_id)
            runtime = self._runtimes[feed_id]
            if paused:
                self._cancel_timer(runtime)
            elif not runtime.timer_armed and runtime.state is ScanState.IDLE:
                self._arm_timer(runtime, self._interval_seconds(feed))

        self.logger.info(f"Feed {'paused' if paused else 'resumed'}", extra={"feed_id": feed_id})
        return feed

    async def apply_user_edit(self, feed_id: str, **changes) -> Feed:
        """Mirror a persisted user edit into the registry.

        An interval change re-arms the timer with the new interval.

        Raises:
            NotFoundError: Unknown feed
        """
        editable = {k: v for k, v in changes.items() if k in USER_EDITABLE_FIELDS}
        async with self.registry.lock:
            before = self.registry.get(feed_id)
            if before is None:
                raise NotFoundError("feed", feed_id)
            feed = self.registry.update(feed_id, **editable)
            runtime = self._runtimes[feed_id]

            if feed.paused:
                self._cancel_timer(runtime)
            elif runtime.state is ScanState.IDLE and (
                feed.interval != before.interval or not runtime.timer_armed
            ):
                self._arm_timer(runtime, self._interval_seconds(feed))
        return feed

    async def reschedule(self, feed_id: str) -> bool:
        """Cancel and re-arm the feed's timer for a full interval.

        Returns:
            True if a timer is armed afterwards
        """
        async with self.registry.lock:
            feed = self.registry.get(feed_id)
            runtime = self._runtimes.get(feed_id)
            if feed is None or runtime is None:
                raise NotFoundError("feed", feed_id)

            self._cancel_timer(runtime)
            if feed.paused or runtime.state is ScanState.FETCHING:
                return False
            self._arm_timer(runtime, self._interval_seconds(feed))
            return True

    # Scanning

    async def trigger_scan_now(self, feed_id: str) -> Optional[ScanReport]:
        """Scan a feed outside its normal cadence and wait for the result.

        Returns:
            The scan report, or None when the feed is paused or a scan is
            already in flight

        Raises:
            NotFoundError: Unknown feed
        """
        async with self.registry.lock:
            if feed_id not in self.registry:
                raise NotFoundError("feed", feed_id)
            task = self._launch_scan(feed_id)

        if task is None:
            return None
        return await asyncio.shield(task)

    async def scan_feed(self, feed_id: str) -> Optional[ScanReport]:
        """Scan a feed now even if it is paused.

        The in-flight guard still applies. A paused feed is not re-armed
        afterwards.

        Raises:
            NotFoundError: Unknown feed
        """
        async with self.registry.lock:
            if feed_id not in self.registry:
                raise NotFoundError("feed", feed_id)
            task = self._launch_scan(feed_id, include_paused=True)

        if task is None:
            return None
        return await asyncio.shield(task)

    def is_timer_armed(self, feed_id: str) -> bool:
        runtime = self._runtimes.get(feed_id)
        return runtime is not None and runtime.timer_armed

    def timer_delay(self, feed_id: str) -> Optional[float]:
        """Seconds the currently armed timer was set for."""
        runtime = self._runtimes.get(feed_id)
        if runtime is None or not runtime.timer_armed:
            return None
        return runtime.timer_delay

    def state_of(self, feed_id: str) -> Optional[ScanState]:
        runtime = self._runtimes.get(feed_id)
        return runtime.state if runtime is not None else None

    def feeds(self) -> List[Feed]:
        return self.registry.snapshot()

    # Internals (callers hold the registry lock unless noted)

    def _interval_seconds(self, feed: Feed) -> float:
        return float((feed.interval or self.settings.scheduler.default_interval_minutes) * 60)

    def _cancel_timer(self, runtime: FeedRuntime) -> None:
        if runtime.timer is not None and not runtime.timer.done():
            runtime.timer.cancel()
        runtime.timer = None
        runtime.timer_delay = None

    def _arm_timer(self, runtime: FeedRuntime, delay: float) -> None:
        self._cancel_timer(runtime)
        runtime.timer = asyncio.get_running_loop().create_task(
            self._timer_fired(runtime.feed_id, delay), name=f"timer:{runtime.feed_id}"
        )
        runtime.timer_delay = delay
        self.logger.debug(f"Next scan in {delay:.1f}s", extra={"feed_id": runtime.feed_id})

    async def _timer_fired(self, feed_id: str, delay: float) -> None:
        # Runs without the lock until the sleep completes
        await asyncio.sleep(delay)
        async with self.registry.lock:
            runtime = self._runtimes.get(feed_id)
            if runtime is None or runtime.timer is not asyncio.current_task():
                return
            runtime.timer = None
            runtime.timer_delay = None
            self._launch_scan(feed_id)

    def _launch_scan(self, feed_id: str, include_paused: bool = False) -> Optional[asyncio.Task]:
        feed = self.registry.get(feed_id)
        runtime = self._runtimes.get(feed_id)
        if feed is None or runtime is None:
            return None
        if runtime.state is ScanState.FETCHING:
            self.logger.debug("Scan already in flight, ignoring trigger", extra={"feed_id": feed_id})
            return None
        if feed.paused and not include_paused:
            self.logger.info("Feed is paused, skipping scan", extra={"feed_id": feed_id})
            return None

        runtime.state = ScanState.FETCHING
        self._cancel_timer(runtime)
        task = asyncio.get_running_loop().create_task(self._scan(feed_id), name=f"scan:{feed_id}")
        runtime.scan_task = task
        self._scan_tasks.add(task)
        task.add_done_callback(self._scan_tasks.discard)
        return task

    async def _scan(self, feed_id: str) -> ScanReport:
        """Scan task body. Always returns the feed to idle and re-arms it."""
        try:
            return await self._scan_once(feed_id)
        except Exception as e:
            self.logger.error(f"Scan aborted: {e}", extra={"feed_id": feed_id}, exc_info=True)
            return ScanReport(
                feed_id=feed_id,
                status=FeedStatus.ERROR,
                status_details=self._error_details(str(e)),
            )
        finally:
            await self._finish_scan(feed_id)

    async def _scan_once(self, feed_id: str) -> ScanReport:
        async with self.registry.lock:
            feed = self.registry.get(feed_id)
        if feed is None:
            return ScanReport(feed_id=feed_id, status=FeedStatus.PENDING, discarded=True)

        started = time.perf_counter()
        routes = self.route_repository.get_routes_for_feed(feed_id, active_only=True)

        try:
            with PerformanceLogger(self.logger, "feed fetch", feed_id=feed_id, url=feed.url):
                fetched = await self.fetcher.fetch(feed.url)
        except (FetchError, ParseError) as e:
            return await self._commit_failure(feed_id, e)

        items = self.extractor.extract_items(fetched.items, feed_id)
        return await self._commit_success(feed_id, fetched, items, routes, started)

    def _error_details(self, message: str) -> str:
        return f"Error: {message[: self.settings.scheduler.error_detail_length]}"

    def _record_error(self, feed_id: str, details: str) -> Optional[Feed]:
        """Mark the feed as failed in the registry, then in storage.

        Caller holds the registry lock. Returns None for a deleted feed.
        """
        changes = {
            "status": FeedStatus.ERROR,
            "status_details": details,
            "last_checked": utc_now(),
        }
        feed = self.registry.update(feed_id, **changes)
        if feed is None:
            return None
        try:
            self.feed_repository.update_scan_state(feed_id, **changes)
        except DatabaseError as e:
            self.logger.error(f"Could not store scan error: {e}", extra={"feed_id": feed_id})
        return feed

    async def _commit_failure(self, feed_id: str, error: Exception) -> ScanReport:
        message = getattr(error, "message", str(error))
        details = self._error_details(message)

        async with self.registry.lock:
            if self._record_error(feed_id, details) is None:
                self.logger.info("Feed deleted during fetch, discarding error", extra={"feed_id": feed_id})
                return ScanReport(feed_id=feed_id, status=FeedStatus.ERROR, discarded=True)
            feeds = self._public_feeds()

        self.logger.warning(f"Scan failed: {message}", extra={"feed_id": feed_id})
        self.events.feeds_changed(feeds)
        return ScanReport(feed_id=feed_id, status=FeedStatus.ERROR, status_details=details)

    async def _commit_success(
        self,
        feed_id: str,
        fetched: FetchedFeed,
        items: List[CanonicalItem],
        routes: List[KeywordRoute],
        started: float,
    ) -> ScanReport:
        scheduler_settings = self.settings.scheduler
        sample = items[: scheduler_settings.sample_size]

        async with self.registry.lock:
            current = self.registry.get(feed_id)
            if current is None:
                self.logger.info("Feed deleted during fetch, discarding result", extra={"feed_id": feed_id})
                return ScanReport(feed_id=feed_id, status=FeedStatus.OK, discarded=True)

            dedup = classify(
                current.history,
                items,
                capacity=scheduler_settings.history_capacity,
                initial_notify_count=scheduler_settings.initial_notify_count,
                feed_id=feed_id,
            )

            changes: Dict[str, Any] = {
                "status": FeedStatus.OK,
                "status_details": f"Successfully fetched {len(items)} items.",
                "last_checked": utc_now(),
                "history": dedup.history,
                "sample_items": [item.to_dict() for item in sample],
            }
            if sample:
                available = list(dict.fromkeys(current.available_fields + sample_fields(sample)))
                if available != current.available_fields:
                    changes["available_fields"] = available
                if not current.selected_fields:
                    changes["selected_fields"] = list(available)

            # Registry takes the new history only after it is stored
            try:
                self.feed_repository.update_scan_state(feed_id, **changes)
            except DatabaseError as e:
                details = self._error_details(f"Could not store scan result: {e.message}")
                self._record_error(feed_id, details)
                self.logger.error(details, extra={"feed_id": feed_id})
                self.events.feeds_changed(self._public_feeds())
                return ScanReport(feed_id=feed_id, status=FeedStatus.ERROR, status_details=details)

            feed = self.registry.update(feed_id, **changes)

            # Queued under the lock so a concurrent delete purges these jobs too
            queued = 0
            for item in dedup.new_items:
                targets = self.router.resolve_targets(item, routes, feed.associated_integrations)
                if not targets:
                    self.logger.debug(
                        f"No targets for item '{item.title or item.link}'", extra={"feed_id": feed_id}
                    )
                    continue
                notification = Notification(
                    feed_id=feed.id,
                    feed_title=feed.title,
                    item=item,
                    selected_fields=list(feed.selected_fields),
                    show_all_prefixes=feed.show_all_prefixes,
                )
                queued += self.dispatcher.dispatch(notification, targets)

        for item in dedup.new_items:
            self.events.new_item(new_item_event(feed, item))

        processing_time_ms = int((time.perf_counter() - started) * 1000)
        self.stats.record_scan(feed_id, fetched.bytes_transferred, processing_time_ms)

        async with self.registry.lock:
            feeds = self._public_feeds()
        self.events.feeds_changed(feeds)

        self.logger.info(
            f"Scan complete: {len(items)} items, {len(dedup.new_items)} new",
            extra={
                "feed_id": feed_id,
                "initial_scan": dedup.initial_scan,
                "backfilled": dedup.backfilled,
                "notifications": queued,
            },
        )
        return ScanReport(
            feed_id=feed_id,
            status=FeedStatus.OK,
            status_details=changes["status_details"],
            items_found=len(items),
            new_items=list(dedup.new_items),
            notifications_queued=queued,
            bytes_transferred=fetched.bytes_transferred,
            processing_time_ms=processing_time_ms,
            initial_scan=dedup.initial_scan,
        )

    async def _finish_scan(self, feed_id: str) -> None:
        async with self.registry.lock:
            runtime = self._runtimes.get(feed_id)
            if runtime is None:
                return
            runtime.state = ScanState.IDLE
            runtime.scan_task = None

            feed = self.registry.get(feed_id)
            if self._stopping or feed is None or feed.paused:
                return
            self._arm_timer(runtime, self._interval_seconds(feed))

    def _public_feeds(self) -> List[Dict[str, Any]]:
        return [feed.to_public_dict() for feed in self.registry.snapshot()]

"""
Notification Dispatcher
=======================

Serializes and paces outbound sends per destination.

Every distinct target (a webhook URL, or a bot token + chat pair) gets its
own FIFO queue drained by exactly one worker task. Consecutive sends to the
same target are spaced by at least ``min_send_interval_seconds``; separate
targets drain independently and may overlap.

A failed send is logged and dropped. It never blocks the queue, other
targets or other items.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional

from ..config.settings import DeliverySettings
from ..database.models import Integration
from ..utils.exceptions import NotifyError
from ..utils.logging import get_logger_for_component
from .channels import ChannelAdapter, create_adapter
from .formatters import Notification

IntegrationLookup = Callable[[str], Optional[Integration]]
AdapterFactory = Callable[[Integration, DeliverySettings], ChannelAdapter]


@dataclass
class DispatchJob:
    notification: Notification
    adapter: ChannelAdapter
    enqueued_at: float = field(default_factory=time.monotonic)


class TargetQueue:
    """FIFO of jobs for one target with a single paced consumer."""

    def __init__(self, key: str, min_interval: float, clock: Callable[[], float] = time.monotonic):
        self.key = key
        self.min_interval = min_interval
        self.clock = clock
        self.jobs: Deque[DispatchJob] = deque()
        self.sent = 0
        self.failed = 0
        self._last_send_at: Optional[float] = None
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: Optional[asyncio.Task] = None
        self.logger = get_logger_for_component("dispatcher")

    def __len__(self) -> int:
        return len(self.jobs)

    def put(self, job: DispatchJob) -> None:
        self.jobs.append(job)
        self._idle.clear()
        self._wakeup.set()
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name=f"dispatch:{self.key[:40]}"
            )

    def purge(self, feed_id: str) -> int:
        """Drop queued jobs originating from ``feed_id``."""
        kept = [job for job in self.jobs if job.notification.feed_id != feed_id]
        removed = len(self.jobs) - len(kept)
        if removed:
            self.jobs = deque(kept)
            if not self.jobs:
                self._wakeup.set()
        return removed

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def _run(self) -> None:
        while True:
            if not self.jobs:
                self._idle.set()
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            if self._last_send_at is not None:
                delay = self.min_interval - (self.clock() - self._last_send_at)
                if delay > 0:
                    await asyncio.sleep(delay)
                    # a purge may have emptied the queue while we slept
                    continue

            job = self.jobs.popleft()
            self._last_send_at = self.clock()
            await self._send(job)

    async def _send(self, job: DispatchJob) -> None:
        notification = job.notification
        try:
            await job.adapter.send(notification)
            self.sent += 1
        except NotifyError as e:
            self.failed += 1
            self.logger.error(
                f"Dropping notification for {self.key.split(':', 1)[0]} target: {e}",
                extra={"feed_id": notification.feed_id, "integration_id": notification.integration_id},
            )
        except Exception as e:
            self.failed += 1
            self.logger.exception(
                f"Unexpected error sending notification: {e}",
                extra={"feed_id": notification.feed_id, "integration_id": notification.integration_id},
            )

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self.jobs.clear()
        self._idle.set()


class NotificationDispatcher:
    """Routes notifications into per-target queues."""

    def __init__(
        self,
        integration_lookup: IntegrationLookup,
        settings: Optional[DeliverySettings] = None,
        adapter_factory: AdapterFactory = create_adapter,
    ):
        """Initialize dispatcher.

        Args:
            integration_lookup: Resolves an integration id, None when unknown
            settings: Delivery settings (spacing and formatting limits)
            adapter_factory: Builds the channel adapter for an integration
        """
        self.integration_lookup = integration_lookup
        self.settings = settings or DeliverySettings()
        self.adapter_factory = adapter_factory
        self._adapters: Dict[str, ChannelAdapter] = {}
        self._queues: Dict[str, TargetQueue] = {}
        self.logger = get_logger_for_component("dispatcher")

    def _adapter_for(self, integration: Integration) -> ChannelAdapter:
        adapter = self._adapters.get(integration.id)
        if adapter is None or adapter.integration != integration:
            adapter = self.adapter_factory(integration, self.settings)
            self._adapters[integration.id] = adapter
        return adapter

    def enqueue(self, notification: Notification, integration: Integration) -> str:
        """Queue one notification without waiting for it to be sent.

        Returns:
            The target key the job was queued under
        """
        adapter = self._adapter_for(integration)
        key = adapter.target_key
        queue = self._queues.get(key)
        if queue is None:
            queue = TargetQueue(key, self.settings.min_send_interval_seconds)
            self._queues[key] = queue

        notification.integration_id = integration.id
        queue.put(DispatchJob(notification=notification, adapter=adapter))
        return key

    def dispatch(self, notification: Notification, integration_ids: Iterable[str]) -> int:
        """Queue ``notification`` once per known integration id.

        Unknown ids are logged and skipped.

        Returns:
            Number of jobs queued
        """
        queued = 0
        for integration_id in integration_ids:
            integration = self.integration_lookup(integration_id)
            if integration is None:
                self.logger.warning(
                    f"Skipping unknown integration {integration_id}",
                    extra={"feed_id": notification.feed_id},
                )
                continue
            job_notification = Notification(
                feed_id=notification.feed_id,
                feed_title=notification.feed_title,
                item=notification.item,
                selected_fields=list(notification.selected_fields),
                show_all_prefixes=notification.show_all_prefixes,
            )
            self.enqueue(job_notification, integration)
            queued += 1
        return queued

    def purge_feed(self, feed_id: str) -> int:
        """Remove queued jobs of a deleted feed from every queue."""
        removed = sum(queue.purge(feed_id) for queue in self._queues.values())
        if removed:
            self.logger.info(f"Purged {removed} queued notifications", extra={"feed_id": feed_id})
        return removed

    def forget_integration(self, integration_id: str) -> None:
        """Drop the cached adapter so the next send picks up new credentials."""
        self._adapters.pop(integration_id, None)

    def pending(self) -> Dict[str, int]:
        """Queued job count per target key."""
        return {key: len(queue) for key, queue in self._queues.items()}

    def totals(self) -> Dict[str, int]:
        return {
            "sent": sum(q.sent for q in self._queues.values()),
            "failed": sum(q.failed for q in self._queues.values()),
            "pending": sum(len(q) for q in self._queues.values()),
        }

    async def wait_idle(self) -> None:
        """Wait until every queue is drained and no send is in progress."""
        while True:
            queues: List[TargetQueue] = list(self._queues.values())
            await asyncio.gather(*(queue.wait_idle() for queue in queues))
            if len(self._queues) == len(queues) and all(not q.jobs for q in queues):
                return

    async def close(self) -> None:
        """Stop every worker and release adapters. Queued jobs are dropped."""
        for queue in self._queues.values():
            await queue.close()
        self._queues.clear()

        closed = set()
        for adapter in self._adapters.values():
            if id(adapter) not in closed:
                closed.add(id(adapter))
                await adapter.close()
        self._adapters.clear()

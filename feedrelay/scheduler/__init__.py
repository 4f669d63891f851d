"""
FeedRelay Scheduler
===================

Per-feed polling loops over a lock-guarded feed registry.
"""

from .events import EventPublisher, LoggingEventPublisher
from .feed_scheduler import FeedScheduler, FeedRuntime, ScanReport, ScanState
from .registry import FeedRegistry

__all__ = [
    'EventPublisher',
    'LoggingEventPublisher',
    'FeedScheduler',
    'FeedRuntime',
    'FeedRegistry',
    'ScanReport',
    'ScanState',
]

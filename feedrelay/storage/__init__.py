"""
FeedRelay Storage Layer
=======================

Repository pattern implementations for data access abstraction.

This module provides:
- Feed repository with separate user-edit and scan-result write paths
- Integration and keyword route repositories
- Append-only scan stats with per-day aggregation
"""

from .feed_repository import FeedRepository
from .integration_repository import IntegrationRepository
from .keyword_route_repository import KeywordRouteRepository
from .stats_repository import StatsRepository

__all__ = [
    "FeedRepository",
    "IntegrationRepository",
    "KeywordRouteRepository",
    "StatsRepository",
]

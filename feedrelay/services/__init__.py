"""
FeedRelay Services
==================

Shared service layer for feed and integration management used by the CLI
and any front end.
"""

from .feed_service import FeedService
from .integration_service import IntegrationService

__all__ = [
    'FeedService',
    'IntegrationService',
]

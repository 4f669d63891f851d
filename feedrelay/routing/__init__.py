"""
Keyword Routing
===============

Matches item content against keyword routes to pick notification targets.
"""

from .keyword_router import KeywordRouter, validate_pattern
from .route_service import KeywordRouteService

__all__ = ['KeywordRouter', 'KeywordRouteService', 'validate_pattern']

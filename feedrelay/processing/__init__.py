"""
FeedRelay Processing Module
===========================

New-item classification against each feed's bounded history.
"""

from .deduplicator import SeenHistory, DedupResult, classify

__all__ = [
    'SeenHistory',
    'DedupResult',
    'classify',
]

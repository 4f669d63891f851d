"""
Scan Statistics
===============

Per-scan metrics recording and dashboard aggregations.
"""

from .recorder import StatsRecorder

__all__ = ['StatsRecorder']

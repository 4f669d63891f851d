"""
FeedRelay Ingestion Module
==========================

Feed fetching and item normalization.

This module handles:
- Downloading and parsing RSS/Atom documents
- Stable item identifiers and URL normalization
- Canonical field extraction with HTML to text conversion
"""

"""
Field Extractor
===============

Turns raw parsed feed entries into :class:`CanonicalItem` records.

HTML-bearing fields (``summary, content, content:encoded, description``)
get a ``<field>_text`` plain-text derivative. A failed conversion marks
that one derivative with :data:`CONVERSION_ERROR_TEXT` and extraction
carries on with the rest of the item.
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional, Dict, Any, Iterable, Mapping

from ..database.models import CanonicalItem, ITEM_FIELD_ATTRS, WELL_KNOWN_FIELDS, DEFAULT_SELECTED_FIELDS
from ..utils.logging import get_logger_for_component
from .content_cleaner import ContentCleaner, make_snippet
from .identity import stable_item_identifier, has_identity_fields

HTML_CANDIDATE_FIELDS = ("summary", "content", "content:encoded", "description")

CONVERSION_ERROR_TEXT = "[Error converting HTML to text]"

SNIPPET_LENGTH = 300

# Keys that map onto typed CanonicalItem attributes rather than extras
KNOWN_KEYS = frozenset(ITEM_FIELD_ATTRS) | {"categories"}


def parse_item_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 or RFC-822 date into an aware UTC datetime.

    Returns None for anything that is not a recognizable date.
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _as_categories(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    categories = []
    for entry in value:
        if isinstance(entry, str):
            categories.append(entry)
        elif isinstance(entry, Mapping) and entry.get("term"):
            categories.append(str(entry["term"]))
    return categories


class FieldExtractor:
    """Builds canonical items from raw entry mappings."""

    def __init__(self, cleaner: Optional[ContentCleaner] = None):
        self.cleaner = cleaner or ContentCleaner()
        self.logger = get_logger_for_component("field_extractor")

    def extract(self, raw: Mapping[str, Any], feed_id: str) -> CanonicalItem:
        """Extract one canonical item.

        Args:
            raw: Raw parsed entry keyed by external field names
            feed_id: Owning feed

        Returns:
            Canonical item with its stable identifier assigned
        """
        text_fields: Dict[str, str] = {}
        for field in HTML_CANDIDATE_FIELDS:
            value = _as_text(raw.get(field))
            if not value or not self.cleaner.looks_like_html(value):
                continue
            try:
                text_fields[f"{field}_text"] = self.cleaner.html_to_text(value)
            except Exception as e:
                self.logger.warning(
                    f"HTML conversion failed for field '{field}': {e}",
                    extra={"feed_id": feed_id},
                )
                text_fields[f"{field}_text"] = CONVERSION_ERROR_TEXT

        iso_date = _as_text(raw.get("isoDate"))
        pub_date = _as_text(raw.get("pubDate"))
        published_at = parse_item_date(iso_date) or parse_item_date(pub_date)
        if published_at and not iso_date:
            iso_date = published_at.isoformat().replace("+00:00", "Z")

        data: Dict[str, Any] = {
            "id": stable_item_identifier(raw),
            "feed_id": feed_id,
            "title": _as_text(raw.get("title")),
            "link": _as_text(raw.get("link")),
            "guid": _as_text(raw.get("guid")) or _as_text(raw.get("id")),
            "pubDate": pub_date,
            "isoDate": iso_date,
            "published_at": published_at,
            "summary": _as_text(raw.get("summary")),
            "content": _as_text(raw.get("content")),
            "content:encoded": _as_text(raw.get("content:encoded")),
            "description": _as_text(raw.get("description")),
            "contentSnippet": _as_text(raw.get("contentSnippet")),
            "author": _as_text(raw.get("author")),
            "creator": _as_text(raw.get("creator")),
            "categories": _as_categories(raw.get("categories")),
            "text_fields": text_fields,
            "extras": {k: v for k, v in raw.items() if k not in KNOWN_KEYS},
        }

        if not data["contentSnippet"]:
            data["contentSnippet"] = self._derive_snippet(data, text_fields)

        return CanonicalItem(**data)

    def extract_items(self, raw_items: Iterable[Mapping[str, Any]], feed_id: str) -> List[CanonicalItem]:
        """Extract every usable entry, in feed order.

        Entries without any identity-bearing field are skipped with a warning.
        """
        items = []
        for index, raw in enumerate(raw_items):
            if not has_identity_fields(raw):
                self.logger.warning(
                    f"Skipping entry #{index}: no id, guid, link, title or date",
                    extra={"feed_id": feed_id},
                )
                continue
            items.append(self.extract(raw, feed_id))
        return items

    def _derive_snippet(self, data: Dict[str, Any], text_fields: Dict[str, str]) -> Optional[str]:
        for field in ("content:encoded", "content", "summary", "description"):
            text = text_fields.get(f"{field}_text")
            if text == CONVERSION_ERROR_TEXT:
                continue
            if text is None:
                text = data.get(field)
            if text:
                return make_snippet(text, SNIPPET_LENGTH)
        return None


def detect_fields(items: List[CanonicalItem]) -> List[str]:
    """Fields a user can pick for display, based on the first item.

    Well-known fields are always offered. Structured values and
    namespaced keys (``media:*``, ``content:encoded``) are left out.
    """
    if not items:
        return list(DEFAULT_SELECTED_FIELDS)

    sample = items[0].to_dict()
    keys = list(dict.fromkeys([*sample.keys(), *WELL_KNOWN_FIELDS]))
    return [
        key
        for key in keys
        if ":" not in key
        and key != "$"
        and not isinstance(sample.get(key), (dict, list))
    ]


def sample_fields(items: List[CanonicalItem]) -> List[str]:
    """All keys of the first item's JSON shape, as discovered by a scan."""
    if not items:
        return []
    return list(items[0].to_dict().keys())

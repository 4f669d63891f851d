"""
Item Identity
=============

Stable identifiers for feed items. Feeds often rotate tracking parameters
or flip trailing slashes between fetches; normalizing guids and links
before they enter a feed's history keeps those items from being announced
twice.

Precedence: id, then guid, then link, then a SHA-1 over
``title|isoDate`` (falling back to ``pubDate``).
"""

import hashlib
import html
from typing import Optional, Mapping, Any
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

TRACKING_PARAMS = frozenset({"fbclid", "gclid", "mc_cid", "mc_eid", "ref"})
TRACKING_PREFIXES = ("utm_",)


def decode_html_entities(value: str) -> str:
    """Decode HTML entities (``&amp;``, ``&#38;`` ...) in ``value``."""
    return html.unescape(value)


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def normalize_url(value: str) -> str:
    """Normalize a URL-ish identifier.

    Strings without both a scheme and a host are not URLs; they come back
    entity-decoded and stripped but otherwise untouched. URLs get a
    lower-cased scheme and host, lose tracking parameters, have their
    remaining query parameters sorted by key and lose every trailing slash,
    so ``/a//`` and ``/a`` name the same item (an empty path becomes ``/``).

    The function is idempotent: ``normalize_url(normalize_url(x)) ==
    normalize_url(x)``.
    """
    decoded = decode_html_entities(value).strip()
    try:
        parts = urlsplit(decoded)
    except ValueError:
        return decoded

    if not parts.scheme or not parts.netloc:
        return decoded

    path = parts.path.rstrip("/") or "/"

    params = [
        (key, val)
        for key, val in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    params.sort(key=lambda pair: pair[0])

    return urlunsplit(
        (
            parts.scheme.lower(),
            parts.netloc.lower(),
            path,
            urlencode(params),
            parts.fragment,
        )
    )


def _text(raw: Mapping[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


def has_identity_fields(raw: Mapping[str, Any]) -> bool:
    """Whether the item carries anything an identifier can be built from."""
    return any(
        _text(raw, key) for key in ("id", "guid", "link", "title", "isoDate", "pubDate")
    )


def stable_item_identifier(raw: Mapping[str, Any]) -> str:
    """Compute the stable identifier of a raw parsed item.

    Args:
        raw: Parsed item mapping using external field names

    Returns:
        Non-empty identifier string
    """
    for key in ("id", "guid", "link"):
        value = _text(raw, key)
        if value:
            normalized = normalize_url(value)
            if normalized:
                return normalized

    title = _text(raw, "title") or ""
    date = _text(raw, "isoDate") or _text(raw, "pubDate") or ""
    return hashlib.sha1(f"{title}|{date}".encode("utf-8")).hexdigest()

"""
Notification Formatters
=======================

Shapes one item into a channel payload: a Discord embed dict, or a
Telegram MarkdownV2 message with a plain-text twin for the fallback send.

Shared rules:
- ``title``/``link`` become the headline (link stands in when title is not selected)
- other selected fields follow in selection order, content-bearing fields
  cut at ``content_field_limit`` and the rest at ``metadata_field_limit``
- ``show_all_prefixes`` puts the capitalized field name before each value
- date fields are only shown when they say more than the embed timestamp
- Telegram bodies stop at ``telegram_message_limit``, the last field cut
  before escaping
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Any, List, Optional, Tuple

from ..config.settings import DeliverySettings
from ..database.models import CanonicalItem
from ..ingestion.field_extractor import parse_item_date

# Fields rendered with the long limit
CONTENT_FIELDS = frozenset(
    {
        "title",
        "link",
        "contentSnippet",
        "content",
        "summary",
        "description",
        "content:encoded",
        "summary_text",
        "content_text",
        "description_text",
        "content:encoded_text",
    }
)

DATE_FIELDS = ("pubDate", "isoDate")

DEFAULT_ITEM_TITLE = "New RSS Item"

MARKDOWN_V2_SPECIALS = re.compile(r"([_*\[\]()~`>#+=|{}.!\\-])")


@dataclass
class Notification:
    """One item addressed to one integration."""

    feed_id: str
    feed_title: str
    item: CanonicalItem
    selected_fields: List[str] = field(default_factory=list)
    show_all_prefixes: bool = False
    integration_id: Optional[str] = None


def truncate(value: str, limit: int) -> str:
    """Cut ``value`` at ``limit`` characters, marking the cut with ``...``."""
    if len(value) <= limit:
        return value
    return value[:limit] + "..."


def field_label(name: str) -> str:
    return name[:1].upper() + name[1:]


def escape_markdown_v2(text: str) -> str:
    """Escape every character Telegram's MarkdownV2 treats as markup."""
    return MARKDOWN_V2_SPECIALS.sub(r"\\\1", text)


def encode_link_target(url: str) -> str:
    """Percent-encode parentheses so they cannot close a markdown link."""
    return url.replace("(", "%28").replace(")", "%29")


def _date_adds_information(item: CanonicalItem, name: str) -> bool:
    if name == "isoDate":
        return not item.iso_date
    # pubDate
    return not item.iso_date or item.pub_date != item.iso_date


def _render_date(value: str) -> str:
    parsed = parse_item_date(value)
    if parsed is None:
        return value
    return parsed.strftime("%Y-%m-%d %H:%M UTC")


def body_fields(
    item: CanonicalItem, selected_fields: List[str], settings: DeliverySettings
) -> List[Tuple[str, str]]:
    """Selected non-headline fields as ``(name, rendered value)`` pairs."""
    rendered = []
    for name in selected_fields:
        if name in ("title", "link"):
            continue
        value = item.get_field(name)
        if not value:
            continue

        if name in DATE_FIELDS:
            if _date_adds_information(item, name):
                rendered.append((name, _render_date(value)))
            continue

        limit = (
            settings.content_field_limit
            if name in CONTENT_FIELDS
            else settings.metadata_field_limit
        )
        rendered.append((name, truncate(value, limit)))
    return rendered


def headline(item: CanonicalItem, selected_fields: List[str]) -> Tuple[Optional[str], Optional[str]]:
    """Item title and link as far as the selection allows."""
    title = None
    link = None
    if "title" in selected_fields:
        title = item.title or DEFAULT_ITEM_TITLE
    if "link" in selected_fields:
        link = item.link or None
    return title, link


def build_discord_embed(notification: Notification, settings: DeliverySettings) -> Dict[str, Any]:
    """Build the embed object for a Discord webhook payload."""
    item = notification.item
    timestamp = parse_item_date(item.iso_date) or datetime.now(timezone.utc)
    embed: Dict[str, Any] = {
        "color": settings.embed_color,
        "author": {"name": notification.feed_title[: settings.embed_title_limit]},
        "timestamp": timestamp.isoformat(),
        "footer": {"text": settings.footer_text},
    }

    title, link = headline(item, notification.selected_fields)
    if title:
        embed["title"] = title[: settings.embed_title_limit]
        if link:
            embed["url"] = link
    elif link:
        embed["title"] = link[: settings.embed_title_limit]
        embed["url"] = link

    lines = []
    for name, value in body_fields(item, notification.selected_fields, settings):
        if notification.show_all_prefixes:
            lines.append(f"**{field_label(name)}:** {value}")
        else:
            lines.append(value)

    description = "\n".join(lines).strip()
    if description:
        embed["description"] = description[: settings.embed_body_limit]

    return embed


def build_discord_payload(notification: Notification, settings: DeliverySettings) -> Dict[str, Any]:
    return {"embeds": [build_discord_embed(notification, settings)]}


def _fitting_prefix(text: str, budget: int, escape: Callable[[str], str]) -> str:
    """Longest prefix of ``text`` whose escaped form is at most ``budget`` characters."""
    used = 0
    for index, char in enumerate(text):
        used += len(escape(char))
        if used > budget:
            return text[:index]
    return text


def _append_capped(
    parts: List[str], opener: str, value: str, closer: str, limit: int, escape: Callable[[str], str]
) -> bool:
    """Append one body line, cutting ``value`` so the joined message stays within ``limit``.

    The raw value is cut before escaping so no escape sequence is split.
    Returns False once the message is full.
    """
    used = len("\n".join(parts)) + 1 + len(opener) + len(closer)
    escaped = escape(value)
    if used + len(escaped) <= limit:
        parts.append(opener + escaped + closer)
        return True

    marker = escape("...")
    room = limit - used - len(marker)
    if room > 0:
        cut = _fitting_prefix(value, room, escape)
        parts.append(opener + escape(cut) + marker + closer)
    return False


def build_telegram_message(notification: Notification, settings: DeliverySettings) -> str:
    """MarkdownV2 message text."""
    item = notification.item
    parts = [f"*{escape_markdown_v2(notification.feed_title)}*"]

    title, link = headline(item, notification.selected_fields)
    if title and link:
        parts.append(f"[{escape_markdown_v2(title)}]({encode_link_target(link)})\n")
    elif title:
        parts.append(f"*{escape_markdown_v2(title)}*\n")
    elif link:
        parts.append(f"[{escape_markdown_v2(link)}]({encode_link_target(link)})\n")

    limit = settings.telegram_message_limit
    for name, value in body_fields(item, notification.selected_fields, settings):
        if notification.show_all_prefixes:
            opener, closer = f"*{escape_markdown_v2(field_label(name))}*: ", ""
        else:
            opener, closer = "_", "_"
        if not _append_capped(parts, opener, value, closer, limit, escape_markdown_v2):
            break

    return "\n".join(parts).strip()


def build_telegram_plain_message(notification: Notification, settings: DeliverySettings) -> str:
    """Same content as :func:`build_telegram_message` without any markup."""
    item = notification.item
    parts = [notification.feed_title]

    title, link = headline(item, notification.selected_fields)
    if title:
        parts.append(title)
    if link:
        parts.append(link)
    parts[-1] += "\n"

    limit = settings.telegram_message_limit
    for name, value in body_fields(item, notification.selected_fields, settings):
        opener = f"{field_label(name)}: " if notification.show_all_prefixes else ""
        if not _append_capped(parts, opener, value, "", limit, str):
            break

    return "\n".join(parts).strip()

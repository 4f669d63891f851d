"""
FeedRelay Data Models
=====================

Pydantic data models for feeds, canonical items, keyword routes,
integrations and scan statistics. Persisted models know how to build
themselves from a database row (list fields are stored as JSON text).
"""

import json
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_feed_id() -> str:
    """Random 16 hex character feed identifier."""
    return secrets.token_hex(8)


# Field names a user may select for display even before a scan has
# discovered them on a live item.
WELL_KNOWN_FIELDS = (
    "title",
    "link",
    "pubDate",
    "content",
    "contentSnippet",
    "isoDate",
    "guid",
    "creator",
    "author",
)

DEFAULT_SELECTED_FIELDS = ["title", "link", "pubDate", "contentSnippet"]

USER_EDITABLE_FIELDS = frozenset(
    {
        "title",
        "url",
        "interval",
        "paused",
        "selected_fields",
        "available_fields",
        "associated_integrations",
        "show_all_prefixes",
    }
)

SCAN_DERIVED_FIELDS = frozenset(
    {
        "status",
        "status_details",
        "last_checked",
        "history",
        "available_fields",
        "sample_items",
        "selected_fields",
    }
)


class FeedStatus(str, Enum):
    """Lifecycle status of a feed."""
    PENDING = "pending"
    OK = "ok"
    ERROR = "error"


class MatchMode(str, Enum):
    """How a keyword route compares its keyword to item text."""
    LITERAL = "literal"
    REGEX = "regex"


class IntegrationType(str, Enum):
    """Outbound channel types."""
    DISCORD = "discord"
    TELEGRAM = "telegram"


class StatsRange(str, Enum):
    """Windows understood by the stats read path."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all-time"


def _load_json_list(value: Any) -> List[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return json.loads(value)
    return list(value)


class Feed(BaseModel):
    """A configured syndication source and its scan state."""
    id: str = Field(default_factory=new_feed_id, description="Feed identifier")
    title: str = Field(..., min_length=1, max_length=500, description="Display title")
    url: str = Field(..., min_length=1, description="Feed source URL")
    interval: int = Field(default=60, ge=1, description="Poll interval in minutes")
    paused: bool = Field(default=False, description="Whether polling is suspended")

    status: FeedStatus = Field(default=FeedStatus.PENDING, description="Result of the last scan")
    status_details: str = Field(default="", description="Free-text detail for the status")
    last_checked: Optional[datetime] = Field(default=None, description="When the last scan finished")
    history: List[str] = Field(default_factory=list, description="Seen item identifiers, oldest first")

    selected_fields: List[str] = Field(default_factory=list, description="Fields rendered in notifications")
    available_fields: List[str] = Field(default_factory=list, description="Fields discovered on items")
    sample_items: List[Dict[str, Any]] = Field(default_factory=list, description="Recent canonical items")
    associated_integrations: List[str] = Field(default_factory=list, description="Default notification targets")
    show_all_prefixes: bool = Field(default=False, description="Prefix every rendered field with its name")

    created_at: Optional[datetime] = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = Field(default_factory=utc_now)

    @field_validator("title", "url")
    @classmethod
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("value cannot be empty")
        return v

    @field_validator(
        "history", "selected_fields", "available_fields",
        "sample_items", "associated_integrations", mode="before",
    )
    @classmethod
    def parse_json_lists(cls, v):
        """Accept the JSON text stored in the database."""
        return _load_json_list(v)

    @classmethod
    def from_db_row(cls, row: Dict[str, Any]) -> "Feed":
        """Create Feed from database row."""
        data = dict(row)
        data["paused"] = bool(data.get("paused"))
        data["show_all_prefixes"] = bool(data.get("show_all_prefixes"))
        return cls(**data)

    def to_public_dict(self) -> Dict[str, Any]:
        """JSON-ready representation with list fields expanded."""
        return self.model_dump(mode="json")

    def __str__(self) -> str:
        return f"Feed({self.id}:{self.title})"


# External field name -> CanonicalItem attribute for the fixed known-field set
ITEM_FIELD_ATTRS = {
    "id": "id",
    "title": "title",
    "link": "link",
    "guid": "guid",
    "pubDate": "pub_date",
    "isoDate": "iso_date",
    "summary": "summary",
    "content": "content",
    "content:encoded": "content_encoded",
    "description": "description",
    "contentSnippet": "content_snippet",
    "author": "author",
    "creator": "creator",
}


class CanonicalItem(BaseModel):
    """Normalized representation of one raw feed item.

    Well-known attributes are typed fields; anything format-specific the
    parser produced lands in ``extras``. External field names (``pubDate``,
    ``content:encoded`` ...) are accepted as aliases and resolved by
    :meth:`get_field`.
    """
    id: str = Field(..., min_length=1, description="Stable item identifier")
    feed_id: str = Field(..., description="Owning feed")
    title: Optional[str] = None
    link: Optional[str] = None
    guid: Optional[str] = None
    pub_date: Optional[str] = Field(default=None, alias="pubDate")
    iso_date: Optional[str] = Field(default=None, alias="isoDate")
    published_at: Optional[datetime] = Field(default=None, description="Normalized UTC publish time")
    summary: Optional[str] = None
    content: Optional[str] = None
    content_encoded: Optional[str] = Field(default=None, alias="content:encoded")
    description: Optional[str] = None
    content_snippet: Optional[str] = Field(default=None, alias="contentSnippet")
    author: Optional[str] = None
    creator: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    text_fields: Dict[str, str] = Field(default_factory=dict, description="Plain-text `<field>_text` derivatives")
    extras: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    def get_field(self, name: str) -> Optional[str]:
        """Resolve an external field name to its string value.

        Args:
            name: Field name as users select it (``title``, ``pubDate``,
                ``summary_text``, ``categories`` or a dotted path into extras)

        Returns:
            String value, or None when the item does not carry the field
        """
        attr = ITEM_FIELD_ATTRS.get(name)
        if attr is not None:
            value = getattr(self, attr)
            return value if value else None

        if name in self.text_fields:
            return self.text_fields[name] or None

        if name == "categories":
            return ", ".join(self.categories) if self.categories else None

        value: Any = self.extras
        for part in name.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return None

        if value is None or value == "" or value == {} or value == []:
            return None
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False, default=str)
        return str(value)

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape used for samples, field discovery and events."""
        data: Dict[str, Any] = {}
        for external, attr in ITEM_FIELD_ATTRS.items():
            value = getattr(self, attr)
            if value is not None:
                data[external] = value
        if self.categories:
            data["categories"] = list(self.categories)
        data.update(self.text_fields)
        for key, value in self.extras.items():
            data.setdefault(key, value)
        return data


class KeywordRoute(BaseModel):
    """Rule sending matching items of one feed to one integration."""
    id: Optional[int] = Field(default=None, description="Database primary key")
    feed_id: str = Field(..., description="Owning feed")
    keyword: str = Field(..., min_length=1, description="Literal text or regular expression")
    match_mode: MatchMode = Field(default=MatchMode.LITERAL)
    case_sensitive: bool = Field(default=False)
    is_active: bool = Field(default=True)
    integration_id: str = Field(..., description="Target integration")
    fields: List[str] = Field(default_factory=list, description="Empty or ['all'] searches the standard set")
    created_at: Optional[datetime] = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = Field(default_factory=utc_now)

    @field_validator("fields", mode="before")
    @classmethod
    def parse_fields(cls, v):
        return [f.strip() for f in _load_json_list(v) if isinstance(f, str) and f.strip()]

    @property
    def is_regex(self) -> bool:
        return self.match_mode == MatchMode.REGEX

    @classmethod
    def from_db_row(cls, row: Dict[str, Any]) -> "KeywordRoute":
        data = dict(row)
        data["case_sensitive"] = bool(data.get("case_sensitive"))
        data["is_active"] = bool(data.get("is_active"))
        return cls(**data)

    def __str__(self) -> str:
        return f"KeywordRoute({self.feed_id}:{self.keyword!r}->{self.integration_id})"


class Integration(BaseModel):
    """Outbound notification destination."""
    id: str = Field(default_factory=new_feed_id, description="Integration identifier")
    name: str = Field(..., min_length=1, max_length=200)
    type: IntegrationType
    webhook_url: Optional[str] = Field(default=None, description="Discord webhook URL")
    token: Optional[str] = Field(default=None, description="Telegram bot token")
    chat_id: Optional[str] = Field(default=None, description="Telegram chat id")
    created_at: Optional[datetime] = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_credentials(self):
        """Each channel type needs its own credentials."""
        if self.type == IntegrationType.DISCORD and not self.webhook_url:
            raise ValueError("Discord integrations require webhook_url")
        if self.type == IntegrationType.TELEGRAM and not (self.token and self.chat_id):
            raise ValueError("Telegram integrations require token and chat_id")
        return self

    @classmethod
    def from_db_row(cls, row: Dict[str, Any]) -> "Integration":
        return cls(**dict(row))

    def __str__(self) -> str:
        return f"Integration({self.type.value}:{self.name})"


class ScanStat(BaseModel):
    """Metrics for one successful scan."""
    id: Optional[int] = Field(default=None, description="Database primary key")
    feed_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    items_processed: int = Field(default=1, ge=0, description="Scans, not raw items")
    bytes_transferred: int = Field(default=0, ge=0)
    processing_time_ms: int = Field(default=0, ge=0)

"""
FeedRelay - Feed Ingestion and Notification Relay
=================================================

Polls RSS/Atom feeds on per-feed intervals and relays new items to Discord
webhooks and Telegram chats.

Main Components:
- Database: SQLite with connection pooling and schema management
- Configuration: Environment variables and .env with Pydantic validation
- Ingestion: Fetching, parsing, identity normalization, field extraction
- Processing: Bounded per-feed history and new-item classification
- Routing: Keyword routes from feed content to integrations
- Delivery: Paced per-target queues with Discord and Telegram adapters
- Scheduler: Independent polling loop per feed
"""

__version__ = "1.0.0"
__author__ = "FeedRelay Development Team"
__description__ = "Feed ingestion engine with keyword-routed notifications"

# Core imports for easy access
from .config.settings import get_settings
from .database.connection import get_db_manager
from .database.schema import DatabaseSchema
from .utils.logging import configure_application_logging, get_logger_for_component
from .utils.exceptions import FeedRelayError

__all__ = [
    "get_settings",
    "get_db_manager",
    "DatabaseSchema",
    "configure_application_logging",
    "get_logger_for_component",
    "FeedRelayError",
]

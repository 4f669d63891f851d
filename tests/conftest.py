"""
PyTest Configuration and Fixtures
=================================

Shared fixtures and test doubles for FeedRelay tests.

- Temporary file databases with the full schema
- A fake fetcher serving canned raw items per URL
- A recording channel standing in for Discord and Telegram
- A recording event publisher
"""

import asyncio
import os
import sys
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables before any imports
_TEST_DIR = Path(tempfile.gettempdir()) / "feedrelay_tests"
os.environ["FEEDRELAY_DATABASE__PATH"] = str(_TEST_DIR / "feedrelay_test.db")
os.environ["FEEDRELAY_LOGGING__FILE_PATH"] = ""
os.environ["FEEDRELAY_DEBUG"] = "true"


# ============================================================================
# Settings and Database Fixtures
# ============================================================================


@pytest.fixture
def test_settings(tmp_path):
    """Settings with short send spacing and timers that never fire on their own."""
    from feedrelay.config.settings import (
        FeedRelaySettings,
        DatabaseSettings,
        DeliverySettings,
        LoggingSettings,
        SchedulerSettings,
    )

    return FeedRelaySettings(
        database=DatabaseSettings(path=str(tmp_path / "feedrelay_test.db"), pool_size=2),
        delivery=DeliverySettings(min_send_interval_seconds=0.05),
        scheduler=SchedulerSettings(
            startup_delay_min_seconds=600,
            startup_delay_max_seconds=600,
            new_feed_delay_seconds=600,
        ),
        logging=LoggingSettings(file_path=None),
    )


@pytest.fixture
def test_database(test_settings):
    """Path to a fresh database with the full schema."""
    from feedrelay.database.schema import DatabaseSchema

    DatabaseSchema(test_settings.database.path).create_tables()
    return test_settings.database.path


@pytest.fixture
def db_connection(test_database):
    """Create a database connection manager for testing."""
    from feedrelay.database.connection import DatabaseConnection

    connection = DatabaseConnection(test_database, pool_size=2)
    yield connection

    # Cleanup connections
    connection.close_all_connections()


@pytest.fixture
def feed_repository(db_connection):
    from feedrelay.storage.feed_repository import FeedRepository

    return FeedRepository(db_connection)


@pytest.fixture
def integration_repository(db_connection):
    from feedrelay.storage.integration_repository import IntegrationRepository

    return IntegrationRepository(db_connection)


@pytest.fixture
def route_repository(db_connection):
    from feedrelay.storage.keyword_route_repository import KeywordRouteRepository

    return KeywordRouteRepository(db_connection)


@pytest.fixture
def stats_repository(db_connection):
    from feedrelay.storage.stats_repository import StatsRepository

    return StatsRepository(db_connection)


# ============================================================================
# Sample Data
# ============================================================================


def make_raw_items(count: int, start: int = 1, base: str = "https://example.com/posts") -> List[Dict[str, Any]]:
    """Raw parsed items, newest first the way feeds list them."""
    items = []
    for n in range(start, start + count):
        published = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc) + timedelta(hours=n)
        items.append(
            {
                "title": f"Post {n}",
                "link": f"{base}/{n}",
                "guid": f"{base}/{n}",
                "isoDate": published.isoformat().replace("+00:00", "Z"),
                "summary": f"<p>Summary of post {n}</p>",
            }
        )
    return list(reversed(items))


@pytest.fixture
def raw_items():
    return make_raw_items(3)


@pytest.fixture
def raw_item_factory():
    """``make_raw_items(count, start=1, base=...)`` for tests needing more control."""
    return make_raw_items


@pytest.fixture
def sample_feed():
    from feedrelay.database.models import Feed

    return Feed(
        title="Example Blog",
        url="https://example.com/feed.xml",
        interval=60,
        selected_fields=["title", "link", "contentSnippet"],
    )


@pytest.fixture
def discord_integration():
    from feedrelay.database.models import Integration, IntegrationType

    return Integration(
        name="Team Discord",
        type=IntegrationType.DISCORD,
        webhook_url="https://discord.com/api/webhooks/1/abc",
    )


@pytest.fixture
def telegram_integration():
    from feedrelay.database.models import Integration, IntegrationType

    return Integration(
        name="Alerts Chat",
        type=IntegrationType.TELEGRAM,
        token="123456:ABC-DEF1234ghIkl-zyx57W2v1u123ew11_test",
        chat_id="-1001234567890",
    )


# ============================================================================
# Test Doubles
# ============================================================================


class FakeFetcher:
    """Serves canned items per URL instead of downloading anything.

    Set ``gate`` to an unset asyncio.Event to hold fetches in flight.
    """

    def __init__(self):
        self.responses: Dict[str, Any] = {}
        self.default_items: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.bytes_transferred = 2048

    def set_items(self, url: str, items: List[Dict[str, Any]]) -> None:
        self.responses[url] = list(items)

    def fail(self, url: str, error: Exception) -> None:
        self.responses[url] = error

    async def fetch(self, url: str):
        from feedrelay.ingestion.feed_fetcher import FetchedFeed

        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()

        response = self.responses.get(url, self.default_items)
        if isinstance(response, Exception):
            raise response
        return FetchedFeed(
            url=url,
            title="Fake Feed",
            items=[dict(item) for item in response],
            bytes_transferred=self.bytes_transferred,
        )


@dataclass
class SentMessage:
    integration_id: str
    target_key: str
    feed_id: str
    title: Optional[str]
    started_at: float
    finished_at: float


class RecordingChannel:
    """Collects what adapters built by :meth:`adapter_factory` send."""

    def __init__(self, send_delay: float = 0.0):
        self.sent: List[SentMessage] = []
        self.failing_integrations = set()
        self.send_delay = send_delay
        self.created = 0

    def titles(self, integration_id: Optional[str] = None) -> List[Optional[str]]:
        return [
            message.title
            for message in self.sent
            if integration_id is None or message.integration_id == integration_id
        ]

    def adapter_factory(self, integration, settings=None):
        from feedrelay.database.models import IntegrationType
        from feedrelay.delivery.channels import ChannelAdapter
        from feedrelay.utils.exceptions import NotifyError

        channel = self

        class RecordingAdapter(ChannelAdapter):
            channel_type = IntegrationType(integration.type)

            @property
            def target_key(self) -> str:
                if self.integration.type == IntegrationType.DISCORD:
                    return f"discord:{self.integration.webhook_url}"
                return f"telegram:{self.integration.token}:{self.integration.chat_id}"

            async def send(self, notification) -> None:
                started = time.monotonic()
                if channel.send_delay:
                    await asyncio.sleep(channel.send_delay)
                if self.integration.id in channel.failing_integrations:
                    raise NotifyError(
                        "HTTP 400: rejected",
                        integration_id=self.integration.id,
                        channel_type=self.integration.type.value,
                    )
                channel.sent.append(
                    SentMessage(
                        integration_id=self.integration.id,
                        target_key=self.target_key,
                        feed_id=notification.feed_id,
                        title=notification.item.title,
                        started_at=started,
                        finished_at=time.monotonic(),
                    )
                )

        self.created += 1
        return RecordingAdapter(integration, settings)


class RecordingEventPublisher:
    """Keeps every scheduler event for inspection."""

    def __init__(self):
        self.feed_lists: List[List[Dict[str, Any]]] = []
        self.new_items: List[Dict[str, Any]] = []

    def feeds_changed(self, feeds):
        self.feed_lists.append(feeds)

    def new_item(self, event):
        self.new_items.append(event)


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def recording_channel():
    return RecordingChannel()


@pytest.fixture
def recording_channel_factory():
    return RecordingChannel


@pytest.fixture
def recording_events():
    return RecordingEventPublisher()


# ============================================================================
# Wired Components
# ============================================================================


@pytest.fixture
def dispatcher(integration_repository, recording_channel, test_settings):
    from feedrelay.delivery.dispatcher import NotificationDispatcher

    return NotificationDispatcher(
        integration_repository.get_integration,
        settings=test_settings.delivery,
        adapter_factory=recording_channel.adapter_factory,
    )


@pytest.fixture
def stats_recorder(stats_repository):
    from feedrelay.stats.recorder import StatsRecorder

    return StatsRecorder(stats_repository)


@pytest_asyncio.fixture
async def scheduler(
    feed_repository,
    route_repository,
    dispatcher,
    stats_recorder,
    fake_fetcher,
    recording_events,
    test_settings,
):
    from feedrelay.scheduler.feed_scheduler import FeedScheduler

    feed_scheduler = FeedScheduler(
        feed_repository,
        route_repository,
        dispatcher,
        stats_recorder,
        fetcher=fake_fetcher,
        events=recording_events,
        settings=test_settings,
    )
    yield feed_scheduler

    await feed_scheduler.stop()
    await dispatcher.close()


@pytest_asyncio.fixture
async def application(test_settings, db_connection, fake_fetcher, recording_channel, recording_events):
    from feedrelay.application import Application

    app = Application.build(
        settings=test_settings,
        db=db_connection,
        fetcher=fake_fetcher,
        adapter_factory=recording_channel.adapter_factory,
        events=recording_events,
    )
    yield app

    await app.shutdown(drain=False)

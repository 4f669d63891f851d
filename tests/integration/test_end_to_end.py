"""
End-to-End Tests
================

Operator actions through the services, scans through the scheduler,
notifications through the dispatcher and stats in the database, with only
the network replaced.
"""

import asyncio

import pytest

from feedrelay.database.models import FeedStatus

pytestmark = pytest.mark.integration

FEED_URL = "https://example.com/feed.xml"


async def scan_and_deliver(app, feed_id):
    report = await app.scheduler.trigger_scan_now(feed_id)
    await asyncio.wait_for(app.dispatcher.wait_idle(), 5)
    return report


@pytest.fixture
def feed_source(fake_fetcher, raw_item_factory):
    fake_fetcher.set_items(FEED_URL, raw_item_factory(3))
    return fake_fetcher


class TestFeedLifecycle:
    """From adding a feed to notifications and statistics."""

    @pytest.mark.asyncio
    async def test_first_scan_announces_latest_items(self, application, feed_source, recording_channel):
        discord = application.integration_service.add(
            "Team", "discord", webhook_url="https://discord.com/api/webhooks/1/abc"
        )
        feed = await application.feed_service.add_feed(
            "Example Blog", FEED_URL, interval=60, associated_integrations=[discord.id]
        )

        report = await scan_and_deliver(application, feed.id)

        assert report.success
        stored = application.feed_service.get_feed(feed.id)
        assert stored.status == FeedStatus.OK
        assert len(stored.history) == 3
        assert recording_channel.titles(discord.id) == ["Post 2", "Post 3"]
        assert len(application.stats.get_stats("all-time", feed_id=feed.id)) == 1
        assert application.scheduler.timer_delay(feed.id) == 3600

    @pytest.mark.asyncio
    async def test_later_scans_announce_only_new_items(
        self, application, feed_source, raw_item_factory, recording_channel
    ):
        discord = application.integration_service.add(
            "Team", "discord", webhook_url="https://discord.com/api/webhooks/1/abc"
        )
        feed = await application.feed_service.add_feed(
            "Example Blog", FEED_URL, associated_integrations=[discord.id]
        )
        await scan_and_deliver(application, feed.id)

        feed_source.set_items(FEED_URL, raw_item_factory(4))
        report = await scan_and_deliver(application, feed.id)

        assert [item.title for item in report.new_items] == ["Post 4"]
        assert recording_channel.titles() == ["Post 2", "Post 3", "Post 4"]
        assert len(application.feed_service.get_feed(feed.id).history) == 4

    @pytest.mark.asyncio
    async def test_keyword_route_redirects_matching_items(
        self, application, feed_source, recording_channel
    ):
        discord = application.integration_service.add(
            "Team", "discord", webhook_url="https://discord.com/api/webhooks/1/abc"
        )
        telegram = application.integration_service.add(
            "Alerts", "telegram", token="123:abc", chat_id="-100200"
        )
        feed = await application.feed_service.add_feed(
            "Example Blog", FEED_URL, associated_integrations=[discord.id]
        )
        application.route_service.create_route(feed.id, "post 2", telegram.id)

        await scan_and_deliver(application, feed.id)

        assert recording_channel.titles(telegram.id) == ["Post 2"]
        assert recording_channel.titles(discord.id) == ["Post 3"]

    @pytest.mark.asyncio
    async def test_failed_scan_keeps_history_and_records_no_stat(self, application, feed_source):
        from feedrelay.utils.exceptions import FetchError

        feed = await application.feed_service.add_feed("Example Blog", FEED_URL)
        await scan_and_deliver(application, feed.id)

        feed_source.fail(FEED_URL, FetchError("HTTP 502: Bad Gateway", feed_url=FEED_URL))
        report = await scan_and_deliver(application, feed.id)

        assert not report.success
        stored = application.feed_service.get_feed(feed.id)
        assert stored.status == FeedStatus.ERROR
        assert stored.status_details.startswith("Error: ")
        assert len(stored.history) == 3
        assert len(application.stats.get_stats("all-time", feed_id=feed.id)) == 1

    @pytest.mark.asyncio
    async def test_deleting_feed_cleans_up(self, application, feed_source):
        feed = await application.feed_service.add_feed("Example Blog", FEED_URL)
        await scan_and_deliver(application, feed.id)

        await application.feed_service.delete_feed(feed.id)

        assert application.feed_service.list_feeds() == []
        assert application.stats.get_stats("all-time") == []
        assert not application.scheduler.is_timer_armed(feed.id)

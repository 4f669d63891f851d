"""
Tests for Repository Components
===============================

Feed, integration and keyword route repositories against a temporary
SQLite database.
"""

from datetime import datetime, timezone

import pytest

from feedrelay.database.models import Feed, FeedStatus, IntegrationType, KeywordRoute
from feedrelay.database.schema import DatabaseSchema


class TestFeedRepository:
    """Test suite for FeedRepository."""

    def test_create_and_get(self, feed_repository, sample_feed):
        feed_id = feed_repository.create_feed(sample_feed)

        retrieved = feed_repository.get_feed(feed_id)

        assert retrieved.id == sample_feed.id
        assert retrieved.title == "Example Blog"
        assert retrieved.status == FeedStatus.PENDING
        assert retrieved.selected_fields == ["title", "link", "contentSnippet"]
        assert retrieved.history == []
        assert retrieved.paused is False

    def test_get_missing_returns_none(self, feed_repository):
        assert feed_repository.get_feed("does-not-exist") is None

    def test_list_feeds_in_creation_order(self, feed_repository):
        first = Feed(
            title="First",
            url="https://one.example.com/rss",
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        second = Feed(
            title="Second",
            url="https://two.example.com/rss",
            created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
        )
        feed_repository.create_feed(first)
        feed_repository.create_feed(second)

        assert [feed.title for feed in feed_repository.list_feeds()] == ["First", "Second"]

    def test_user_edit_cannot_touch_scan_state(self, feed_repository, sample_feed):
        feed_repository.create_feed(sample_feed)

        assert feed_repository.update_user_fields(
            sample_feed.id, title="Renamed", interval=5, status=FeedStatus.ERROR, history=["x"]
        )

        stored = feed_repository.get_feed(sample_feed.id)
        assert stored.title == "Renamed"
        assert stored.interval == 5
        assert stored.status == FeedStatus.PENDING
        assert stored.history == []

    def test_user_edit_with_only_scan_fields_is_rejected(self, feed_repository, sample_feed):
        feed_repository.create_feed(sample_feed)
        assert feed_repository.update_user_fields(sample_feed.id, status=FeedStatus.OK) is False

    def test_scan_state_cannot_touch_user_fields(self, feed_repository, sample_feed):
        feed_repository.create_feed(sample_feed)
        checked = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)

        feed_repository.update_scan_state(
            sample_feed.id,
            status=FeedStatus.OK,
            status_details="Successfully fetched 2 items.",
            last_checked=checked,
            history=["a", "b"],
            sample_items=[{"title": "A", "enclosure": {"url": "u"}}],
            title="Not allowed",
            interval=1,
        )

        stored = feed_repository.get_feed(sample_feed.id)
        assert stored.status == FeedStatus.OK
        assert stored.last_checked == checked
        assert stored.history == ["a", "b"]
        assert stored.sample_items == [{"title": "A", "enclosure": {"url": "u"}}]
        assert stored.title == "Example Blog"
        assert stored.interval == 60

    def test_update_unknown_feed(self, feed_repository):
        assert feed_repository.update_user_fields("missing", title="x") is False

    def test_delete_cascades_routes(
        self, feed_repository, integration_repository, route_repository, sample_feed, discord_integration
    ):
        feed_repository.create_feed(sample_feed)
        integration_repository.create_integration(discord_integration)
        route_repository.create_route(
            KeywordRoute(feed_id=sample_feed.id, keyword="python", integration_id=discord_integration.id)
        )

        assert feed_repository.delete_feed(sample_feed.id) is True
        assert feed_repository.delete_feed(sample_feed.id) is False
        assert route_repository.get_routes_for_feed(sample_feed.id, active_only=False) == []

    def test_remove_integration_reference(self, feed_repository, sample_feed):
        tagged = sample_feed.model_copy(update={"associated_integrations": ["int-a", "int-b"]})
        untouched = Feed(title="Other", url="https://other.example.com/rss", associated_integrations=["int-b"])
        feed_repository.create_feed(tagged)
        feed_repository.create_feed(untouched)

        assert feed_repository.remove_integration_reference("int-a") == 1
        assert feed_repository.get_feed(tagged.id).associated_integrations == ["int-b"]
        assert feed_repository.get_feed(untouched.id).associated_integrations == ["int-b"]


class TestIntegrationRepository:
    """Test suite for IntegrationRepository."""

    def test_crud(self, integration_repository, discord_integration):
        integration_repository.create_integration(discord_integration)

        retrieved = integration_repository.get_integration(discord_integration.id)
        assert retrieved.type == IntegrationType.DISCORD
        assert retrieved.webhook_url == discord_integration.webhook_url

        renamed = retrieved.model_copy(update={"name": "Renamed"})
        assert integration_repository.update_integration(renamed)
        assert integration_repository.get_integration(discord_integration.id).name == "Renamed"

        assert integration_repository.delete_integration(discord_integration.id)
        assert integration_repository.get_integration(discord_integration.id) is None
        assert integration_repository.delete_integration(discord_integration.id) is False

    def test_list(self, integration_repository, discord_integration, telegram_integration):
        integration_repository.create_integration(discord_integration)
        integration_repository.create_integration(telegram_integration)

        types = {integration.type for integration in integration_repository.list_integrations()}
        assert types == {IntegrationType.DISCORD, IntegrationType.TELEGRAM}

    def test_delete_cascades_routes(
        self, feed_repository, integration_repository, route_repository, sample_feed, discord_integration
    ):
        feed_repository.create_feed(sample_feed)
        integration_repository.create_integration(discord_integration)
        route_repository.create_route(
            KeywordRoute(feed_id=sample_feed.id, keyword="python", integration_id=discord_integration.id)
        )

        integration_repository.delete_integration(discord_integration.id)

        assert route_repository.get_routes_for_feed(sample_feed.id, active_only=False) == []


class TestKeywordRouteRepository:
    """Test suite for KeywordRouteRepository."""

    @pytest.fixture
    def stored(self, feed_repository, integration_repository, sample_feed, discord_integration):
        feed_repository.create_feed(sample_feed)
        integration_repository.create_integration(discord_integration)
        return sample_feed, discord_integration

    def test_create_and_read_back(self, route_repository, stored):
        feed, integration = stored
        route = KeywordRoute(
            feed_id=feed.id,
            keyword="release",
            integration_id=integration.id,
            case_sensitive=True,
            fields=["title", "author"],
        )

        route_id = route_repository.create_route(route)
        retrieved = route_repository.get_route(route_id)

        assert retrieved.keyword == "release"
        assert retrieved.case_sensitive is True
        assert retrieved.is_active is True
        assert retrieved.fields == ["title", "author"]

    def test_active_only_filter(self, route_repository, stored):
        feed, integration = stored
        active_id = route_repository.create_route(
            KeywordRoute(feed_id=feed.id, keyword="a", integration_id=integration.id)
        )
        route_repository.create_route(
            KeywordRoute(feed_id=feed.id, keyword="b", integration_id=integration.id, is_active=False)
        )

        active = route_repository.get_routes_for_feed(feed.id)
        assert [route.id for route in active] == [active_id]
        assert len(route_repository.get_routes_for_feed(feed.id, active_only=False)) == 2

    def test_update_and_delete(self, route_repository, stored):
        feed, integration = stored
        route_id = route_repository.create_route(
            KeywordRoute(feed_id=feed.id, keyword="a", integration_id=integration.id)
        )
        route = route_repository.get_route(route_id)

        assert route_repository.update_route(route.model_copy(update={"keyword": "b", "fields": ["title"]}))
        updated = route_repository.get_route(route_id)
        assert updated.keyword == "b"
        assert updated.fields == ["title"]

        assert route_repository.delete_route(route_id)
        assert route_repository.get_route(route_id) is None


class TestDatabaseSchema:
    def test_schema_verifies(self, test_database):
        assert DatabaseSchema(test_database).verify_schema()

    def test_create_tables_is_idempotent(self, test_database):
        DatabaseSchema(test_database).create_tables()
        assert DatabaseSchema(test_database).verify_schema()

    def test_database_info_counts_tables(self, db_connection, feed_repository, sample_feed):
        feed_repository.create_feed(sample_feed)

        info = db_connection.get_database_info()

        assert info["table_counts"]["feeds"] == 1
        assert info["table_counts"]["feed_stats"] == 0

    def test_drop_and_recreate(self, test_database):
        schema = DatabaseSchema(test_database)

        schema.drop_tables()
        assert not schema.verify_schema()

        schema.create_tables()
        assert schema.verify_schema()

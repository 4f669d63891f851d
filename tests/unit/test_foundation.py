"""
Foundation Tests
================

Settings, validators, exceptions and logging helpers.
"""

import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from feedrelay.config.settings import (
    FeedRelaySettings,
    LoggingSettings,
    SchedulerSettings,
)
from feedrelay.utils.exceptions import (
    ErrorCode,
    FeedRelayError,
    FetchError,
    NotFoundError,
    ValidationError,
    get_user_friendly_message,
    handle_exception,
)
from feedrelay.utils.logging import PerformanceLogger, get_logger_for_component
from feedrelay.utils.validators import FeedValidator, URLValidator, validate_required_text


class TestSettings:
    """Test suite for configuration loading."""

    def test_defaults(self):
        settings = FeedRelaySettings()

        assert settings.scheduler.default_interval_minutes == 60
        assert settings.scheduler.history_capacity == 200
        assert settings.scheduler.initial_notify_count == 2
        assert settings.delivery.min_send_interval_seconds == 1.0

    def test_nested_environment_override(self, monkeypatch):
        monkeypatch.setenv("FEEDRELAY_SCHEDULER__HISTORY_CAPACITY", "50")
        monkeypatch.setenv("FEEDRELAY_DELIVERY__MIN_SEND_INTERVAL_SECONDS", "2.5")

        settings = FeedRelaySettings()

        assert settings.scheduler.history_capacity == 50
        assert settings.delivery.min_send_interval_seconds == 2.5

    def test_inverted_startup_window_rejected(self):
        with pytest.raises(PydanticValidationError):
            SchedulerSettings(startup_delay_min_seconds=10, startup_delay_max_seconds=1)

    def test_empty_log_path_disables_file_logging(self):
        assert LoggingSettings(file_path="  ").file_path is None

    def test_effective_log_level(self):
        assert FeedRelaySettings(debug=True).get_effective_log_level() == "DEBUG"
        assert FeedRelaySettings(debug=False).get_effective_log_level() == "INFO"

    def test_validate_configuration_creates_directories(self, tmp_path):
        settings = FeedRelaySettings(
            database={"path": str(tmp_path / "db" / "feedrelay.db")},
            logging={"file_path": str(tmp_path / "logs" / "feedrelay.log")},
        )

        settings.validate_configuration()

        assert (tmp_path / "db").is_dir()
        assert (tmp_path / "logs").is_dir()


class TestValidators:
    """Test suite for input validators."""

    def test_feed_url_normalizes_scheme_and_host(self):
        assert URLValidator.validate_feed_url("HTTPS://Example.COM/feed.xml") == "https://example.com/feed.xml"

    def test_feed_url_gets_root_path(self):
        assert URLValidator.validate_feed_url("https://example.com") == "https://example.com/"

    @pytest.mark.parametrize("url", ["", "ftp://example.com/feed", "https://", "not a url"])
    def test_invalid_feed_urls(self, url):
        with pytest.raises(ValidationError):
            URLValidator.validate_feed_url(url)
        assert not URLValidator.is_valid_feed_url(url)

    def test_title(self):
        assert FeedValidator.validate_title("  Many   spaces  ") == "Many spaces"
        with pytest.raises(ValidationError):
            FeedValidator.validate_title("   ")
        with pytest.raises(ValidationError):
            FeedValidator.validate_title("x" * 501)

    def test_interval(self):
        assert FeedValidator.validate_interval("15") == 15
        with pytest.raises(ValidationError):
            FeedValidator.validate_interval(0)
        with pytest.raises(ValidationError):
            FeedValidator.validate_interval("soon")

    def test_selected_fields(self):
        allowed = ["title", "link", "author"]
        assert FeedValidator.validate_selected_fields(["link", "title", "link"], allowed) == ["link", "title"]
        with pytest.raises(ValidationError) as exc_info:
            FeedValidator.validate_selected_fields(["title", "bogus"], allowed)
        assert "bogus" in str(exc_info.value)

    def test_required_text(self):
        assert validate_required_text("  name ", "name") == "name"
        with pytest.raises(ValidationError) as exc_info:
            validate_required_text(None, "name")
        assert exc_info.value.error_code == ErrorCode.VALIDATION_REQUIRED_FIELD


class TestExceptions:
    """Test suite for the exception hierarchy."""

    def test_fetch_error_carries_url(self):
        error = FetchError("HTTP 404: Not Found", feed_url="https://example.com/rss")

        assert isinstance(error, FeedRelayError)
        assert error.context["feed_url"] == "https://example.com/rss"
        assert error.to_dict()["error_message"] == "HTTP 404: Not Found"

    def test_not_found_error(self):
        error = NotFoundError("feed", "abc")

        assert error.error_code == ErrorCode.RESOURCE_NOT_FOUND
        assert error.resource == "feed"
        assert error.user_message == "Feed not found"

    def test_user_friendly_message(self):
        assert get_user_friendly_message(ValidationError("bad", field_name="url")) == "Invalid url: bad"
        assert "unexpected" in get_user_friendly_message(RuntimeError("boom"))

    def test_handle_exception_wraps_network_errors(self):
        logger = logging.getLogger("feedrelay.tests")

        wrapped = handle_exception(ConnectionError("reset"), logger, "fetch")

        assert isinstance(wrapped, FetchError)
        assert wrapped.context["operation"] == "fetch"


class TestLogging:
    def test_component_logger_context(self):
        adapter = get_logger_for_component("scheduler", feed_id="abc")
        assert adapter.extra == {"component": "scheduler", "feed_id": "abc"}
        assert adapter.logger.name == "feedrelay.scheduler"

    def test_performance_logger_measures(self):
        with PerformanceLogger(logging.getLogger("feedrelay.tests"), "noop") as perf:
            pass
        assert perf.elapsed_ms >= 0

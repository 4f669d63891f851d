"""
Tests for Scan Statistics
=========================

Recording, window arithmetic, aggregation and CSV export.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from feedrelay.database.models import Feed, StatsRange
from feedrelay.stats.recorder import (
    CSV_HEADERS,
    StatsRecorder,
    calendar_window_start,
    parse_range,
    rolling_window_start,
)
from feedrelay.storage.stats_repository import StatsRepository
from feedrelay.utils.exceptions import DatabaseError, ValidationError

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestWindows:
    """Test suite for window start arithmetic."""

    def test_rolling_windows(self):
        assert rolling_window_start(StatsRange.DAILY, NOW) == NOW - timedelta(days=1)
        assert rolling_window_start(StatsRange.WEEKLY, NOW) == NOW - timedelta(days=7)
        assert rolling_window_start(StatsRange.MONTHLY, NOW) == datetime(2024, 2, 15, 12, tzinfo=timezone.utc)
        assert rolling_window_start(StatsRange.ALL_TIME, NOW) is None

    def test_rolling_month_clamps_day(self):
        end_of_march = datetime(2024, 3, 31, 8, tzinfo=timezone.utc)
        assert rolling_window_start(StatsRange.MONTHLY, end_of_march) == datetime(
            2024, 2, 29, 8, tzinfo=timezone.utc
        )

    def test_rolling_month_crosses_year(self):
        january = datetime(2024, 1, 10, tzinfo=timezone.utc)
        assert rolling_window_start(StatsRange.MONTHLY, january) == datetime(2023, 12, 10, tzinfo=timezone.utc)

    def test_calendar_windows(self):
        midnight = datetime(2024, 3, 15, tzinfo=timezone.utc)
        assert calendar_window_start(StatsRange.DAILY, NOW) == midnight
        assert calendar_window_start(StatsRange.WEEKLY, NOW) == datetime(2024, 3, 9, tzinfo=timezone.utc)
        assert calendar_window_start(StatsRange.MONTHLY, NOW) == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert calendar_window_start(StatsRange.ALL_TIME, NOW) is None

    def test_parse_range(self):
        assert parse_range("all-time") is StatsRange.ALL_TIME
        with pytest.raises(ValidationError):
            parse_range("yearly")


class TestStatsRecorder:
    """Test suite for StatsRecorder against a real database."""

    @pytest.fixture
    def feeds(self, feed_repository):
        busy = Feed(title="Busy Feed", url="https://busy.example.com/rss")
        quiet = Feed(title="Quiet Feed", url="https://quiet.example.com/rss")
        feed_repository.create_feed(busy)
        feed_repository.create_feed(quiet)
        return busy, quiet

    @pytest.fixture
    def clock(self):
        return Clock(NOW)

    @pytest.fixture
    def recorder(self, stats_repository, clock):
        return StatsRecorder(stats_repository, clock=clock)

    @pytest.fixture
    def history(self, recorder, clock, feeds):
        """Four scans of the busy feed spread over two months."""
        busy, _ = feeds
        for age, size, took in (
            (timedelta(hours=2), 100, 40),
            (timedelta(days=3), 200, 60),
            (timedelta(days=20), 300, 80),
            (timedelta(days=60), 400, 100),
        ):
            clock.now = NOW - age
            recorder.record_scan(busy.id, size, took)
        clock.now = NOW
        return busy

    def test_record_scan(self, recorder, feeds, stats_repository):
        busy, _ = feeds

        stat = recorder.record_scan(busy.id, 1234, 56)

        assert stat.id is not None
        assert stat.items_processed == 1
        records = stats_repository.list_records(None)
        assert records[0]["bytes_transferred"] == 1234
        assert records[0]["processing_time_ms"] == 56
        assert records[0]["feed_title"] == "Busy Feed"

    @pytest.mark.parametrize(
        "stats_range,days",
        [("daily", 1), ("weekly", 2), ("monthly", 3), ("all-time", 4)],
    )
    def test_get_stats_windows(self, recorder, history, stats_range, days):
        assert len(recorder.get_stats(stats_range)) == days

    def test_get_stats_rows(self, recorder, history):
        rows = recorder.get_stats("weekly")

        assert rows[0] == {
            "date": "2024-03-12",
            "total_items": 1,
            "total_bytes": 200,
            "avg_processing_time": 60.0,
        }
        assert rows[-1]["date"] == "2024-03-15"

    def test_get_stats_per_feed(self, recorder, history, feeds):
        _, quiet = feeds
        assert recorder.get_stats("all-time", feed_id=quiet.id) == []
        assert len(recorder.get_stats("all-time", feed_id=history.id)) == 4

    def test_feed_summary_includes_idle_feeds(self, recorder, history):
        summary = recorder.get_feed_summary("monthly")

        assert summary[0]["title"] == "Busy Feed"
        assert summary[0]["total_bytes"] == 300
        assert summary[0]["scan_count"] == 2
        assert summary[1] == {
            "id": summary[1]["id"],
            "title": "Quiet Feed",
            "total_bytes": 0,
            "scan_count": 0,
        }

    def test_export_csv(self, recorder, history):
        lines = recorder.export_csv("weekly").splitlines()

        assert lines[0] == ",".join(CSV_HEADERS)
        assert lines[1] == "2024-03-12,1,200,60.00"
        assert lines[2] == "2024-03-15,1,100,40.00"

    def test_export_csv_empty_window(self, recorder, feeds):
        assert recorder.export_csv("daily") == ",".join(CSV_HEADERS) + "\n"

    def test_clear_stats(self, recorder, history):
        assert recorder.clear_stats() == 4
        assert recorder.get_stats("all-time") == []

    def test_storage_failure_is_swallowed(self, clock):
        repository = Mock(spec=StatsRepository)
        repository.add_stat.side_effect = DatabaseError("disk full")
        recorder = StatsRecorder(repository, clock=clock)

        assert recorder.record_scan("feed-1", 10, 5) is None

    def test_deleting_feed_removes_its_stats(self, recorder, history, feed_repository):
        feed_repository.delete_feed(history.id)
        assert recorder.get_stats("all-time") == []

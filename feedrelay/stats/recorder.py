"""
Stats Recorder
==============

Records one row per successful scan and answers the dashboard queries:
per-day totals over a window, a per-feed summary, and a CSV export.

Window vocabulary is ``daily | weekly | monthly | all-time``. The per-day
read path uses rolling windows ending now; the per-feed summary uses
calendar windows (today, the last seven calendar days, this month).
"""

import calendar
import csv
import io
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from ..database.models import ScanStat, StatsRange
from ..storage.stats_repository import StatsRepository
from ..utils.exceptions import DatabaseError, ValidationError, ErrorCode
from ..utils.logging import get_logger_for_component

CSV_HEADERS = ["Date", "Items Processed", "Bytes Transferred", "Average Processing Time (ms)"]

# One scan is the billing unit, not the number of items it contained
ITEMS_PER_SCAN = 1


def parse_range(value: Union[str, StatsRange]) -> StatsRange:
    """Coerce a range name, raising ValidationError for unknown names."""
    try:
        return StatsRange(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown stats range '{value}'",
            field_name="range",
            error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
            user_message=f"Range must be one of: {', '.join(r.value for r in StatsRange)}",
        ) from e


def _minus_one_month(moment: datetime) -> datetime:
    year, month = moment.year, moment.month - 1
    if month == 0:
        year, month = year - 1, 12
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def rolling_window_start(stats_range: StatsRange, now: datetime) -> Optional[datetime]:
    """Start of a window ending at ``now``, None for all time."""
    if stats_range is StatsRange.DAILY:
        return now - timedelta(days=1)
    if stats_range is StatsRange.WEEKLY:
        return now - timedelta(days=7)
    if stats_range is StatsRange.MONTHLY:
        return _minus_one_month(now)
    return None


def calendar_window_start(stats_range: StatsRange, now: datetime) -> Optional[datetime]:
    """Start of the calendar period containing ``now``, None for all time."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if stats_range is StatsRange.DAILY:
        return midnight
    if stats_range is StatsRange.WEEKLY:
        return midnight - timedelta(days=6)
    if stats_range is StatsRange.MONTHLY:
        return midnight.replace(day=1)
    return None


class StatsRecorder:
    """Scan metrics facade over :class:`StatsRepository`."""

    def __init__(self, repository: StatsRepository, clock=None):
        """
        Args:
            repository: Stats storage
            clock: Callable returning the current aware datetime, for tests
        """
        self.repository = repository
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger_for_component("stats")

    def record_scan(
        self, feed_id: str, bytes_transferred: int, processing_time_ms: int
    ) -> Optional[ScanStat]:
        """Append one scan record.

        A storage failure is logged and swallowed so it cannot fail the scan.

        Returns:
            The stored record, or None if it could not be written
        """
        stat = ScanStat(
            feed_id=feed_id,
            timestamp=self.clock(),
            items_processed=ITEMS_PER_SCAN,
            bytes_transferred=max(0, int(bytes_transferred)),
            processing_time_ms=max(0, int(processing_time_ms)),
        )
        try:
            stat.id = self.repository.add_stat(stat)
        except DatabaseError as e:
            self.logger.error(f"Could not record scan stats: {e}", extra={"feed_id": feed_id})
            return None

        self.logger.debug(
            f"Recorded scan: {stat.bytes_transferred} bytes in {stat.processing_time_ms}ms",
            extra={"feed_id": feed_id},
        )
        return stat

    def get_stats(
        self, stats_range: Union[str, StatsRange], feed_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Per-day totals over a rolling window.

        Returns:
            Rows of ``date, total_items, total_bytes, avg_processing_time``,
            oldest day first
        """
        since = rolling_window_start(parse_range(stats_range), self.clock())
        return self.repository.daily_totals(since, feed_id=feed_id)

    def get_feed_summary(self, stats_range: Union[str, StatsRange]) -> List[Dict[str, Any]]:
        """Per-feed ``id, title, total_bytes, scan_count`` over a calendar window.

        Feeds without scans in the window are included with zero totals.
        """
        since = calendar_window_start(parse_range(stats_range), self.clock())
        return self.repository.feed_totals(since)

    def export_csv(
        self, stats_range: Union[str, StatsRange], feed_id: Optional[str] = None
    ) -> str:
        """Render :meth:`get_stats` as CSV text with a header row."""
        output = io.StringIO()
        writer = csv.writer(output, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for row in self.get_stats(stats_range, feed_id=feed_id):
            writer.writerow(
                [
                    row["date"],
                    row["total_items"] or 0,
                    row["total_bytes"] or 0,
                    f"{row['avg_processing_time'] or 0:.2f}",
                ]
            )
        return output.getvalue()

    def clear_stats(self) -> int:
        """Delete every record. Raises DatabaseError on failure."""
        removed = self.repository.clear()
        self.logger.info(f"Cleared {removed} stats records")
        return removed

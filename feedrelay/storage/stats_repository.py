"""
Stats Repository
================

Append-only storage and day-bucketed aggregation of scan metrics.
Timestamps are stored as naive UTC ``YYYY-MM-DD HH:MM:SS`` text so that
SQLite's ``DATE()`` and plain string comparison both work on them.
"""

from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from ..database.connection import DatabaseConnection
from ..database.models import ScanStat
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(value: datetime) -> str:
    """Render a datetime as stored UTC text."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


class StatsRepository:
    """Repository for the feed_stats table."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.logger = get_logger_for_component("stats_repository")

    def add_stat(self, stat: ScanStat) -> int:
        """Append one scan record.

        Raises:
            DatabaseError: If database operation fails
        """
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO feed_stats (
                        feed_id, timestamp, items_processed, bytes_transferred, processing_time_ms
                    ) VALUES (?, ?, ?, ?, ?)
                """,
                    (
                        stat.feed_id,
                        format_timestamp(stat.timestamp),
                        stat.items_processed,
                        stat.bytes_transferred,
                        stat.processing_time_ms,
                    ),
                )
                conn.commit()
                return cursor.lastrowid

        except Exception as e:
            self.logger.error(f"Failed to record stats for feed {stat.feed_id}: {e}")
            raise DatabaseError(
                f"Failed to record stats: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

    def daily_totals(
        self, since: Optional[datetime], feed_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Aggregate records per calendar day, oldest day first.

        Args:
            since: Inclusive lower bound, or None for all time
            feed_id: Restrict to one feed

        Returns:
            Rows with ``date, total_items, total_bytes, avg_processing_time``
        """
        conditions = []
        params: List[Any] = []
        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(format_timestamp(since))
        if feed_id:
            conditions.append("feed_id = ?")
            params.append(feed_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT DATE(timestamp) AS date,
                   SUM(items_processed) AS total_items,
                   SUM(bytes_transferred) AS total_bytes,
                   AVG(processing_time_ms) AS avg_processing_time
            FROM feed_stats
            {where}
            GROUP BY DATE(timestamp)
            ORDER BY date
        """

        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
                return [dict(row) for row in rows]

        except Exception as e:
            self.logger.error(f"Failed to aggregate stats: {e}")
            return []

    def feed_totals(self, since: Optional[datetime]) -> List[Dict[str, Any]]:
        """Per-feed bytes and scan count, including feeds with no scans."""
        join_condition = "s.feed_id = f.id"
        params: tuple = ()
        if since is not None:
            join_condition += " AND s.timestamp >= ?"
            params = (format_timestamp(since),)

        query = f"""
            SELECT f.id AS id,
                   f.title AS title,
                   COALESCE(SUM(s.bytes_transferred), 0) AS total_bytes,
                   COUNT(s.id) AS scan_count
            FROM feeds f
            LEFT JOIN feed_stats s ON {join_condition}
            GROUP BY f.id, f.title
            ORDER BY total_bytes DESC, f.title
        """

        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
                return [dict(row) for row in rows]

        except Exception as e:
            self.logger.error(f"Failed to summarize feed stats: {e}")
            return []

    def list_records(
        self, since: Optional[datetime], feed_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Raw records joined with the feed title, oldest first."""
        conditions = []
        params: List[Any] = []
        if since is not None:
            conditions.append("s.timestamp >= ?")
            params.append(format_timestamp(since))
        if feed_id:
            conditions.append("s.feed_id = ?")
            params.append(feed_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT s.timestamp, s.feed_id, f.title AS feed_title, s.items_processed,
                   s.bytes_transferred, s.processing_time_ms
            FROM feed_stats s
            LEFT JOIN feeds f ON f.id = s.feed_id
            {where}
            ORDER BY s.timestamp, s.id
        """

        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
                return [dict(row) for row in rows]

        except Exception as e:
            self.logger.error(f"Failed to list stats records: {e}")
            return []

    def clear(self) -> int:
        """Delete every stats record."""
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute("DELETE FROM feed_stats")
                conn.commit()
            self.logger.info(f"Cleared {cursor.rowcount} stats records")
            return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Failed to clear stats: {e}")
            raise DatabaseError(
                f"Failed to clear stats: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

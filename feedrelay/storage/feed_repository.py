"""
Feed Repository
===============

Repository pattern implementation for feed records. Writes are split along
the two feed field groups: user edits go through :meth:`update_user_fields`,
scan results through :meth:`update_scan_state`, and neither can touch the
other group's columns.
"""

import json
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Iterable

from ..database.connection import DatabaseConnection
from ..database.models import Feed, USER_EDITABLE_FIELDS, SCAN_DERIVED_FIELDS
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode

JSON_COLUMNS = frozenset(
    {
        "history",
        "selected_fields",
        "available_fields",
        "sample_items",
        "associated_integrations",
    }
)


def _to_column(field: str, value: Any) -> Any:
    if field in JSON_COLUMNS:
        return json.dumps(value if value is not None else [], default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):  # enums
        return value.value
    return value


class FeedRepository:
    """Repository for managing feed data in the database."""

    def __init__(self, db_connection: DatabaseConnection):
        """Initialize feed repository.

        Args:
            db_connection: Database connection manager
        """
        self.db = db_connection
        self.logger = get_logger_for_component("feed_repository")

    def create_feed(self, feed: Feed) -> str:
        """Insert a new feed.

        Args:
            feed: Feed object to create

        Returns:
            The feed id

        Raises:
            DatabaseError: If database operation fails
        """
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO feeds (
                        id, title, url, interval, paused, status, status_details,
                        last_checked, history, selected_fields, available_fields,
                        sample_items, associated_integrations, show_all_prefixes,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        feed.id,
                        feed.title,
                        feed.url,
                        feed.interval,
                        feed.paused,
                        feed.status.value,
                        feed.status_details,
                        _to_column("last_checked", feed.last_checked),
                        _to_column("history", feed.history),
                        _to_column("selected_fields", feed.selected_fields),
                        _to_column("available_fields", feed.available_fields),
                        _to_column("sample_items", feed.sample_items),
                        _to_column("associated_integrations", feed.associated_integrations),
                        feed.show_all_prefixes,
                        _to_column("created_at", feed.created_at or datetime.now(timezone.utc)),
                        _to_column("updated_at", feed.updated_at or datetime.now(timezone.utc)),
                    ),
                )
                conn.commit()

            self.logger.info(f"Created feed {feed.id}: {feed.url}")
            return feed.id

        except Exception as e:
            self.logger.error(f"Failed to create feed: {e}")
            raise DatabaseError(
                f"Failed to create feed: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

    def get_feed(self, feed_id: str) -> Optional[Feed]:
        """Get feed by ID, or None when it does not exist."""
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM feeds WHERE id = ?", (feed_id,)
                ).fetchone()

                return Feed.from_db_row(row) if row else None

        except Exception as e:
            self.logger.error(f"Failed to get feed {feed_id}: {e}")
            return None

    def list_feeds(self) -> List[Feed]:
        """Get all feeds in creation order."""
        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(
                    "SELECT * FROM feeds ORDER BY created_at, id"
                ).fetchall()

                return [Feed.from_db_row(row) for row in rows]

        except Exception as e:
            self.logger.error(f"Failed to list feeds: {e}")
            return []

    def update_user_fields(self, feed_id: str, **kwargs) -> bool:
        """Apply a user edit. Only user-editable columns are written."""
        return self._update(feed_id, USER_EDITABLE_FIELDS, kwargs)

    def update_scan_state(self, feed_id: str, **kwargs) -> bool:
        """Persist a scan result. Only scan-derived columns are written."""
        return self._update(feed_id, SCAN_DERIVED_FIELDS, kwargs)

    def _update(self, feed_id: str, allowed: Iterable[str], changes: Dict[str, Any]) -> bool:
        if not changes:
            return True

        fields = []
        values = []
        for field, value in changes.items():
            if field in allowed:
                fields.append(f"{field} = ?")
                values.append(_to_column(field, value))
            else:
                self.logger.warning(
                    f"Ignoring non-writable field '{field}' for feed {feed_id}"
                )

        if not fields:
            self.logger.warning(f"No valid fields to update for feed {feed_id}")
            return False

        fields.append("updated_at = ?")
        values.append(datetime.now(timezone.utc).isoformat())
        values.append(feed_id)
        query = f"UPDATE feeds SET {', '.join(fields)} WHERE id = ?"

        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(query, values)
                conn.commit()

            if cursor.rowcount > 0:
                self.logger.debug(f"Updated feed {feed_id}: {sorted(changes)}")
                return True

            self.logger.warning(f"Feed {feed_id} not found for update")
            return False

        except Exception as e:
            self.logger.error(f"Failed to update feed {feed_id}: {e}")
            raise DatabaseError(
                f"Failed to update feed: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

    def delete_feed(self, feed_id: str) -> bool:
        """Delete a feed. Its routes and stats go with it.

        Returns:
            True if a row was deleted
        """
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
                conn.commit()

            if cursor.rowcount > 0:
                self.logger.info(f"Deleted feed {feed_id}")
                return True
            return False

        except Exception as e:
            self.logger.error(f"Failed to delete feed {feed_id}: {e}")
            raise DatabaseError(
                f"Failed to delete feed: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

    def remove_integration_reference(self, integration_id: str) -> int:
        """Drop an integration id from every feed's default targets.

        Returns:
            Number of feeds changed
        """
        changed = 0
        for feed in self.list_feeds():
            if integration_id in feed.associated_integrations:
                remaining = [i for i in feed.associated_integrations if i != integration_id]
                if self.update_user_fields(feed.id, associated_integrations=remaining):
                    changed += 1
        return changed

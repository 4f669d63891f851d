"""
Keyword Route Repository
========================

CRUD for per-feed keyword routing rules.
"""

import json
from datetime import datetime, timezone
from typing import List, Optional

from ..database.connection import DatabaseConnection
from ..database.models import KeywordRoute
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode

UPDATABLE_COLUMNS = ("keyword", "match_mode", "case_sensitive", "is_active", "integration_id", "fields")


class KeywordRouteRepository:
    """Repository for keyword route records."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.logger = get_logger_for_component("keyword_route_repository")

    def create_route(self, route: KeywordRoute) -> int:
        """Insert a route and return its database id.

        Raises:
            DatabaseError: If database operation fails
        """
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO keyword_routes (
                        feed_id, keyword, match_mode, case_sensitive, is_active,
                        integration_id, fields, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        route.feed_id,
                        route.keyword,
                        route.match_mode.value,
                        route.case_sensitive,
                        route.is_active,
                        route.integration_id,
                        json.dumps(route.fields),
                        now,
                        now,
                    ),
                )
                route_id = cursor.lastrowid
                conn.commit()

            self.logger.info(f"Created keyword route {route_id} for feed {route.feed_id}")
            return route_id

        except Exception as e:
            self.logger.error(f"Failed to create keyword route: {e}")
            raise DatabaseError(
                f"Failed to create keyword route: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

    def get_route(self, route_id: int) -> Optional[KeywordRoute]:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM keyword_routes WHERE id = ?", (route_id,)
                ).fetchone()
                return KeywordRoute.from_db_row(row) if row else None

        except Exception as e:
            self.logger.error(f"Failed to get keyword route {route_id}: {e}")
            return None

    def get_routes_for_feed(self, feed_id: str, active_only: bool = True) -> List[KeywordRoute]:
        """Get a feed's routes in creation order."""
        try:
            with self.db.get_connection() as conn:
                if active_only:
                    rows = conn.execute(
                        "SELECT * FROM keyword_routes WHERE feed_id = ? AND is_active = ? ORDER BY id",
                        (feed_id, True),
                    ).fetchall()
                else:
                    rows = conn.execute(
                        "SELECT * FROM keyword_routes WHERE feed_id = ? ORDER BY id",
                        (feed_id,),
                    ).fetchall()
                return [KeywordRoute.from_db_row(row) for row in rows]

        except Exception as e:
            self.logger.error(f"Failed to get keyword routes for feed {feed_id}: {e}")
            return []

    def update_route(self, route: KeywordRoute) -> bool:
        """Persist every updatable column of ``route``."""
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    f"""
                    UPDATE keyword_routes
                    SET {', '.join(f'{c} = ?' for c in UPDATABLE_COLUMNS)}, updated_at = ?
                    WHERE id = ?
                """,
                    (
                        route.keyword,
                        route.match_mode.value,
                        route.case_sensitive,
                        route.is_active,
                        route.integration_id,
                        json.dumps(route.fields),
                        datetime.now(timezone.utc).isoformat(),
                        route.id,
                    ),
                )
                conn.commit()
            return cursor.rowcount > 0

        except Exception as e:
            self.logger.error(f"Failed to update keyword route {route.id}: {e}")
            raise DatabaseError(
                f"Failed to update keyword route: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

    def delete_route(self, route_id: int) -> bool:
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute("DELETE FROM keyword_routes WHERE id = ?", (route_id,))
                conn.commit()
            return cursor.rowcount > 0

        except Exception as e:
            self.logger.error(f"Failed to delete keyword route {route_id}: {e}")
            raise DatabaseError(
                f"Failed to delete keyword route: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

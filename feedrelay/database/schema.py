"""
FeedRelay Database Schema
=========================

SQLite schema for the feed registry and its satellites:
- feeds: configured sources plus scan state (list fields as JSON text)
- integrations: outbound notification destinations
- keyword_routes: per-feed routing rules, removed with their feed
- feed_stats: append-only per-scan metrics, removed with their feed
"""

import sqlite3
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

EXPECTED_TABLES = {"feeds", "integrations", "keyword_routes", "feed_stats"}


class DatabaseSchema:
    """Database schema manager for the FeedRelay SQLite database."""

    def __init__(self, db_path: str = "data/feedrelay.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables with proper schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("PRAGMA foreign_keys = ON")

            self._create_feeds_table(conn)
            self._create_integrations_table(conn)
            self._create_keyword_routes_table(conn)
            self._create_feed_stats_table(conn)

            self._run_migrations(conn)
            self._create_indexes(conn)

            conn.commit()
            logger.info("Database schema created successfully")

    def _create_feeds_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS feeds (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                url TEXT NOT NULL,
                interval INTEGER NOT NULL DEFAULT 60 CHECK (interval >= 1),
                paused BOOLEAN DEFAULT FALSE,
                status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'ok', 'error')),
                status_details TEXT DEFAULT '',
                last_checked TIMESTAMP,
                history TEXT DEFAULT '[]',  -- JSON array, oldest first
                selected_fields TEXT DEFAULT '[]',
                available_fields TEXT DEFAULT '[]',
                sample_items TEXT DEFAULT '[]',
                associated_integrations TEXT DEFAULT '[]',
                show_all_prefixes BOOLEAN DEFAULT FALSE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

    def _create_integrations_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS integrations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('discord', 'telegram')),
                webhook_url TEXT,
                token TEXT,
                chat_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

    def _create_keyword_routes_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS keyword_routes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                feed_id TEXT NOT NULL,
                keyword TEXT NOT NULL,
                match_mode TEXT NOT NULL DEFAULT 'literal' CHECK (match_mode IN ('literal', 'regex')),
                case_sensitive BOOLEAN DEFAULT FALSE,
                is_active BOOLEAN DEFAULT TRUE,
                integration_id TEXT NOT NULL,
                fields TEXT DEFAULT '[]',  -- JSON array of field names
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE,
                FOREIGN KEY (integration_id) REFERENCES integrations(id) ON DELETE CASCADE
            )
        """
        )

    def _create_feed_stats_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS feed_stats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                feed_id TEXT NOT NULL,
                timestamp TIMESTAMP NOT NULL,
                items_processed INTEGER NOT NULL DEFAULT 1,
                bytes_transferred INTEGER NOT NULL DEFAULT 0,
                processing_time_ms INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE
            )
        """
        )

    def _create_indexes(self, conn: sqlite3.Connection) -> None:
        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_routes_feed_active ON keyword_routes(feed_id, is_active)",
            "CREATE INDEX IF NOT EXISTS idx_routes_integration ON keyword_routes(integration_id)",
            "CREATE INDEX IF NOT EXISTS idx_stats_timestamp ON feed_stats(timestamp)",
            "CREATE INDEX IF NOT EXISTS idx_stats_feed_timestamp ON feed_stats(feed_id, timestamp)",
        ]

        for index_sql in indexes:
            conn.execute(index_sql)

    def _run_migrations(self, conn: sqlite3.Connection) -> None:
        """Bring databases created by earlier versions up to date."""
        cursor = conn.execute("PRAGMA table_info(feeds)")
        feed_columns = [column[1] for column in cursor.fetchall()]

        if "show_all_prefixes" not in feed_columns:
            logger.info("Adding show_all_prefixes column to feeds table")
            conn.execute("ALTER TABLE feeds ADD COLUMN show_all_prefixes BOOLEAN DEFAULT FALSE")

    def drop_tables(self) -> None:
        """Drop all tables (for testing/reset purposes)."""
        with sqlite3.connect(self.db_path) as conn:
            for table in ("feed_stats", "keyword_routes", "integrations", "feeds"):
                conn.execute(f"DROP TABLE IF EXISTS {table}")
            conn.commit()
            logger.info("All database tables dropped")

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection with foreign keys enabled."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.row_factory = sqlite3.Row
        return conn

    def verify_schema(self) -> bool:
        """Verify database schema is correctly created."""
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(
                    """
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name NOT LIKE 'sqlite_%'
                """
                )
                tables = {row[0] for row in cursor.fetchall()}

                if not EXPECTED_TABLES.issubset(tables):
                    logger.error(
                        f"Missing tables. Expected: {EXPECTED_TABLES}, Found: {tables}"
                    )
                    return False

                conn.execute("PRAGMA foreign_key_check")
                logger.info("Database schema verification passed")
                return True

        except sqlite3.Error as e:
            logger.error(f"Schema verification failed: {e}")
            return False

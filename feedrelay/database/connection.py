"""
FeedRelay Database Connection Management
========================================

Connection pool and transaction management for SQLite.
"""

import sqlite3
import threading
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Generator, Any, Dict
from queue import Queue, Empty

logger = logging.getLogger(__name__)

TABLES = ("feeds", "integrations", "keyword_routes", "feed_stats")


class DatabaseConnection:
    """Thread-safe SQLite database connection manager with pooling."""

    def __init__(self, db_path: str = "data/feedrelay.db", pool_size: int = 5):
        """Initialize database connection manager.

        Args:
            db_path: Path to SQLite database file
            pool_size: Maximum number of connections in pool
        """
        self.db_path = Path(db_path)
        self.pool_size = pool_size
        self.pool: Queue = Queue(maxsize=pool_size)
        self.lock = threading.Lock()
        self._total_connections = 0

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_pool()

    def _initialize_pool(self) -> None:
        for _ in range(self.pool_size):
            self.pool.put(self._create_connection())

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with the pragmas FeedRelay relies on."""
        conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=30.0,
        )

        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA temp_store = MEMORY")
        conn.row_factory = sqlite3.Row

        with self.lock:
            self._total_connections += 1

        logger.debug(f"Created database connection #{self._total_connections}")
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a connection from the pool with automatic return.

        Usage:
            with db.get_connection() as conn:
                rows = conn.execute("SELECT * FROM feeds").fetchall()
        """
        start_time = time.time()
        try:
            conn = self.pool.get(timeout=10.0)
        except Empty:
            logger.warning("Connection pool exhausted, creating new connection")
            conn = self._create_connection()

        acquisition_time = time.time() - start_time
        if acquisition_time > 1.0:
            logger.warning(f"Database connection acquisition took {acquisition_time:.2f}s")

        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Database connection error: {e}")
            conn.rollback()
            raise
        finally:
            if self.pool.qsize() < self.pool_size:
                self.pool.put(conn)
            else:
                conn.close()
                with self.lock:
                    self._total_connections -= 1

    def get_database_info(self) -> Dict[str, Any]:
        """Get database size and per-table row counts."""
        with self.get_connection() as conn:
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]

            table_counts = {}
            for table in TABLES:
                try:
                    table_counts[table] = conn.execute(
                        f"SELECT COUNT(*) FROM {table}"
                    ).fetchone()[0]
                except sqlite3.Error:
                    table_counts[table] = 0

            return {
                "database_size_mb": page_count * page_size / (1024 * 1024),
                "table_counts": table_counts,
                "connection_pool_size": self.pool.qsize(),
                "total_connections": self._total_connections,
            }

    def close_all_connections(self) -> None:
        """Close all connections in the pool."""
        logger.info("Closing all database connections")

        while not self.pool.empty():
            try:
                conn = self.pool.get_nowait()
                conn.close()
            except (Empty, sqlite3.Error):
                break

        with self.lock:
            self._total_connections = 0


# Global database manager instance
_db_manager: Optional[DatabaseConnection] = None


def get_db_manager(db_path: str = "data/feedrelay.db", pool_size: int = 5) -> DatabaseConnection:
    """Get global database manager instance (singleton pattern)."""
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseConnection(db_path, pool_size)

    return _db_manager

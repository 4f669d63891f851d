"""
Integration Repository
======================

CRUD for outbound notification destinations.
"""

from datetime import datetime, timezone
from typing import List, Optional

from ..database.connection import DatabaseConnection
from ..database.models import Integration
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode


class IntegrationRepository:
    """Repository for integration records."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.logger = get_logger_for_component("integration_repository")

    def create_integration(self, integration: Integration) -> str:
        """Insert an integration and return its id.

        Raises:
            DatabaseError: If database operation fails
        """
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO integrations (id, name, type, webhook_url, token, chat_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        integration.id,
                        integration.name,
                        integration.type.value,
                        integration.webhook_url,
                        integration.token,
                        integration.chat_id,
                        (integration.created_at or datetime.now(timezone.utc)).isoformat(),
                    ),
                )
                conn.commit()

            self.logger.info(f"Created {integration.type.value} integration {integration.id}")
            return integration.id

        except Exception as e:
            self.logger.error(f"Failed to create integration: {e}")
            raise DatabaseError(
                f"Failed to create integration: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

    def get_integration(self, integration_id: str) -> Optional[Integration]:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM integrations WHERE id = ?", (integration_id,)
                ).fetchone()
                return Integration.from_db_row(row) if row else None

        except Exception as e:
            self.logger.error(f"Failed to get integration {integration_id}: {e}")
            return None

    def list_integrations(self) -> List[Integration]:
        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(
                    "SELECT * FROM integrations ORDER BY created_at, id"
                ).fetchall()
                return [Integration.from_db_row(row) for row in rows]

        except Exception as e:
            self.logger.error(f"Failed to list integrations: {e}")
            return []

    def update_integration(self, integration: Integration) -> bool:
        """Overwrite an integration's name, type and credentials."""
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE integrations
                    SET name = ?, type = ?, webhook_url = ?, token = ?, chat_id = ?
                    WHERE id = ?
                """,
                    (
                        integration.name,
                        integration.type.value,
                        integration.webhook_url,
                        integration.token,
                        integration.chat_id,
                        integration.id,
                    ),
                )
                conn.commit()
            return cursor.rowcount > 0

        except Exception as e:
            self.logger.error(f"Failed to update integration {integration.id}: {e}")
            raise DatabaseError(
                f"Failed to update integration: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

    def delete_integration(self, integration_id: str) -> bool:
        """Delete an integration. Keyword routes targeting it go with it."""
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM integrations WHERE id = ?", (integration_id,)
                )
                conn.commit()

            if cursor.rowcount > 0:
                self.logger.info(f"Deleted integration {integration_id}")
                return True
            return False

        except Exception as e:
            self.logger.error(f"Failed to delete integration {integration_id}: {e}")
            raise DatabaseError(
                f"Failed to delete integration: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

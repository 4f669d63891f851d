"""
Integration Service
===================

Create/read/update/delete for notification destinations. Deleting an
integration also removes its keyword routes and drops it from every
feed's default targets.
"""

from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..database.models import Integration, IntegrationType
from ..delivery.dispatcher import NotificationDispatcher
from ..scheduler.feed_scheduler import FeedScheduler
from ..storage.feed_repository import FeedRepository
from ..storage.integration_repository import IntegrationRepository
from ..utils.exceptions import NotFoundError, ValidationError, ErrorCode
from ..utils.logging import get_logger_for_component
from ..utils.validators import URLValidator, validate_required_text

_UNSET = object()


class IntegrationService:
    """Manages Discord and Telegram destinations."""

    def __init__(
        self,
        integration_repository: IntegrationRepository,
        feed_repository: FeedRepository,
        dispatcher: Optional[NotificationDispatcher] = None,
        scheduler: Optional[FeedScheduler] = None,
    ):
        self.integrations = integration_repository
        self.feeds = feed_repository
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.logger = get_logger_for_component("integration_service")

    def add(
        self,
        name: str,
        type: str,
        webhook_url: Optional[str] = None,
        token: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> Integration:
        """Validate and store a new integration.

        Raises:
            ValidationError: Missing name, unknown type or missing credentials
        """
        integration = self._build(
            name=name, type=type, webhook_url=webhook_url, token=token, chat_id=chat_id
        )
        self.integrations.create_integration(integration)
        self.logger.info(f"Added {integration.type.value} integration '{integration.name}'")
        return integration

    def update(
        self,
        integration_id: str,
        name=_UNSET,
        type=_UNSET,
        webhook_url=_UNSET,
        token=_UNSET,
        chat_id=_UNSET,
    ) -> Integration:
        """Apply a partial update. Cached channel clients are dropped.

        Raises:
            NotFoundError: Unknown integration
            ValidationError: Resulting integration is incomplete
        """
        current = self.get(integration_id)
        data = current.model_dump()
        for key, value in (
            ("name", name),
            ("type", type),
            ("webhook_url", webhook_url),
            ("token", token),
            ("chat_id", chat_id),
        ):
            if value is not _UNSET:
                data[key] = value

        updated = self._build(**data)
        if not self.integrations.update_integration(updated):
            raise NotFoundError("integration", integration_id)
        if self.dispatcher is not None:
            self.dispatcher.forget_integration(integration_id)

        self.logger.info(f"Updated integration {integration_id}", extra={"integration_id": integration_id})
        return updated

    async def delete(self, integration_id: str) -> None:
        """Delete an integration and every reference to it.

        Raises:
            NotFoundError: Unknown integration
        """
        if not self.integrations.delete_integration(integration_id):
            raise NotFoundError("integration", integration_id)

        changed = self.feeds.remove_integration_reference(integration_id)
        if self.scheduler is not None:
            for feed in self.scheduler.feeds():
                if integration_id in feed.associated_integrations:
                    remaining = [i for i in feed.associated_integrations if i != integration_id]
                    await self.scheduler.apply_user_edit(feed.id, associated_integrations=remaining)
        if self.dispatcher is not None:
            self.dispatcher.forget_integration(integration_id)

        self.logger.info(
            f"Deleted integration {integration_id}, detached from {changed} feeds",
            extra={"integration_id": integration_id},
        )

    def list(self) -> List[Integration]:
        return self.integrations.list_integrations()

    def get(self, integration_id: str) -> Integration:
        """Raises NotFoundError for an unknown id."""
        integration = self.integrations.get_integration(integration_id)
        if integration is None:
            raise NotFoundError("integration", integration_id)
        return integration

    def _build(self, **data) -> Integration:
        data["name"] = validate_required_text(data.get("name"), "name")
        try:
            data["type"] = IntegrationType(data.get("type"))
        except ValueError as e:
            raise ValidationError(
                f"Unknown integration type '{data.get('type')}'",
                field_name="type",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
            ) from e

        for key in ("webhook_url", "token", "chat_id"):
            value = data.get(key)
            data[key] = str(value).strip() if value not in (None, "") else None
        if data["type"] is IntegrationType.DISCORD and data["webhook_url"]:
            data["webhook_url"] = URLValidator.validate_feed_url(data["webhook_url"], "webhook_url")

        try:
            return Integration(**data)
        except PydanticValidationError as e:
            message = "; ".join(error["msg"] for error in e.errors())
            raise ValidationError(
                message,
                field_name="credentials",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
            ) from e

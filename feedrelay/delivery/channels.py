"""
Channel Adapters
================

One adapter per outbound channel type. The dispatcher only sees the
:class:`ChannelAdapter` interface: a ``target_key`` naming the rate-limit
bucket and an async ``send`` that either delivers or raises NotifyError.

Supporting a new channel type means writing an adapter and registering it
in :data:`ADAPTER_TYPES`.
"""

import asyncio
import ssl
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Type

import aiohttp
import certifi
from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from ..config.settings import DeliverySettings
from ..database.models import Integration, IntegrationType
from ..utils.exceptions import NotifyError, ErrorCode
from ..utils.logging import get_logger_for_component
from .formatters import (
    Notification,
    build_discord_payload,
    build_telegram_message,
    build_telegram_plain_message,
)


class ChannelAdapter(ABC):
    """Notify one item to one integration."""

    channel_type: IntegrationType

    def __init__(self, integration: Integration, settings: Optional[DeliverySettings] = None):
        self.integration = integration
        self.settings = settings or DeliverySettings()
        self.logger = get_logger_for_component(
            f"channel.{self.channel_type.value}", integration_id=integration.id
        )

    @property
    @abstractmethod
    def target_key(self) -> str:
        """Rate-limit bucket. Integrations sharing a key share a queue."""

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver ``notification``.

        Raises:
            NotifyError: When the channel rejects the message or cannot be reached
        """

    async def close(self) -> None:
        """Release network resources held by the adapter."""


class DiscordWebhookAdapter(ChannelAdapter):
    """Posts an embed to a Discord webhook. Failures are not retried."""

    channel_type = IntegrationType.DISCORD

    def __init__(self, integration: Integration, settings: Optional[DeliverySettings] = None, timeout: int = 30):
        super().__init__(integration, settings)
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def target_key(self) -> str:
        return f"discord:{self.integration.webhook_url}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                ssl=ssl.create_default_context(cafile=certifi.where())
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def _post(self, payload: Dict[str, Any]) -> int:
        """POST ``payload`` to the webhook and return the HTTP status."""
        session = await self._get_session()
        async with session.post(self.integration.webhook_url, json=payload) as response:
            if response.status >= 300:
                body = await response.text()
                raise NotifyError(
                    f"Discord webhook returned HTTP {response.status}: {body[:200]}",
                    integration_id=self.integration.id,
                    channel_type=self.channel_type.value,
                    context={"status": response.status},
                )
            return response.status

    async def send(self, notification: Notification) -> None:
        payload = build_discord_payload(notification, self.settings)
        try:
            await self._post(payload)
        except NotifyError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NotifyError(
                f"Discord webhook unreachable: {e}",
                integration_id=self.integration.id,
                channel_type=self.channel_type.value,
                error_code=ErrorCode.NOTIFY_UNREACHABLE,
            ) from e

        self.logger.info(
            f"Sent Discord notification for '{notification.item.title or notification.item.link}'",
            extra={"feed_id": notification.feed_id},
        )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class TelegramBotAdapter(ChannelAdapter):
    """Sends a MarkdownV2 message, with one plain-text fallback attempt."""

    channel_type = IntegrationType.TELEGRAM

    def __init__(
        self,
        integration: Integration,
        settings: Optional[DeliverySettings] = None,
        bot_factory: Callable[[str], Bot] = Bot,
    ):
        super().__init__(integration, settings)
        self.bot_factory = bot_factory
        self._bot: Optional[Bot] = None

    @property
    def target_key(self) -> str:
        return f"telegram:{self.integration.token}:{self.integration.chat_id}"

    async def _get_bot(self) -> Bot:
        if self._bot is None:
            bot = self.bot_factory(self.integration.token)
            await bot.initialize()
            self._bot = bot
        return self._bot

    async def send(self, notification: Notification) -> None:
        try:
            bot = await self._get_bot()
        except TelegramError as e:
            raise NotifyError(
                f"Telegram bot could not be initialized: {e}",
                integration_id=self.integration.id,
                channel_type=self.channel_type.value,
                error_code=ErrorCode.NOTIFY_MISCONFIGURED,
            ) from e

        chat_id = self.integration.chat_id
        try:
            await bot.send_message(
                chat_id=chat_id,
                text=build_telegram_message(notification, self.settings),
                parse_mode=ParseMode.MARKDOWN_V2,
            )
            self.logger.info(
                f"Sent Telegram notification for '{notification.item.title or notification.item.link}'",
                extra={"feed_id": notification.feed_id},
            )
            return
        except TelegramError as e:
            self.logger.warning(
                f"MarkdownV2 send failed, retrying as plain text: {e}",
                extra={"feed_id": notification.feed_id},
            )

        try:
            await bot.send_message(
                chat_id=chat_id,
                text=build_telegram_plain_message(notification, self.settings),
            )
        except TelegramError as e:
            raise NotifyError(
                f"Telegram send failed: {e}",
                integration_id=self.integration.id,
                channel_type=self.channel_type.value,
            ) from e

        self.logger.info(
            "Sent Telegram notification (plain text fallback)",
            extra={"feed_id": notification.feed_id},
        )

    async def close(self) -> None:
        if self._bot is not None:
            try:
                await self._bot.shutdown()
            except TelegramError as e:
                self.logger.warning(f"Telegram bot shutdown failed: {e}")
        self._bot = None


ADAPTER_TYPES: Dict[IntegrationType, Type[ChannelAdapter]] = {
    IntegrationType.DISCORD: DiscordWebhookAdapter,
    IntegrationType.TELEGRAM: TelegramBotAdapter,
}


def create_adapter(integration: Integration, settings: Optional[DeliverySettings] = None) -> ChannelAdapter:
    """Instantiate the adapter registered for the integration's type.

    Raises:
        NotifyError: When no adapter handles the type
    """
    adapter_cls = ADAPTER_TYPES.get(integration.type)
    if adapter_cls is None:
        raise NotifyError(
            f"No channel adapter for type '{integration.type}'",
            integration_id=integration.id,
            error_code=ErrorCode.NOTIFY_MISCONFIGURED,
        )
    return adapter_cls(integration, settings)

"""
Tests for Channel Adapters
==========================

Discord webhook and Telegram bot adapters with the network layer mocked.
"""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from feedrelay.database.models import CanonicalItem, Integration, IntegrationType
from feedrelay.delivery.channels import (
    ADAPTER_TYPES,
    DiscordWebhookAdapter,
    TelegramBotAdapter,
    create_adapter,
)
from feedrelay.delivery.formatters import Notification
from feedrelay.utils.exceptions import NotifyError, ErrorCode


@pytest.fixture
def notification():
    return Notification(
        feed_id="feed-1",
        feed_title="Example Blog",
        item=CanonicalItem(
            id="https://example.com/1",
            feed_id="feed-1",
            title="Hello (world)",
            link="https://example.com/1",
        ),
        selected_fields=["title", "link"],
    )


class TestDiscordWebhookAdapter:
    """Test suite for Discord delivery."""

    def test_target_key_is_webhook_url(self, discord_integration):
        adapter = DiscordWebhookAdapter(discord_integration)
        assert adapter.target_key == f"discord:{discord_integration.webhook_url}"

    @pytest.mark.asyncio
    async def test_send_posts_embed(self, discord_integration, notification):
        adapter = DiscordWebhookAdapter(discord_integration)
        adapter._post = AsyncMock(return_value=204)

        await adapter.send(notification)

        payload = adapter._post.await_args.args[0]
        assert payload["embeds"][0]["title"] == "Hello (world)"
        assert payload["embeds"][0]["url"] == "https://example.com/1"

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_notify_error(self, discord_integration, notification):
        adapter = DiscordWebhookAdapter(discord_integration)
        adapter._post = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(NotifyError) as exc_info:
            await adapter.send(notification)

        assert exc_info.value.error_code == ErrorCode.NOTIFY_UNREACHABLE
        adapter._post.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self, discord_integration, notification):
        adapter = DiscordWebhookAdapter(discord_integration)
        adapter._post = AsyncMock(side_effect=NotifyError("HTTP 400", integration_id=discord_integration.id))

        with pytest.raises(NotifyError):
            await adapter.send(notification)

        assert adapter._post.await_count == 1


class TestTelegramBotAdapter:
    """Test suite for Telegram delivery."""

    @pytest.fixture
    def bot(self):
        bot = MagicMock()
        bot.initialize = AsyncMock()
        bot.shutdown = AsyncMock()
        bot.send_message = AsyncMock()
        return bot

    @pytest.fixture
    def adapter(self, telegram_integration, bot):
        return TelegramBotAdapter(telegram_integration, bot_factory=lambda token: bot)

    def test_target_key_is_token_and_chat(self, adapter, telegram_integration):
        assert adapter.target_key == (
            f"telegram:{telegram_integration.token}:{telegram_integration.chat_id}"
        )

    @pytest.mark.asyncio
    async def test_sends_markdown_v2(self, adapter, bot, notification, telegram_integration):
        await adapter.send(notification)

        bot.initialize.assert_awaited_once()
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == telegram_integration.chat_id
        assert kwargs["parse_mode"] == ParseMode.MARKDOWN_V2
        assert "Hello \\(world\\)" in kwargs["text"]

    @pytest.mark.asyncio
    async def test_falls_back_to_plain_text_once(self, adapter, bot, notification):
        bot.send_message.side_effect = [BadRequest("Can't parse entities"), None]

        await adapter.send(notification)

        assert bot.send_message.await_count == 2
        plain_kwargs = bot.send_message.await_args_list[1].kwargs
        assert "parse_mode" not in plain_kwargs
        assert "Hello (world)" in plain_kwargs["text"]

    @pytest.mark.asyncio
    async def test_both_attempts_failing_raises(self, adapter, bot, notification):
        bot.send_message.side_effect = TelegramError("Forbidden: bot was blocked")

        with pytest.raises(NotifyError):
            await adapter.send(notification)

        assert bot.send_message.await_count == 2

    @pytest.mark.asyncio
    async def test_bot_is_reused_and_closed(self, adapter, bot, notification):
        await adapter.send(notification)
        await adapter.send(notification)
        await adapter.close()

        bot.initialize.assert_awaited_once()
        bot.shutdown.assert_awaited_once()


class TestAdapterFactory:
    def test_registry_covers_every_type(self):
        assert set(ADAPTER_TYPES) == set(IntegrationType)

    def test_create_adapter(self, discord_integration, telegram_integration):
        assert isinstance(create_adapter(discord_integration), DiscordWebhookAdapter)
        assert isinstance(create_adapter(telegram_integration), TelegramBotAdapter)

    def test_distinct_chats_get_distinct_keys(self, telegram_integration):
        other = Integration(
            name="Other chat",
            type=IntegrationType.TELEGRAM,
            token=telegram_integration.token,
            chat_id="-100999",
        )
        assert create_adapter(other).target_key != create_adapter(telegram_integration).target_key

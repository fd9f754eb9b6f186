from __future__ import annotations

import httpx

from januscope.channels.base import Channel
from januscope.channels.console import ConsoleChannel
from januscope.channels.mail import EmailChannel
from januscope.channels.telegram import TelegramChannel
from januscope.config import NotificationSettings


__all__ = ["Channel", "ConsoleChannel", "EmailChannel", "TelegramChannel", "build_channels"]


def build_channels(settings: NotificationSettings, *, http_client: httpx.AsyncClient | None = None) -> list[Channel]:
    """Instantiate the configured channels. The console channel is always present."""
    channels: list[Channel] = [ConsoleChannel()]
    if settings.telegram.enabled:
        channels.append(
            TelegramChannel(
                bot_token=settings.telegram.bot_token,
                api_url=settings.telegram.api_url,
                client=http_client,
                timeout_seconds=settings.telegram.timeout_seconds,
            )
        )
    if settings.email.enabled:
        channels.append(EmailChannel(settings.email.smtp))
    return channels

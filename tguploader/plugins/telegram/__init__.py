"""Telegram plugin - Bot API client for artifact uploads."""

from .plugin import (
    TelegramClient,
    TelegramPlugin,
    TelegramResponse,
    create_plugin,
    human_readable_size,
    upload_limit,
)

__all__ = [
    "TelegramClient",
    "TelegramPlugin",
    "TelegramResponse",
    "create_plugin",
    "human_readable_size",
    "upload_limit",
]

"""Telegram notification adapter — implements NotificationPort.

Delivers operator alerts (a failed weekly rollover) to a Telegram chat,
outside the Discord guild the bot serves.
"""

from __future__ import annotations

import logging

from telegram import Bot

logger = logging.getLogger(__name__)

_MESSAGE_LIMIT = 4096


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    @classmethod
    def from_token(cls, token: str) -> TelegramNotifier:
        return cls(Bot(token=token))

    async def send_message(self, target_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=target_id, text=f"[ClockBot] {text}"[:_MESSAGE_LIMIT])
        logger.info("Operator alert sent to chat %d", target_id)

"""Discord channel notification adapter — implements NotificationPort.

`target_id` is a guild id: the message goes to the configured recap channel
when it belongs to that guild, otherwise to the guild's system channel.
"""

from __future__ import annotations

import logging

import discord

logger = logging.getLogger(__name__)

_MESSAGE_LIMIT = 2000


def split_message(text: str, limit: int = _MESSAGE_LIMIT) -> list[str]:
    """Split on line breaks into chunks Discord accepts."""
    chunks: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return chunks


class DiscordChannelNotifier:
    """Discord implementation of NotificationPort."""

    def __init__(self, client: discord.Client, channel_id: int = 0) -> None:
        self._client = client
        self._channel_id = channel_id

    def _channel_for(self, guild_id: int) -> discord.abc.Messageable | None:
        if self._channel_id:
            channel = self._client.get_channel(self._channel_id)
            guild = getattr(channel, "guild", None)
            if channel is not None and guild is not None and guild.id == guild_id:
                return channel
        guild = self._client.get_guild(guild_id)
        if guild is None:
            return None
        return guild.system_channel

    async def send_message(self, target_id: int, text: str) -> None:
        channel = self._channel_for(target_id)
        if channel is None:
            logger.warning("No channel to post to in guild %d", target_id)
            return
        for chunk in split_message(text):
            await channel.send(chunk)

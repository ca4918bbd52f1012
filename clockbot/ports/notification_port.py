"""Notification port — abstract interface for posting messages.

Core modules depend on this protocol, never on a specific messaging provider.
`target_id` is a channel or guild id for the Discord notifier and a chat id
for the Telegram alert notifier.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(self, target_id: int, text: str) -> None: ...

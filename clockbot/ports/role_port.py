"""Role port — abstract interface for guild roles and nicknames.

Core modules depend on this protocol, never on a specific chat platform.
Roles are opaque handles returned by the adapter.
"""

from __future__ import annotations

from typing import Any, Protocol


class RoleError(Exception):
    """Raised when any platform role or nickname operation fails."""


class RolePort(Protocol):
    """Abstract role interface used by core modules, bound to one guild."""

    async def find_role(self, label: str) -> Any | None: ...

    async def ensure_role(self, label: str, color: int, font_style: str) -> Any: ...

    async def assign_role(self, user_id: int, role: Any) -> None: ...

    async def revoke_role(self, user_id: int, role: Any) -> None: ...

    async def set_nickname(self, user_id: int, nickname: str) -> None: ...

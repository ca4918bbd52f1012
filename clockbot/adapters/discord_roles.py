"""Discord role adapter — implements RolePort for one guild.

Wraps a discord.Guild to satisfy the RolePort protocol. Every discord.py
HTTP failure is re-raised as RoleError so core code never imports discord.
"""

from __future__ import annotations

import logging

import discord

from clockbot.ports.role_port import RoleError

logger = logging.getLogger(__name__)

_REASON = "ClockBot weekly style/tier roles"


class DiscordRoleAdapter:
    """Discord implementation of RolePort."""

    def __init__(self, guild: discord.Guild, anchor_role_id: int = 0) -> None:
        self._guild = guild
        self._anchor_role_id = anchor_role_id

    async def find_role(self, label: str) -> discord.Role | None:
        return discord.utils.get(self._guild.roles, name=label)

    async def ensure_role(self, label: str, color: int, font_style: str) -> discord.Role:
        """Reuse the role named `label`, or create it above the anchor role."""
        role = await self.find_role(label)
        if role is not None:
            return role

        try:
            role = await self._guild.create_role(
                name=label,
                colour=discord.Colour(color),
                reason=f"{_REASON} ({font_style})",
            )
        except discord.HTTPException as exc:
            raise RoleError(f"Failed to create role {label!r}: {exc}") from exc
        logger.info("Created role '%s' in guild %d", label, self._guild.id)

        anchor = self._guild.get_role(self._anchor_role_id) if self._anchor_role_id else None
        if anchor is not None:
            try:
                await role.edit(position=anchor.position + 1, reason=_REASON)
            except discord.HTTPException as exc:
                logger.warning("Could not move role '%s' above anchor: %s", label, exc)
        return role

    async def _member(self, user_id: int) -> discord.Member:
        member = self._guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await self._guild.fetch_member(user_id)
        except discord.HTTPException as exc:
            raise RoleError(f"Member {user_id} not found: {exc}") from exc

    async def assign_role(self, user_id: int, role: discord.Role) -> None:
        member = await self._member(user_id)
        if role in member.roles:
            return
        try:
            await member.add_roles(role, reason=_REASON)
        except discord.HTTPException as exc:
            raise RoleError(f"Failed to assign {role.name!r} to {user_id}: {exc}") from exc

    async def revoke_role(self, user_id: int, role: discord.Role) -> None:
        member = await self._member(user_id)
        if role not in member.roles:
            return
        try:
            await member.remove_roles(role, reason=_REASON)
        except discord.HTTPException as exc:
            raise RoleError(f"Failed to revoke {role.name!r} from {user_id}: {exc}") from exc

    async def set_nickname(self, user_id: int, nickname: str) -> None:
        member = await self._member(user_id)
        if member.nick == nickname:
            return
        try:
            await member.edit(nick=nickname, reason=_REASON)
        except discord.HTTPException as exc:
            # Discord never lets bots rename the guild owner.
            raise RoleError(f"Failed to set nickname for {user_id}: {exc}") from exc

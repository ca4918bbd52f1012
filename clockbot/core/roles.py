"""
ClockBot — Role & Nickname Assignment.

Turns (user, style, tier) into a platform role and a nickname prefix.
Formatting is table-driven by tier:

    tier 1   Architect                 nickname: alice
    tier 3   »» 𝗔𝗿𝗰𝗵𝗶𝘁𝗲𝗰𝘁              nickname: »» alice
    tier 6   »»»»» 𝕬𝖗𝖈𝖍𝖎𝖙𝖊𝖈𝖙          nickname: »»»»» alice

Roles are looked up by exact label and reused, so repeated runs never
create duplicates. This module talks to the platform only through RolePort.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

from clockbot.data.models import RoleAssignment

if TYPE_CHECKING:
    from clockbot.core.classifier import Classification
    from clockbot.data.db import RoleDB
    from clockbot.ports.role_port import RolePort

logger = logging.getLogger(__name__)

CHEVRON = "»"
NICKNAME_MAX_LENGTH = 32


@dataclass(frozen=True)
class TierDecoration:
    font: str
    color: int


TIER_DECORATIONS: dict[int, TierDecoration] = {
    1: TierDecoration("plain",        0x95A5A6),  # gray
    2: TierDecoration("sans",         0x2ECC71),  # green
    3: TierDecoration("sans_bold",    0x3498DB),  # blue
    4: TierDecoration("bold",         0x9B59B6),  # purple
    5: TierDecoration("bold_italic",  0xF1C40F),  # gold
    6: TierDecoration("bold_fraktur", 0xE74C3C),  # red
}

# Mathematical Alphanumeric Symbols: code point of "A" and of "a" per font.
# None of these ranges has reserved holes.
_FONT_OFFSETS: dict[str, tuple[int, int]] = {
    "sans":         (0x1D5A0, 0x1D5BA),
    "sans_bold":    (0x1D5D4, 0x1D5EE),
    "bold":         (0x1D400, 0x1D41A),
    "bold_italic":  (0x1D468, 0x1D482),
    "bold_fraktur": (0x1D56C, 0x1D586),
}


def decoration_for(tier: int) -> TierDecoration:
    """Tiers beyond the table reuse the highest entry."""
    return TIER_DECORATIONS.get(tier) or TIER_DECORATIONS[max(TIER_DECORATIONS)]


def stylize(text: str, font: str) -> str:
    """Render ASCII letters in a Unicode font variant; other characters pass through."""
    if font == "plain":
        return text
    upper, lower = _FONT_OFFSETS[font]
    out = []
    for ch in text:
        if "A" <= ch <= "Z":
            out.append(chr(upper + ord(ch) - ord("A")))
        elif "a" <= ch <= "z":
            out.append(chr(lower + ord(ch) - ord("a")))
        else:
            out.append(ch)
    return "".join(out)


def nickname_prefix(tier: int) -> str:
    return CHEVRON * max(0, tier - 1)


def role_label(style: str, tier: int) -> str:
    name = style.capitalize()
    styled = stylize(name, decoration_for(tier).font)
    prefix = nickname_prefix(tier)
    return f"{prefix} {styled}" if prefix else styled


def bare_name(username: str) -> str:
    """Strip any chevron prefix a previous run put on the name."""
    return username.lstrip(CHEVRON + " ") or username


def decorated_nickname(username: str, tier: int) -> str:
    bare = bare_name(username)
    prefix = nickname_prefix(tier)
    if not prefix:
        return bare[:NICKNAME_MAX_LENGTH]
    room = NICKNAME_MAX_LENGTH - len(prefix) - 1
    return f"{prefix} {bare[:room]}"


@dataclass
class ApplyReport:
    applied: int = 0
    failed: int = 0
    roles_created: int = 0


class RoleAssigner:
    def __init__(self, db: RoleDB) -> None:
        self._db = db

    async def apply(
        self,
        port: RolePort,
        guild_id: int,
        classifications: Iterable[Classification],
        week_id: str,
    ) -> ApplyReport:
        """Apply role + nickname for every classified user of one guild.

        Per-user platform failures are logged and counted; the run goes on.
        """
        report = ApplyReport()
        roles: dict[str, Any] = {}

        for c in classifications:
            if c.guild_id != guild_id:
                continue
            label = role_label(c.style, c.tier)
            try:
                role = roles.get(label)
                if role is None:
                    existing = await port.find_role(label)
                    if existing is None:
                        decoration = decoration_for(c.tier)
                        role = await port.ensure_role(label, decoration.color, decoration.font)
                        report.roles_created += 1
                        logger.info("Created role '%s' in guild %d", label, guild_id)
                    else:
                        role = existing
                    roles[label] = role

                previous = await asyncio.to_thread(self._db.get_assignment, guild_id, c.user_id)
                if previous is not None and previous.label != label:
                    old_role = await port.find_role(previous.label)
                    if old_role is not None:
                        await port.revoke_role(c.user_id, old_role)

                await port.assign_role(c.user_id, role)
                await port.set_nickname(c.user_id, decorated_nickname(c.username, c.tier))

                await asyncio.to_thread(self._db.save_assignment, RoleAssignment(
                    guild_id=guild_id,
                    user_id=c.user_id,
                    style=c.style,
                    tier=c.tier,
                    label=label,
                    week_id=week_id,
                ))
                report.applied += 1
                logger.info("User %d → %s (tier %d)", c.user_id, c.style, c.tier)
            except Exception as exc:
                report.failed += 1
                logger.error("Failed to apply role to user %d: %s", c.user_id, exc)

        logger.info(
            "Roles applied in guild %d: %d ok, %d failed, %d created",
            guild_id, report.applied, report.failed, report.roles_created,
        )
        return report

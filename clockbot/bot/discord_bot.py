"""
ClockBot — Discord Bot.

Discord is the only user interface. Members type `/clock <command>` in any
channel the bot can read; the bot parses the message, gates admin commands
on the Manage Server permission, hands the command to ClockService and
renders the response as a colored embed.

A background loop runs the weekly job (rollover, recap, roles) every
ROLLOVER_CHECK_MINUTES; its first tick at start-up catches up missed weeks.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

import discord
from discord.ext import tasks

from clockbot.config import settings
from clockbot.core.clock_service import (
    ADMIN_COMMANDS,
    ClockService,
    Command,
    ResponseKind,
    ServiceResponse,
    error_response,
)
from clockbot.core.errors import PermissionDenied
from clockbot.core.roles import bare_name

if TYPE_CHECKING:
    from clockbot.core.scheduler import WeeklyJob
    from clockbot.ports.role_port import RolePort

logger = logging.getLogger(__name__)

COLOR_GREEN = 0x2ECC71
COLOR_RED = 0xE74C3C
COLOR_BLUE = 0x5865F2
COLOR_GOLD = 0xF1C40F
COLOR_GRAY = 0x95A5A6

_KIND_COLORS = {
    ResponseKind.STARTED: COLOR_GREEN,
    ResponseKind.STOPPED: COLOR_RED,
    ResponseKind.INFO: COLOR_BLUE,
    ResponseKind.LEADERBOARD: COLOR_GOLD,
    ResponseKind.IDLE: COLOR_GRAY,
    ResponseKind.ERROR: COLOR_RED,
}

_EMBED_DESCRIPTION_LIMIT = 4096
_EMBED_FIELD_LIMIT = 1024


# ---------------------------------------------------------------------------
# Parsing & rendering
# ---------------------------------------------------------------------------


def parse_command(content: str, prefix: str) -> tuple[str, str] | None:
    """Split '/clock in bot stuff' into ('in', 'bot stuff').

    Returns None for messages that are not addressed to the bot. A bare
    prefix means help.
    """
    text = content.strip()
    if not text.startswith(prefix):
        return None
    rest = text[len(prefix):]
    if rest and not rest[0].isspace():
        return None  # "/clockwork" is not for us
    parts = rest.split(None, 1)
    if not parts:
        return "help", ""
    name = parts[0].lower()
    args = parts[1].strip() if len(parts) > 1 else ""
    return name, args


def render_embed(response: ServiceResponse) -> discord.Embed:
    embed = discord.Embed(
        title=response.title,
        description=response.message[:_EMBED_DESCRIPTION_LIMIT] or None,
        color=_KIND_COLORS.get(response.kind, COLOR_BLUE),
    )
    for name, value in response.fields:
        embed.add_field(name=name, value=value[:_EMBED_FIELD_LIMIT], inline=False)
    if response.footer:
        embed.set_footer(text=response.footer)
    if response.kind is ResponseKind.LEADERBOARD:
        embed.timestamp = discord.utils.utcnow()
    return embed


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ClockBot(discord.Client):
    def __init__(
        self,
        service: ClockService,
        prefix: str = "/clock",
        check_minutes: float = 5,
        anchor_role_id: int = 0,
    ) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(intents=intents)

        self.service = service
        self.prefix = prefix
        self.anchor_role_id = anchor_role_id
        self.job: WeeklyJob | None = None

        self.weekly_loop = tasks.loop(minutes=check_minutes)(self._weekly_tick)
        self.weekly_loop.before_loop(self._before_weekly_tick)

    async def setup_hook(self) -> None:
        if self.job is not None:
            self.weekly_loop.start()

    async def on_ready(self) -> None:
        logger.info("Logged in as %s (%d guilds)", self.user, len(self.guilds))

    def role_port_for(self, guild_id: int) -> RolePort | None:
        from clockbot.adapters.discord_roles import DiscordRoleAdapter

        guild = self.get_guild(guild_id)
        if guild is None:
            return None
        return DiscordRoleAdapter(guild, self.anchor_role_id)

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        parsed = parse_command(message.content, self.prefix)
        if parsed is None:
            return
        name, args = parsed

        if name in ADMIN_COMMANDS and not message.author.guild_permissions.manage_guild:
            logger.debug("User %d denied admin command '%s'", message.author.id, name)
            response: ServiceResponse = error_response(PermissionDenied())
        else:
            response = await self.service.handle(Command(
                guild_id=message.guild.id,
                user_id=message.author.id,
                username=bare_name(message.author.display_name),
                name=name,
                args=args,
            ))

        try:
            await message.reply(embed=render_embed(response), mention_author=False)
        except discord.HTTPException as exc:
            logger.error("Failed to reply in channel %d: %s", message.channel.id, exc)

    async def _weekly_tick(self) -> None:
        try:
            await self.job.run()
        except Exception as exc:
            logger.error("Weekly job failed: %s", exc)

    async def _before_weekly_tick(self) -> None:
        await self.wait_until_ready()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_client(db_path: str | None = None) -> ClockBot:
    """Build the Discord client with every store, service and the weekly job."""
    from clockbot.adapters.discord_notifier import DiscordChannelNotifier
    from clockbot.adapters.telegram_notifier import TelegramNotifier
    from clockbot.core.aliases import AliasResolver
    from clockbot.core.classifier import StyleClassifier
    from clockbot.core.embeddings import embed
    from clockbot.core.recap_llm import RecapLLM
    from clockbot.core.roles import RoleAssigner
    from clockbot.core.rollover import RolloverPolicy, WeeklyRollover
    from clockbot.core.scheduler import WeeklyJob
    from clockbot.core.sessions import SessionEngine
    from clockbot.data.db import AliasDB, ArchiveDB, RoleDB, SessionDB

    session_db = SessionDB(db_path)
    alias_db = AliasDB(db_path)
    archive_db = ArchiveDB(db_path)
    role_db = RoleDB(db_path)

    resolver = AliasResolver(alias_db)
    engine = SessionEngine(session_db, resolver)
    service = ClockService(
        engine,
        resolver,
        session_db,
        archive_db,
        prefix=settings.COMMAND_PREFIX,
        timeout=settings.COMMAND_TIMEOUT_SECONDS,
        leaderboard_size=settings.LEADERBOARD_SIZE,
    )

    client = ClockBot(
        service,
        prefix=settings.COMMAND_PREFIX,
        check_minutes=settings.ROLLOVER_CHECK_MINUTES,
        anchor_role_id=settings.ROLE_ANCHOR_ROLE_ID,
    )

    alert_notifier = None
    if settings.ALERT_TELEGRAM_BOT_TOKEN and settings.ALERT_TELEGRAM_CHAT_ID:
        alert_notifier = TelegramNotifier.from_token(settings.ALERT_TELEGRAM_BOT_TOKEN)

    client.job = WeeklyJob(
        rollover=WeeklyRollover(
            archive_db, ZoneInfo(settings.TIMEZONE), RolloverPolicy(settings.ROLLOVER_POLICY),
        ),
        archive_db=archive_db,
        classifier=StyleClassifier(
            embed, settings.TIER_THRESHOLDS, timeout=settings.COMMAND_TIMEOUT_SECONDS * 3,
        ),
        assigner=RoleAssigner(role_db),
        role_port_for=client.role_port_for,
        recap_notifier=DiscordChannelNotifier(client, settings.RECAP_CHANNEL_ID),
        recap_llm=RecapLLM.from_settings(),
        alert_notifier=alert_notifier,
        alert_chat_id=settings.ALERT_TELEGRAM_CHAT_ID,
        roles_enabled=settings.ROLES_ENABLED,
        max_attempts=settings.ROLLOVER_MAX_ATTEMPTS,
        retry_seconds=settings.ROLLOVER_RETRY_SECONDS,
    )

    logger.info(
        "ClockBot built (prefix %s, timezone %s, rollover policy %s)",
        settings.COMMAND_PREFIX, settings.TIMEZONE, settings.ROLLOVER_POLICY,
    )
    return client


def main() -> None:
    """Entry point: build the client and connect to Discord."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting ClockBot...")
    client = build_client()
    # log_handler=None keeps the logging configuration above.
    client.run(settings.DISCORD_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()

"""
ClockBot — UI-Agnostic Command Service.

Maps one parsed command to a structured response object:
resolve alias -> mutate or query sessions -> format -> return.

Each platform adapter (Discord today) parses its own input into a Command,
calls `ClockService.handle`, and renders the response in its own way.
Storage work runs in worker threads and is bounded by a timeout, so a
locked database yields an error response instead of a hung command.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from clockbot.core.aliases import GUILD_SCOPE, USER_SCOPE
from clockbot.core.errors import ClockError, StorageTimeout, UsageError
from clockbot.core.sessions import format_duration, format_minutes

if TYPE_CHECKING:
    from clockbot.core.aliases import AliasResolver
    from clockbot.core.sessions import SessionEngine
    from clockbot.data.db import ArchiveDB, SessionDB
    from clockbot.data.models import Alias, LeaderboardEntry

logger = logging.getLogger(__name__)

ADMIN_COMMANDS = frozenset({"galias", "gunalias"})

HELP_TEXT = (
    "`{p} in <what you're working on>` — start a session\n"
    "`{p} out` — stop the current session\n"
    "`{p} switch <activity>` — stop and start in one step\n"
    "`{p} status` — what you're on right now\n"
    "`{p} who` — everyone working right now\n"
    "`{p} leaderboard [YYYY-Www]` — this week and all time, or an archived week\n"
    "`{p} stats` — your time per activity\n"
    "`{p} recent [n]` — your last sessions\n"
    "`{p} rename <old> -> <new>` — relabel (and merge) your history\n"
    "`{p} alias <key> <activity>` / `{p} unalias <key>` / `{p} aliases`\n"
    "`{p} galias <key> <activity>` / `{p} gunalias <key>` / `{p} galiases` "
    "— server-wide aliases (Manage Server)\n"
    "`{p} help`"
)

_WEEK_ID_RE = re.compile(r"^\d{4}-W\d{2}$")
_MEDALS = ("🥇", "🥈", "🥉")
_RECENT_MAX = 25


# ---------------------------------------------------------------------------
# Request / response types
# ---------------------------------------------------------------------------


@dataclass
class Command:
    guild_id: int
    user_id: int
    username: str
    name: str
    args: str = ""


class ResponseKind(Enum):
    STARTED = "started"          # clock in / switch
    STOPPED = "stopped"          # clock out
    INFO = "info"                # status, who, stats, recent, aliases
    LEADERBOARD = "leaderboard"
    IDLE = "idle"                # nothing to show
    ERROR = "error"


@dataclass
class ServiceResponse:
    kind: ResponseKind
    title: str
    message: str = ""
    fields: list[tuple[str, str]] = field(default_factory=list)
    footer: str = ""


@dataclass
class ErrorResponse(ServiceResponse):
    code: str = "error"


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ClockService:
    def __init__(
        self,
        engine: SessionEngine,
        resolver: AliasResolver,
        session_db: SessionDB,
        archive_db: ArchiveDB,
        prefix: str = "/clock",
        timeout: float = 10.0,
        leaderboard_size: int = 15,
    ) -> None:
        self._engine = engine
        self._resolver = resolver
        self._sessions = session_db
        self._archive = archive_db
        self._prefix = prefix
        self._timeout = timeout
        self._leaderboard_size = leaderboard_size
        self._handlers: dict[str, Callable[[Command], Awaitable[ServiceResponse]]] = {
            "in": self._clock_in,
            "out": self._clock_out,
            "switch": self._switch,
            "status": self._status,
            "who": self._who,
            "leaderboard": self._leaderboard,
            "lb": self._leaderboard,
            "stats": self._stats,
            "recent": self._recent,
            "rename": self._rename,
            "alias": self._alias,
            "aliases": self._aliases,
            "unalias": self._unalias,
            "galias": self._galias,
            "galiases": self._galiases,
            "gunalias": self._gunalias,
            "help": self._help,
        }

    async def handle(self, command: Command) -> ServiceResponse:
        """Run one command. Never raises: every failure becomes an ErrorResponse."""
        handler = self._handlers.get(command.name.lower(), self._help)
        try:
            return await handler(command)
        except UsageError as exc:
            return ErrorResponse(
                kind=ResponseKind.ERROR, title="🤔 Not quite", message=str(exc), code="usage",
            )
        except ClockError as exc:
            if exc.transient:
                logger.error("Command '%s' for user %d failed: %s", command.name, command.user_id, exc)
            else:
                logger.debug("Command '%s' for user %d rejected: %s", command.name, command.user_id, exc)
            return error_response(exc)
        except Exception as exc:
            logger.error("Command '%s' for user %d crashed: %s", command.name, command.user_id, exc)
            return ErrorResponse(
                kind=ResponseKind.ERROR,
                title="⚠️ Something went wrong",
                message=ClockError.user_message,
            )

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking store call in a worker thread, bounded by the timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StorageTimeout(f"{getattr(fn, '__name__', fn)} timed out") from exc

    # -- sessions ------------------------------------------------------------

    async def _clock_in(self, cmd: Command) -> ServiceResponse:
        if not cmd.args.strip():
            raise UsageError(f"What are you working on? `{self._prefix} in <activity>`")
        session = await self._call(
            self._engine.clock_in, cmd.guild_id, cmd.user_id, cmd.username, cmd.args,
        )
        resp = ServiceResponse(
            kind=ResponseKind.STARTED,
            title="🟢 Clocked In",
            message=f"**{cmd.username}** started working on **{session.activity}**",
        )
        if session.activity != cmd.args.strip():
            resp.fields.append(("Alias", f"`{cmd.args.strip()}` → {session.activity}"))
        return resp

    async def _clock_out(self, cmd: Command) -> ServiceResponse:
        session = await self._call(self._engine.clock_out, cmd.guild_id, cmd.user_id)
        return ServiceResponse(
            kind=ResponseKind.STOPPED,
            title="🔴 Clocked Out",
            message=f"**{cmd.username}** finished **{session.activity}**",
            fields=[("Duration", f"`{format_duration(session.seconds or 0)}`")],
        )

    async def _switch(self, cmd: Command) -> ServiceResponse:
        if not cmd.args.strip():
            raise UsageError(f"Switch to what? `{self._prefix} switch <activity>`")
        closed, opened = await self._call(
            self._engine.switch, cmd.guild_id, cmd.user_id, cmd.username, cmd.args,
        )
        resp = ServiceResponse(
            kind=ResponseKind.STARTED,
            title="🔄 Switched",
            message=f"**{cmd.username}** is now working on **{opened.activity}**",
        )
        if closed is not None:
            resp.fields.append(
                (f"Finished {closed.activity}", f"`{format_duration(closed.seconds or 0)}`")
            )
        return resp

    async def _status(self, cmd: Command) -> ServiceResponse:
        status = await self._call(self._engine.status, cmd.guild_id, cmd.user_id)
        if not status.active:
            return ServiceResponse(
                kind=ResponseKind.IDLE,
                title=f"😴 {cmd.username} is not working",
                message=f"Clock in with `{self._prefix} in <activity>`",
            )
        return ServiceResponse(
            kind=ResponseKind.STARTED,
            title=f"🟢 {cmd.username} is working",
            message=f"On **{status.session.activity}**",
            fields=[("Elapsed", f"`{format_duration(status.elapsed)}`")],
        )

    async def _who(self, cmd: Command) -> ServiceResponse:
        active = await self._call(self._engine.who, cmd.guild_id)
        if not active:
            return ServiceResponse(kind=ResponseKind.IDLE, title="😴 Nobody is working right now")
        lines = [
            f"**{a.username}** — {a.activity} (`{format_duration(a.elapsed)}`)" for a in active
        ]
        noun = "person" if len(active) == 1 else "people"
        return ServiceResponse(
            kind=ResponseKind.INFO,
            title=f"🔨 {len(active)} {noun} working",
            message="\n".join(lines),
        )

    async def _recent(self, cmd: Command) -> ServiceResponse:
        n = 5
        if cmd.args.strip():
            try:
                n = int(cmd.args.strip())
            except ValueError:
                raise UsageError(f"`{self._prefix} recent [n]` takes a number") from None
            if not 1 <= n <= _RECENT_MAX:
                raise UsageError(f"Pick a number between 1 and {_RECENT_MAX}")
        sessions = await self._call(self._engine.recent, cmd.guild_id, cmd.user_id, n)
        if not sessions:
            return ServiceResponse(kind=ResponseKind.IDLE, title="📭 No finished sessions yet")
        lines = [
            f"**{s.activity}** — `{format_minutes(s.minutes)}` "
            f"(<t:{int(s.ended_at.timestamp())}:R>)"
            for s in sessions
        ]
        return ServiceResponse(
            kind=ResponseKind.INFO,
            title=f"🕘 {cmd.username}'s last {len(sessions)} sessions",
            message="\n".join(lines),
        )

    async def _rename(self, cmd: Command) -> ServiceResponse:
        old, sep, new = cmd.args.partition("->")
        if not sep or not old.strip() or not new.strip():
            raise UsageError(f"Usage: `{self._prefix} rename <old> -> <new>`")
        updated, merged = await self._call(
            self._engine.rename, cmd.guild_id, cmd.user_id, old, new,
        )
        message = f"**{old.strip()}** → **{new.strip()}** ({updated} sessions relabeled"
        message += f", {merged} archived weeks merged)" if merged else ")"
        return ServiceResponse(kind=ResponseKind.INFO, title="✏️ Renamed", message=message)

    # -- boards & stats -------------------------------------------------------

    def _format_board(self, entries: list[LeaderboardEntry]) -> str:
        if not entries:
            return "*No data yet*"
        lines = []
        for i, e in enumerate(entries):
            prefix = _MEDALS[i] if i < len(_MEDALS) else "▫️"
            lines.append(f"{prefix} **{e.username}** — `{format_minutes(e.minutes)}`")
        return "\n".join(lines)

    async def _leaderboard(self, cmd: Command) -> ServiceResponse:
        week_id = cmd.args.strip().upper()
        if week_id:
            if not _WEEK_ID_RE.match(week_id):
                raise UsageError(f"Week ids look like `2025-W07`: `{self._prefix} leaderboard 2025-W07`")
            board = await self._call(
                self._archive.week_leaderboard, cmd.guild_id, week_id, self._leaderboard_size,
            )
            return ServiceResponse(
                kind=ResponseKind.LEADERBOARD,
                title=f"🏆 Leaderboard — {week_id}",
                message=self._format_board(board),
            )

        weekly = await self._call(
            self._sessions.weekly_leaderboard, cmd.guild_id, self._leaderboard_size,
        )
        alltime = await self._call(
            self._archive.alltime_leaderboard, cmd.guild_id, self._leaderboard_size,
        )
        return ServiceResponse(
            kind=ResponseKind.LEADERBOARD,
            title="🏆 Leaderboard",
            fields=[
                ("📅 This Week", self._format_board(weekly)),
                ("⏳ All Time", self._format_board(alltime)),
            ],
            footer="Weekly stats reset every Monday",
        )

    async def _stats(self, cmd: Command) -> ServiceResponse:
        weekly = await self._call(self._sessions.weekly_breakdown, cmd.guild_id, cmd.user_id)
        alltime = await self._call(self._archive.alltime_breakdown, cmd.guild_id, cmd.user_id)
        if not weekly and not alltime:
            return ServiceResponse(
                kind=ResponseKind.IDLE,
                title=f"📭 No time logged for {cmd.username} yet",
            )

        def lines(entries) -> str:
            if not entries:
                return "*Nothing yet*"
            total = sum(e.minutes for e in entries)
            rows = [f"**{e.activity}** — `{format_minutes(e.minutes)}`" for e in entries]
            rows.append(f"Total: `{format_minutes(total)}`")
            return "\n".join(rows)

        return ServiceResponse(
            kind=ResponseKind.INFO,
            title=f"📈 {cmd.username}'s stats",
            fields=[("📅 This Week", lines(weekly)), ("⏳ All Time", lines(alltime))],
        )

    # -- aliases ---------------------------------------------------------------

    def _split_alias_args(self, args: str, name: str) -> tuple[str, str]:
        key, _, activity = args.strip().partition(" ")
        if not key or not activity.strip():
            raise UsageError(f"Usage: `{self._prefix} {name} <key> <activity>`")
        return key, activity.strip()

    async def _set_alias(self, cmd: Command, scope: str) -> ServiceResponse:
        key, activity = self._split_alias_args(cmd.args, cmd.name)
        alias = await self._call(
            self._resolver.set_alias, cmd.guild_id, cmd.user_id, scope, key, activity,
        )
        where = "server alias" if scope == GUILD_SCOPE else "alias"
        return ServiceResponse(
            kind=ResponseKind.INFO,
            title="🔖 Alias saved",
            message=f"{where.capitalize()} `{alias.key}` → **{alias.activity}**",
        )

    async def _remove_alias(self, cmd: Command, scope: str) -> ServiceResponse:
        key = cmd.args.strip()
        if not key:
            raise UsageError(f"Usage: `{self._prefix} {cmd.name} <key>`")
        removed = await self._call(
            self._resolver.remove_alias, cmd.guild_id, cmd.user_id, scope, key,
        )
        if not removed:
            return ServiceResponse(kind=ResponseKind.IDLE, title=f"🤷 No alias `{key}`")
        return ServiceResponse(kind=ResponseKind.INFO, title=f"🗑️ Alias `{key}` removed")

    async def _list_aliases(self, cmd: Command, scope: str) -> ServiceResponse:
        aliases: list[Alias] = await self._call(
            self._resolver.list_aliases, cmd.guild_id, cmd.user_id, scope,
        )
        title = "🔖 Server aliases" if scope == GUILD_SCOPE else f"🔖 {cmd.username}'s aliases"
        if not aliases:
            return ServiceResponse(kind=ResponseKind.IDLE, title=title, message="*None yet*")
        return ServiceResponse(
            kind=ResponseKind.INFO,
            title=title,
            message="\n".join(f"`{a.key}` → **{a.activity}**" for a in aliases),
        )

    async def _alias(self, cmd: Command) -> ServiceResponse:
        return await self._set_alias(cmd, USER_SCOPE)

    async def _unalias(self, cmd: Command) -> ServiceResponse:
        return await self._remove_alias(cmd, USER_SCOPE)

    async def _aliases(self, cmd: Command) -> ServiceResponse:
        return await self._list_aliases(cmd, USER_SCOPE)

    async def _galias(self, cmd: Command) -> ServiceResponse:
        return await self._set_alias(cmd, GUILD_SCOPE)

    async def _gunalias(self, cmd: Command) -> ServiceResponse:
        return await self._remove_alias(cmd, GUILD_SCOPE)

    async def _galiases(self, cmd: Command) -> ServiceResponse:
        return await self._list_aliases(cmd, GUILD_SCOPE)

    async def _help(self, cmd: Command) -> ServiceResponse:
        return ServiceResponse(
            kind=ResponseKind.INFO,
            title="⏱ ClockBot Commands",
            message=HELP_TEXT.format(p=self._prefix),
        )


_ERROR_TITLES = {
    "already_active": "⚠️ Already Clocked In",
    "no_active_session": "🤷 Not Clocked In",
    "unknown_activity": "🤷 Unknown Activity",
    "permission_denied": "⛔ Not Allowed",
    "storage_unavailable": "⏳ Busy",
    "embedding_unavailable": "⏳ Busy",
}


def error_response(exc: ClockError) -> ErrorResponse:
    """The user-facing response for a typed error. Never includes raw exception text."""
    return ErrorResponse(
        kind=ResponseKind.ERROR,
        title=_ERROR_TITLES.get(exc.code, "⚠️ Something went wrong"),
        message=exc.user_message,
        code=exc.code,
    )

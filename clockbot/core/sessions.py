"""
ClockBot — Session Engine.

Per-user state machine with two states: Idle and Active (one open session).

    Idle   --clock_in-->  Active
    Active --clock_out--> Idle
    Active --switch-->    Active   (close + open, one transaction)
    Idle   --switch-->    Active

All mutations go through SessionDB, which runs each one as a single
write transaction; the store's partial unique index rejects a second open
session even if two commands for the same user race.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

from clockbot.core.errors import UsageError

if TYPE_CHECKING:
    from clockbot.core.aliases import AliasResolver
    from clockbot.data.db import SessionDB
    from clockbot.data.models import Session

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Status:
    """A user's current state: the open session and its elapsed time, or idle."""

    session: Session | None
    elapsed: timedelta = timedelta(0)

    @property
    def active(self) -> bool:
        return self.session is not None


@dataclass
class ActiveUser:
    user_id: int
    username: str
    activity: str
    elapsed: timedelta


class SessionEngine:
    def __init__(self, db: SessionDB, resolver: AliasResolver, clock: Clock = utc_now) -> None:
        self._db = db
        self._resolver = resolver
        self._clock = clock

    def _resolve(self, guild_id: int, user_id: int, raw_activity: str) -> str:
        raw = raw_activity.strip()
        if not raw:
            raise UsageError("The activity name is empty.")
        return self._resolver.resolve(guild_id, user_id, raw)

    def clock_in(
        self, guild_id: int, user_id: int, username: str, raw_activity: str,
    ) -> Session:
        """Idle → Active. Raises AlreadyActive if a session is open."""
        activity = self._resolve(guild_id, user_id, raw_activity)
        return self._db.open_session(guild_id, user_id, username, activity, self._clock())

    def clock_out(self, guild_id: int, user_id: int) -> Session:
        """Active → Idle. Returns the closed session with its duration.

        Raises NoActiveSession if Idle.
        """
        return self._db.close_session(guild_id, user_id, self._clock())

    def switch(
        self, guild_id: int, user_id: int, username: str, raw_activity: str,
    ) -> tuple[Session | None, Session]:
        """Close the current session (if any) and open a new one atomically.

        Returns (closed_session_or_None, new_session).
        """
        activity = self._resolve(guild_id, user_id, raw_activity)
        return self._db.switch_session(guild_id, user_id, username, activity, self._clock())

    def status(self, guild_id: int, user_id: int) -> Status:
        session = self._db.get_open_session(guild_id, user_id)
        if session is None:
            return Status(session=None)
        return Status(session=session, elapsed=session.elapsed(self._clock()))

    def who(self, guild_id: int) -> list[ActiveUser]:
        """Every active user in the guild, earliest start first."""
        now = self._clock()
        return [
            ActiveUser(
                user_id=session.user_id,
                username=username,
                activity=session.activity,
                elapsed=session.elapsed(now),
            )
            for session, username in self._db.list_open_sessions(guild_id)
        ]

    def recent(self, guild_id: int, user_id: int, n: int = 5) -> list[Session]:
        """The n most recently closed sessions, most recent first."""
        if n <= 0:
            return []
        return self._db.recent_sessions(guild_id, user_id, limit=n)

    def rename(
        self, guild_id: int, user_id: int, old_activity: str, new_activity: str,
    ) -> tuple[int, int]:
        """Relabel the user's history, merging into an existing activity.

        Both names are taken verbatim. Raises UnknownActivity when the user
        has no history under old_activity.
        """
        old, new = old_activity.strip(), new_activity.strip()
        if not old or not new:
            raise UsageError("The activity name is empty.")
        return self._db.rename_activity(guild_id, user_id, old, new)


def format_duration(delta: timedelta | int) -> str:
    """Render a duration as '1h 05m 12s' / '5m 12s' / '12s'."""
    total = int(delta.total_seconds()) if isinstance(delta, timedelta) else int(delta)
    total = max(0, total)
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {seconds:02d}s"
    if minutes:
        return f"{minutes}m {seconds:02d}s"
    return f"{seconds}s"


def format_minutes(minutes: int) -> str:
    """Render whole minutes as '2h 30m' / '45m'."""
    hours, mins = divmod(max(0, minutes), 60)
    if hours:
        return f"{hours}h {mins:02d}m"
    return f"{mins}m"

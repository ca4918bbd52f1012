"""
ClockBot — Data Models.

Sessions persist in SQLite across restarts; aggregates and archives are
derived from them by the weekly rollover. Time is stored in whole seconds and
exposed as whole minutes for aggregation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass
class User:
    """A community member, implicitly registered on their first command."""

    guild_id: int
    user_id: int
    username: str
    first_seen: str = ""


@dataclass
class Session:
    """One contiguous span of work on one canonical activity.

    Open while `ended_at` is None. At most one open session exists per
    (guild_id, user_id).
    """

    id: int
    guild_id: int
    user_id: int
    activity: str
    started_at: datetime
    ended_at: datetime | None = None
    seconds: int | None = None        # set on close
    week_id: str | None = None        # set when archived by rollover

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    @property
    def minutes(self) -> int:
        return (self.seconds or 0) // 60

    def elapsed(self, now: datetime) -> timedelta:
        """Duration so far (open) or total duration (closed)."""
        end = self.ended_at or now
        return end - self.started_at


@dataclass
class Alias:
    """Short key → canonical activity, scoped to a user or to the guild."""

    guild_id: int
    scope: str           # "user" | "guild"
    owner_id: int        # user id for user scope, 0 for guild scope
    key: str             # normalized
    activity: str


@dataclass
class AggregateEntry:
    """Per (user, activity) time total — weekly, archived or all-time."""

    guild_id: int
    user_id: int
    activity: str
    seconds: int
    session_count: int = 0
    username: str = ""

    @property
    def minutes(self) -> int:
        return self.seconds // 60


@dataclass
class LeaderboardEntry:
    user_id: int
    username: str
    seconds: int

    @property
    def minutes(self) -> int:
        return self.seconds // 60


@dataclass
class RoleAssignment:
    """The (style, tier) applied to a user by the last classification run."""

    guild_id: int
    user_id: int
    style: str
    tier: int
    label: str
    week_id: str
    assigned_at: str = ""


@dataclass
class WeeklySummary:
    """Aggregate figures for one archived week of one guild."""

    week_id: str
    total_seconds: int = 0
    total_sessions: int = 0
    unique_workers: int = 0
    mvp: LeaderboardEntry | None = None
    top_activity: tuple[str, int] | None = None            # (activity, seconds)
    longest_session: tuple[str, str, int] | None = None    # (username, activity, seconds)
    breakdown: list[AggregateEntry] = field(default_factory=list)

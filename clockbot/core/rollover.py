"""
ClockBot — Weekly Rollover & Archival.

The week turns over at Monday 00:00 in the configured timezone. The last
boundary that was rolled over is stored in the database (not held in
memory), so a restart after a missed boundary catches up, and running the
rollover twice for the same boundary is a no-op.

Each boundary is archived in one transaction by ArchiveDB.archive_week:
split spanning sessions → snapshot → archive + all-time totals → clear the
week → advance the stored boundary.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, tzinfo
from typing import TYPE_CHECKING

from clockbot.core.sessions import Clock, utc_now

if TYPE_CHECKING:
    from clockbot.data.db import ArchiveDB
    from clockbot.data.models import AggregateEntry

logger = logging.getLogger(__name__)


class RolloverPolicy(str, enum.Enum):
    """What happens to sessions still open at the boundary."""

    SPLIT = "split"              # close at T, continue in a new session from T
    FORCE_CLOSE = "force_close"  # close at T, no continuation


def current_boundary(now: datetime, tz: tzinfo) -> datetime:
    """The most recent Monday 00:00 (local) at or before `now`."""
    local = now.astimezone(tz)
    monday = local.date() - timedelta(days=local.weekday())
    return datetime.combine(monday, time(0), tzinfo=tz)


def pending_boundaries(last: datetime | None, now: datetime, tz: tzinfo) -> list[datetime]:
    """Boundaries not yet rolled over, oldest first.

    With no stored boundary only the current one is pending.
    """
    latest = current_boundary(now, tz)
    if last is None:
        return [latest]

    pending: list[datetime] = []
    day = last.astimezone(tz).date()
    while True:
        day += timedelta(days=7)
        boundary = datetime.combine(day, time(0), tzinfo=tz)
        if boundary > latest:
            break
        pending.append(boundary)
    return pending


def week_label(boundary: datetime, tz: tzinfo) -> str:
    """ISO week id (YYYY-Www) of the week that closes at `boundary`."""
    closing_day = boundary.astimezone(tz).date() - timedelta(days=1)
    year, week, _ = closing_day.isocalendar()
    return f"{year}-W{week:02d}"


@dataclass
class RolloverResult:
    boundary: datetime
    week_id: str
    snapshot: list[AggregateEntry] = field(default_factory=list)
    split_count: int = 0

    @property
    def guild_ids(self) -> list[int]:
        return sorted({e.guild_id for e in self.snapshot})


class WeeklyRollover:
    def __init__(
        self,
        db: ArchiveDB,
        tz: tzinfo,
        policy: RolloverPolicy = RolloverPolicy.SPLIT,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._tz = tz
        self._policy = RolloverPolicy(policy)
        self._clock = clock

    def run_at(self, boundary: datetime) -> RolloverResult | None:
        """Roll over one boundary. Returns None if it was already applied."""
        week_id = week_label(boundary, self._tz)
        outcome = self._db.archive_week(
            boundary, week_id, carry_over=self._policy is RolloverPolicy.SPLIT,
        )
        if outcome is None:
            return None
        snapshot, split_count = outcome
        return RolloverResult(boundary, week_id, snapshot, split_count)

    def run_due(self, now: datetime | None = None) -> list[RolloverResult]:
        """Roll over every boundary that has passed since the last run."""
        now = now or self._clock()
        boundaries = pending_boundaries(self._db.last_boundary(), now, self._tz)
        if len(boundaries) > 1:
            logger.warning("Catching up %d missed week boundaries", len(boundaries))

        results = []
        for boundary in boundaries:
            result = self.run_at(boundary)
            if result is not None:
                results.append(result)
        return results

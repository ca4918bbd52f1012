"""Tests for clockbot.core.clock_service — command handling end to end."""

import time
from datetime import timedelta, timezone, datetime
from unittest.mock import MagicMock

import pytest

from clockbot.core.clock_service import (
    ClockService,
    Command,
    ErrorResponse,
    ResponseKind,
    error_response,
)
from clockbot.core.errors import PermissionDenied

from conftest import ALICE, BOB, GUILD


@pytest.fixture
def service(engine, resolver, session_db, archive_db):
    return ClockService(engine, resolver, session_db, archive_db, prefix="/clock")


def _cmd(name, args="", user_id=ALICE, username="alice"):
    return Command(guild_id=GUILD, user_id=user_id, username=username, name=name, args=args)


class TestClockInOut:
    @pytest.mark.asyncio
    async def test_clock_in(self, service):
        resp = await service.handle(_cmd("in", "bot-stuff"))
        assert resp.kind is ResponseKind.STARTED
        assert resp.title == "🟢 Clocked In"
        assert "**bot-stuff**" in resp.message
        assert resp.fields == []

    @pytest.mark.asyncio
    async def test_clock_in_through_alias(self, service):
        await service.handle(_cmd("alias", "bs bot-stuff"))
        resp = await service.handle(_cmd("in", "BS"))
        assert "**bot-stuff**" in resp.message
        assert resp.fields == [("Alias", "`BS` → bot-stuff")]

    @pytest.mark.asyncio
    async def test_clock_in_twice(self, service):
        await service.handle(_cmd("in", "bot-stuff"))
        resp = await service.handle(_cmd("in", "design"))
        assert isinstance(resp, ErrorResponse)
        assert resp.code == "already_active"
        assert resp.title == "⚠️ Already Clocked In"
        assert "bot-stuff" in resp.message

    @pytest.mark.asyncio
    async def test_clock_in_needs_activity(self, service):
        resp = await service.handle(_cmd("in", "   "))
        assert resp.code == "usage"

    @pytest.mark.asyncio
    async def test_clock_out(self, service, clock):
        await service.handle(_cmd("in", "bot-stuff"))
        clock.advance(minutes=90, seconds=5)
        resp = await service.handle(_cmd("out"))
        assert resp.kind is ResponseKind.STOPPED
        assert resp.title == "🔴 Clocked Out"
        assert resp.fields == [("Duration", "`1h 30m 05s`")]

    @pytest.mark.asyncio
    async def test_clock_out_idle(self, service):
        resp = await service.handle(_cmd("out"))
        assert resp.code == "no_active_session"
        assert resp.title == "🤷 Not Clocked In"

    @pytest.mark.asyncio
    async def test_switch(self, service, clock):
        await service.handle(_cmd("in", "bot-stuff"))
        clock.advance(minutes=10)
        resp = await service.handle(_cmd("switch", "design"))
        assert resp.title == "🔄 Switched"
        assert "**design**" in resp.message
        assert resp.fields == [("Finished bot-stuff", "`10m 00s`")]

    @pytest.mark.asyncio
    async def test_switch_from_idle(self, service):
        resp = await service.handle(_cmd("switch", "design"))
        assert resp.kind is ResponseKind.STARTED
        assert resp.fields == []


class TestQueries:
    @pytest.mark.asyncio
    async def test_status_idle(self, service):
        resp = await service.handle(_cmd("status"))
        assert resp.kind is ResponseKind.IDLE
        assert resp.title == "😴 alice is not working"

    @pytest.mark.asyncio
    async def test_status_active(self, service, clock):
        await service.handle(_cmd("in", "bot-stuff"))
        clock.advance(minutes=5, seconds=12)
        resp = await service.handle(_cmd("status"))
        assert resp.kind is ResponseKind.STARTED
        assert resp.fields == [("Elapsed", "`5m 12s`")]

    @pytest.mark.asyncio
    async def test_who(self, service, clock):
        assert (await service.handle(_cmd("who"))).title == "😴 Nobody is working right now"
        await service.handle(_cmd("in", "bot-stuff"))
        clock.advance(minutes=1)
        await service.handle(_cmd("in", "design", user_id=BOB, username="bob"))
        resp = await service.handle(_cmd("who"))
        assert resp.title == "🔨 2 people working"
        assert resp.message.index("alice") < resp.message.index("bob")

    @pytest.mark.asyncio
    async def test_recent(self, service, clock):
        assert (await service.handle(_cmd("recent"))).title == "📭 No finished sessions yet"
        for activity in ("a", "b"):
            await service.handle(_cmd("in", activity))
            clock.advance(minutes=30)
            await service.handle(_cmd("out"))
        resp = await service.handle(_cmd("recent", "1"))
        assert resp.title == "🕘 alice's last 1 sessions"
        assert resp.message.startswith("**b**")

    @pytest.mark.parametrize("arg", ["zero", "0", "26"])
    @pytest.mark.asyncio
    async def test_recent_bad_count(self, service, arg):
        resp = await service.handle(_cmd("recent", arg))
        assert resp.code == "usage"

    @pytest.mark.asyncio
    async def test_stats(self, service, clock):
        assert (await service.handle(_cmd("stats"))).kind is ResponseKind.IDLE
        await service.handle(_cmd("in", "bot-stuff"))
        clock.advance(minutes=45)
        await service.handle(_cmd("out"))
        resp = await service.handle(_cmd("stats"))
        week_name, week_text = resp.fields[0]
        assert week_name == "📅 This Week"
        assert "**bot-stuff** — `45m`" in week_text
        # All time includes the running week
        assert resp.fields[1] == ("⏳ All Time", week_text)

    @pytest.mark.asyncio
    async def test_stats_total_is_sum_of_rows(self, service, clock):
        for activity in ("a", "b"):
            await service.handle(_cmd("in", activity))
            clock.advance(minutes=59, seconds=30)
            await service.handle(_cmd("out"))

        resp = await service.handle(_cmd("stats"))

        assert resp.fields[0][1].splitlines() == [
            "**a** — `59m`",
            "**b** — `59m`",
            "Total: `1h 58m`",
        ]


class TestLeaderboard:
    @pytest.mark.asyncio
    async def test_current(self, service, clock):
        for user_id, username, minutes in ((ALICE, "alice", 30), (BOB, "bob", 60)):
            await service.handle(_cmd("in", "x", user_id=user_id, username=username))
            clock.advance(minutes=minutes)
            await service.handle(_cmd("out", user_id=user_id, username=username))

        resp = await service.handle(_cmd("leaderboard"))

        assert resp.kind is ResponseKind.LEADERBOARD
        assert resp.footer == "Weekly stats reset every Monday"
        (week_name, week_text), (all_name, all_text) = resp.fields
        assert (week_name, all_name) == ("📅 This Week", "⏳ All Time")
        assert week_text.splitlines() == ["🥇 **bob** — `1h 00m`", "🥈 **alice** — `30m`"]
        assert all_text == week_text

    @pytest.mark.asyncio
    async def test_totals_match_stats(self, service, clock):
        for activity in ("a", "b"):
            await service.handle(_cmd("in", activity))
            clock.advance(minutes=59, seconds=30)
            await service.handle(_cmd("out"))

        resp = await service.handle(_cmd("leaderboard"))

        assert resp.fields[0][1] == "🥇 **alice** — `1h 58m`"
        assert resp.fields[1][1] == "🥇 **alice** — `1h 58m`"

    @pytest.mark.asyncio
    async def test_empty(self, service):
        resp = await service.handle(_cmd("lb"))
        assert resp.fields[0][1] == "*No data yet*"

    @pytest.mark.asyncio
    async def test_archived_week(self, service, clock, archive_db):
        await service.handle(_cmd("in", "x"))
        clock.advance(minutes=30)
        await service.handle(_cmd("out"))
        archive_db.archive_week(datetime(2025, 1, 19, 23, 0, tzinfo=timezone.utc), "2025-W03")

        resp = await service.handle(_cmd("leaderboard", "2025-w03"))

        assert resp.title == "🏆 Leaderboard — 2025-W03"
        assert resp.message == "🥇 **alice** — `30m`"

    @pytest.mark.asyncio
    async def test_bad_week_id(self, service):
        resp = await service.handle(_cmd("leaderboard", "last week"))
        assert resp.code == "usage"


class TestRename:
    @pytest.mark.asyncio
    async def test_rename(self, service, clock):
        await service.handle(_cmd("in", "botstuff"))
        clock.advance(minutes=5)
        await service.handle(_cmd("out"))
        resp = await service.handle(_cmd("rename", "botstuff -> bot-stuff"))
        assert resp.title == "✏️ Renamed"
        assert "(1 sessions relabeled)" in resp.message

    @pytest.mark.asyncio
    async def test_unknown(self, service):
        resp = await service.handle(_cmd("rename", "ghost -> bot-stuff"))
        assert resp.code == "unknown_activity"

    @pytest.mark.asyncio
    async def test_missing_arrow(self, service):
        resp = await service.handle(_cmd("rename", "botstuff bot-stuff"))
        assert resp.code == "usage"


class TestAliases:
    @pytest.mark.asyncio
    async def test_personal_alias_lifecycle(self, service):
        saved = await service.handle(_cmd("alias", "BS bot-stuff"))
        assert saved.message == "Alias `bs` → **bot-stuff**"

        listed = await service.handle(_cmd("aliases"))
        assert listed.message == "`bs` → **bot-stuff**"

        removed = await service.handle(_cmd("unalias", "bs"))
        assert removed.title == "🗑️ Alias `bs` removed"
        assert (await service.handle(_cmd("unalias", "bs"))).kind is ResponseKind.IDLE

    @pytest.mark.asyncio
    async def test_guild_alias_visible_to_everyone(self, service):
        await service.handle(_cmd("galias", "mtg meetings"))
        resp = await service.handle(_cmd("in", "mtg", user_id=BOB, username="bob"))
        assert "**meetings**" in resp.message
        listed = await service.handle(_cmd("galiases", user_id=BOB, username="bob"))
        assert listed.title == "🔖 Server aliases"

    @pytest.mark.asyncio
    async def test_alias_usage(self, service):
        assert (await service.handle(_cmd("alias", "bs"))).code == "usage"
        assert (await service.handle(_cmd("unalias"))).code == "usage"


class TestHelpAndErrors:
    @pytest.mark.asyncio
    async def test_help(self, service):
        resp = await service.handle(_cmd("help"))
        assert resp.title == "⏱ ClockBot Commands"
        assert "`/clock in <what you're working on>`" in resp.message

    @pytest.mark.asyncio
    async def test_unknown_command_shows_help(self, service):
        assert (await service.handle(_cmd("dance"))).title == "⏱ ClockBot Commands"

    @pytest.mark.asyncio
    async def test_slow_store_becomes_busy(self, resolver, session_db, archive_db):
        engine = MagicMock()
        engine.clock_in.side_effect = lambda *a: time.sleep(0.3)
        slow = ClockService(engine, resolver, session_db, archive_db, timeout=0.01)

        resp = await slow.handle(_cmd("in", "bot-stuff"))

        assert resp.code == "storage_unavailable"
        assert resp.title == "⏳ Busy"
        # The worker thread keeps running, so the user is told to check first
        assert "may still go through" in resp.message
        assert "status" in resp.message

    @pytest.mark.asyncio
    async def test_slow_write_may_still_land(self, resolver, session_db, archive_db, engine):
        slow_engine = MagicMock()

        def clock_in(*args):
            time.sleep(0.2)
            return engine.clock_in(*args)

        slow_engine.clock_in.side_effect = clock_in
        slow = ClockService(slow_engine, resolver, session_db, archive_db, timeout=0.01)

        resp = await slow.handle(_cmd("in", "bot-stuff"))
        assert resp.code == "storage_unavailable"

        time.sleep(0.4)
        assert session_db.count_open_sessions(GUILD, ALICE) == 1
        status = await ClockService(engine, resolver, session_db, archive_db).handle(_cmd("status"))
        assert status.kind is ResponseKind.STARTED

    @pytest.mark.asyncio
    async def test_resolver_input_error_is_usage(self, service):
        resp = await service.handle(_cmd("alias", "--- bot-stuff"))
        assert resp.code == "usage"
        assert resp.message == "The alias key is empty."

    @pytest.mark.asyncio
    async def test_internal_value_error_is_not_usage(self, resolver, session_db, archive_db):
        engine = MagicMock()
        engine.clock_out.side_effect = ValueError("Invalid isoformat string: 'x'")
        broken = ClockService(engine, resolver, session_db, archive_db)

        resp = await broken.handle(_cmd("out"))

        assert resp.code != "usage"
        assert resp.title == "⚠️ Something went wrong"
        assert "isoformat" not in resp.message

    @pytest.mark.asyncio
    async def test_unexpected_error_hides_details(self, resolver, session_db, archive_db):
        engine = MagicMock()
        engine.clock_out.side_effect = RuntimeError("secret internals")
        broken = ClockService(engine, resolver, session_db, archive_db)

        resp = await broken.handle(_cmd("out"))

        assert resp.kind is ResponseKind.ERROR
        assert "secret" not in resp.message

    def test_error_response_for_permission(self):
        resp = error_response(PermissionDenied())
        assert resp.code == "permission_denied"
        assert resp.title == "⛔ Not Allowed"

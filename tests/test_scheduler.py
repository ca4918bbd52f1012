"""Tests for clockbot.core.scheduler — the weekly job."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from clockbot.core.classifier import Classification, StyleArchetype, StyleClassifier
from clockbot.core.errors import EmbeddingUnavailable, StorageUnavailable
from clockbot.core.roles import ApplyReport, RoleAssigner
from clockbot.core.rollover import RolloverResult, WeeklyRollover
from clockbot.core.scheduler import CLASSIFIED_WEEK_KEY, WeeklyJob
from clockbot.data.models import AggregateEntry, WeeklySummary

from conftest import ALICE, GUILD, ZURICH

BOUNDARY_UTC = datetime(2025, 1, 19, 23, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _result(week_id="2025-W03", guild_id=GUILD):
    entry = AggregateEntry(guild_id, ALICE, "bot-stuff", 3600, 1, "alice")
    return RolloverResult(BOUNDARY_UTC, week_id, [entry], 0)


def _archive(meta=None):
    meta = dict(meta or {})
    archive = MagicMock()
    archive.get_meta.side_effect = meta.get
    archive.set_meta.side_effect = meta.__setitem__
    archive.week_entries.return_value = [AggregateEntry(GUILD, ALICE, "bot-stuff", 3600, 1, "alice")]
    archive.weekly_summary.return_value = WeeklySummary(week_id="2025-W03")
    archive.meta = meta
    return archive


def _make_job(rollover=None, archive=None, classifier=None, assigner=None, **kwargs):
    rollover = rollover or MagicMock(run_due=MagicMock(return_value=[]))
    classifier = classifier or MagicMock(classify_week=AsyncMock(return_value=[
        Classification(GUILD, ALICE, "alice", "architect", 1, 60),
    ]))
    assigner = assigner or MagicMock(apply=AsyncMock(return_value=ApplyReport(applied=1)))
    defaults = dict(
        role_port_for=MagicMock(return_value=MagicMock()),
        recap_notifier=AsyncMock(),
        alert_notifier=AsyncMock(),
        alert_chat_id=42,
        sleep=AsyncMock(),
    )
    defaults.update(kwargs)
    return WeeklyJob(rollover, archive or _archive(), classifier, assigner, **defaults)


# ---------------------------------------------------------------------------
# Rollover step
# ---------------------------------------------------------------------------


class TestRolloverStep:
    @pytest.mark.asyncio
    async def test_nothing_due(self):
        job = _make_job()
        report = await job.run()
        assert report.rolled == []
        assert report.rollover_failed is False

    @pytest.mark.asyncio
    async def test_retries_transient_failure(self):
        rollover = MagicMock()
        rollover.run_due.side_effect = [StorageUnavailable("locked"), [_result()]]
        job = _make_job(rollover=rollover, retry_seconds=5)

        report = await job.run()

        assert [r.week_id for r in report.rolled] == ["2025-W03"]
        job._sleep.assert_awaited_once_with(5)

    @pytest.mark.asyncio
    async def test_alerts_after_last_attempt(self):
        rollover = MagicMock()
        rollover.run_due.side_effect = StorageUnavailable("locked")
        alert = AsyncMock()
        job = _make_job(rollover=rollover, alert_notifier=alert, max_attempts=3, retry_seconds=1)

        report = await job.run()

        assert report.rollover_failed is True
        assert rollover.run_due.call_count == 3
        assert [c.args[0] for c in job._sleep.await_args_list] == [1, 2]
        alert.send_message.assert_awaited_once()
        assert alert.send_message.await_args.args[0] == 42

    @pytest.mark.asyncio
    async def test_unexpected_error_alerts_without_retry(self):
        rollover = MagicMock()
        rollover.run_due.side_effect = RuntimeError("bug")
        alert = AsyncMock()
        job = _make_job(rollover=rollover, alert_notifier=alert)

        report = await job.run()

        assert report.rollover_failed is True
        assert rollover.run_due.call_count == 1
        alert.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_alert_failure_is_swallowed(self):
        rollover = MagicMock()
        rollover.run_due.side_effect = RuntimeError("bug")
        alert = AsyncMock()
        alert.send_message.side_effect = RuntimeError("telegram down")
        job = _make_job(rollover=rollover, alert_notifier=alert)
        report = await job.run()
        assert report.rollover_failed is True


# ---------------------------------------------------------------------------
# Recap step
# ---------------------------------------------------------------------------


class TestRecapStep:
    @pytest.mark.asyncio
    async def test_recap_per_guild(self):
        rollover = MagicMock(run_due=MagicMock(return_value=[_result()]))
        recap = AsyncMock()
        job = _make_job(rollover=rollover, recap_notifier=recap)

        with patch("clockbot.core.scheduler.build_recap", AsyncMock(return_value="recap!")):
            report = await job.run()

        recap.send_message.assert_awaited_once_with(GUILD, "recap!")
        assert report.recaps_sent == 1

    @pytest.mark.asyncio
    async def test_recap_uses_configured_writer(self):
        rollover = MagicMock(run_due=MagicMock(return_value=[_result()]))
        writer = MagicMock()
        job = _make_job(rollover=rollover, recap_llm=writer)

        with patch("clockbot.core.scheduler.build_recap", AsyncMock(return_value="recap!")) as build:
            await job.run()

        assert build.await_args.args[1] is writer

    @pytest.mark.asyncio
    async def test_recap_failure_does_not_stop_classification(self):
        rollover = MagicMock(run_due=MagicMock(return_value=[_result()]))
        recap = AsyncMock()
        recap.send_message.side_effect = RuntimeError("no channel")
        archive = _archive({"last_week_id": "2025-W03"})
        job = _make_job(rollover=rollover, archive=archive, recap_notifier=recap)

        with patch("clockbot.core.scheduler.build_recap", AsyncMock(return_value="recap!")):
            report = await job.run()

        assert report.recaps_sent == 0
        assert report.classified_week == "2025-W03"


# ---------------------------------------------------------------------------
# Classification step
# ---------------------------------------------------------------------------


class TestClassificationStep:
    @pytest.mark.asyncio
    async def test_classifies_pending_week_and_applies_roles(self):
        archive = _archive({"last_week_id": "2025-W03"})
        assigner = MagicMock(apply=AsyncMock(return_value=ApplyReport(applied=1)))
        job = _make_job(archive=archive, assigner=assigner)

        report = await job.run()

        assert report.classified_week == "2025-W03"
        assert archive.meta[CLASSIFIED_WEEK_KEY] == "2025-W03"
        assigner.apply.assert_awaited_once()
        assert assigner.apply.await_args.args[1] == GUILD
        assert report.role_reports[GUILD].applied == 1

    @pytest.mark.asyncio
    async def test_skips_already_classified_week(self):
        archive = _archive({"last_week_id": "2025-W03", CLASSIFIED_WEEK_KEY: "2025-W03"})
        job = _make_job(archive=archive)
        report = await job.run()
        assert report.classified_week is None
        job._classifier.classify_week.assert_not_called()

    @pytest.mark.asyncio
    async def test_embedding_outage_defers(self):
        archive = _archive({"last_week_id": "2025-W03"})
        classifier = MagicMock(classify_week=AsyncMock(side_effect=EmbeddingUnavailable("down")))
        job = _make_job(archive=archive, classifier=classifier)

        report = await job.run()

        assert report.classified_week is None
        assert CLASSIFIED_WEEK_KEY not in archive.meta

    @pytest.mark.asyncio
    async def test_roles_disabled(self):
        archive = _archive({"last_week_id": "2025-W03"})
        assigner = MagicMock(apply=AsyncMock())
        job = _make_job(archive=archive, assigner=assigner, roles_enabled=False)

        report = await job.run()

        assigner.apply.assert_not_called()
        assert report.classified_week == "2025-W03"

    @pytest.mark.asyncio
    async def test_unavailable_guild_is_skipped(self):
        archive = _archive({"last_week_id": "2025-W03"})
        assigner = MagicMock(apply=AsyncMock())
        job = _make_job(archive=archive, assigner=assigner, role_port_for=MagicMock(return_value=None))

        report = await job.run()

        assigner.apply.assert_not_called()
        assert report.classified_week == "2025-W03"


# ---------------------------------------------------------------------------
# End to end with real stores
# ---------------------------------------------------------------------------


class TestWeeklyJobEndToEnd:
    @pytest.mark.asyncio
    async def test_full_tick(self, engine, clock, archive_db, role_db):
        engine.clock_in(GUILD, ALICE, "alice", "bot-stuff")
        clock.advance(minutes=90)
        engine.clock_out(GUILD, ALICE)
        clock.set(BOUNDARY_UTC + timedelta(hours=2))

        async def embed(text):
            return [1.0, 0.0] if text in ("bot-stuff", "build") else [0.0, 1.0]

        classifier = StyleClassifier(
            embed, [0, 1200], [StyleArchetype("architect", "build"), StyleArchetype("ghost", "rest")],
        )
        port = MagicMock(
            find_role=AsyncMock(return_value=None),
            ensure_role=AsyncMock(return_value="role"),
            assign_role=AsyncMock(),
            revoke_role=AsyncMock(),
            set_nickname=AsyncMock(),
        )
        recap = AsyncMock()
        job = WeeklyJob(
            rollover=WeeklyRollover(archive_db, ZURICH, clock=clock),
            archive_db=archive_db,
            classifier=classifier,
            assigner=RoleAssigner(role_db),
            role_port_for=lambda guild_id: port,
            recap_notifier=recap,
            sleep=AsyncMock(),
        )

        report = await job.run()

        assert [r.week_id for r in report.rolled] == ["2025-W03"]
        assert report.classified_week == "2025-W03"
        recap.send_message.assert_awaited_once()
        assert "alice" in recap.send_message.await_args.args[1]
        assignment = role_db.get_assignment(GUILD, ALICE)
        assert (assignment.style, assignment.tier) == ("architect", 1)

        # A second tick finds nothing to do.
        again = await job.run()
        assert again.rolled == []
        assert again.classified_week is None

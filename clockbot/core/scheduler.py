"""
ClockBot — Weekly Job.

One tick of the weekly loop (run every ROLLOVER_CHECK_MINUTES and once at
start-up):

1. Rollover: archive every week boundary that has passed. Transient storage
   failures are retried with linear backoff; after the last attempt the
   operator is alerted and the tick ends (the next tick tries again).
2. Recap: for each freshly archived week, post a recap to every guild that
   had activity. LLM text when available, plain text otherwise.
3. Classification: the most recently archived week is classified and roles
   are applied, unless that week is already marked classified. An embedding
   outage defers this step to the next tick.

This module is platform-agnostic: it depends on RolePort and
NotificationPort protocols, not on Discord or Telegram.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable

from clockbot.core.errors import EmbeddingUnavailable, StorageUnavailable
from clockbot.core.recap import build_recap

if TYPE_CHECKING:
    from clockbot.core.classifier import StyleClassifier
    from clockbot.core.recap_llm import RecapLLM
    from clockbot.core.rollover import RolloverResult, WeeklyRollover
    from clockbot.core.roles import ApplyReport, RoleAssigner
    from clockbot.data.db import ArchiveDB
    from clockbot.ports.notification_port import NotificationPort
    from clockbot.ports.role_port import RolePort

logger = logging.getLogger(__name__)

LAST_WEEK_KEY = "last_week_id"
CLASSIFIED_WEEK_KEY = "last_classified_week"


@dataclass
class JobReport:
    rolled: list[RolloverResult] = field(default_factory=list)
    rollover_failed: bool = False
    recaps_sent: int = 0
    classified_week: str | None = None
    role_reports: dict[int, ApplyReport] = field(default_factory=dict)


class WeeklyJob:
    def __init__(
        self,
        rollover: WeeklyRollover,
        archive_db: ArchiveDB,
        classifier: StyleClassifier,
        assigner: RoleAssigner,
        role_port_for: Callable[[int], RolePort | None],
        recap_notifier: NotificationPort | None = None,
        recap_llm: RecapLLM | None = None,
        alert_notifier: NotificationPort | None = None,
        alert_chat_id: int = 0,
        roles_enabled: bool = True,
        max_attempts: int = 3,
        retry_seconds: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._rollover = rollover
        self._archive = archive_db
        self._classifier = classifier
        self._assigner = assigner
        self._role_port_for = role_port_for
        self._recap_notifier = recap_notifier
        self._recap_llm = recap_llm
        self._alert_notifier = alert_notifier
        self._alert_chat_id = alert_chat_id
        self._roles_enabled = roles_enabled
        self._max_attempts = max(1, max_attempts)
        self._retry_seconds = retry_seconds
        self._sleep = sleep

    async def run(self, now: datetime | None = None) -> JobReport:
        report = JobReport()

        rolled = await self._run_rollover(now)
        if rolled is None:
            report.rollover_failed = True
            return report
        report.rolled = rolled

        for result in rolled:
            report.recaps_sent += await self._post_recaps(result)

        await self._classify_pending(report)
        return report

    # -- 1. rollover ---------------------------------------------------------

    async def _run_rollover(self, now: datetime | None) -> list[RolloverResult] | None:
        for attempt in range(1, self._max_attempts + 1):
            try:
                results = await asyncio.to_thread(self._rollover.run_due, now)
            except StorageUnavailable as exc:
                logger.warning(
                    "Rollover attempt %d/%d failed: %s", attempt, self._max_attempts, exc,
                )
                if attempt == self._max_attempts:
                    await self._alert(
                        f"⚠️ Weekly rollover failed after {attempt} attempts: {exc}"
                    )
                    return None
                await self._sleep(self._retry_seconds * attempt)
            except Exception as exc:
                logger.error("Rollover failed: %s", exc)
                await self._alert(f"⚠️ Weekly rollover failed: {exc}")
                return None
            else:
                for result in results:
                    logger.info(
                        "Rolled over week %s (%d entries, %d split)",
                        result.week_id, len(result.snapshot), result.split_count,
                    )
                return results
        return None

    # -- 2. recap --------------------------------------------------------------

    async def _post_recaps(self, result: RolloverResult) -> int:
        if self._recap_notifier is None:
            return 0
        sent = 0
        for guild_id in result.guild_ids:
            try:
                summary = await asyncio.to_thread(
                    self._archive.weekly_summary, guild_id, result.week_id,
                )
                text = await build_recap(summary, self._recap_llm)
                await self._recap_notifier.send_message(guild_id, text)
                sent += 1
                logger.info("Weekly recap for %s sent to guild %d", result.week_id, guild_id)
            except Exception as exc:
                logger.error(
                    "Failed to send weekly recap for %s to guild %d: %s",
                    result.week_id, guild_id, exc,
                )
        return sent

    # -- 3. classification ---------------------------------------------------

    async def _classify_pending(self, report: JobReport) -> None:
        try:
            week_id = await asyncio.to_thread(self._archive.get_meta, LAST_WEEK_KEY)
            done = await asyncio.to_thread(self._archive.get_meta, CLASSIFIED_WEEK_KEY)
        except StorageUnavailable as exc:
            logger.warning("Classification check skipped: %s", exc)
            return
        if week_id is None or week_id == done:
            return

        try:
            entries = await asyncio.to_thread(self._archive.week_entries, week_id)
            classifications = await self._classifier.classify_week(entries)
        except (EmbeddingUnavailable, StorageUnavailable) as exc:
            logger.warning("Classification of %s deferred: %s", week_id, exc)
            return

        if self._roles_enabled:
            for guild_id in sorted({c.guild_id for c in classifications}):
                port = self._role_port_for(guild_id)
                if port is None:
                    logger.warning("Guild %d unavailable; roles not applied", guild_id)
                    continue
                guild_rows = [c for c in classifications if c.guild_id == guild_id]
                report.role_reports[guild_id] = await self._assigner.apply(
                    port, guild_id, guild_rows, week_id,
                )

        await asyncio.to_thread(self._archive.set_meta, CLASSIFIED_WEEK_KEY, week_id)
        report.classified_week = week_id
        logger.info("Week %s classified (%d users)", week_id, len(classifications))

    async def _alert(self, text: str) -> None:
        if self._alert_notifier is None or not self._alert_chat_id:
            logger.error("Operator alert (no alert channel configured): %s", text)
            return
        try:
            await self._alert_notifier.send_message(self._alert_chat_id, text)
        except Exception as exc:
            logger.error("Failed to send operator alert: %s", exc)

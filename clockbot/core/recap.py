"""
ClockBot — Weekly Recap.

Builds the end-of-week post for one guild from its archived week: totals,
MVP, top activity, longest session and a per-person breakdown. The LLM
writes the final text when one is configured; otherwise (or on any LLM
failure) the plain-text rendering is posted as is.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from clockbot.core.sessions import format_minutes

if TYPE_CHECKING:
    from clockbot.core.recap_llm import RecapLLM
    from clockbot.data.models import WeeklySummary

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You write the weekly recap post for a Discord community that tracks the "
    "time its members spend working. Turn the figures you are given into a short, "
    "upbeat post in English. Congratulate the MVP by name, mention the top "
    "activity and the longest session, and keep every number exactly as given. "
    "Use Discord markdown and at most a few emoji. Keep it under 200 words."
)


def format_recap(summary: WeeklySummary) -> str:
    """Plain-text recap of one archived week."""
    lines = [f"📊 Weekly recap — {summary.week_id}", ""]
    if not summary.breakdown:
        lines.append("No sessions were logged this week.")
        return "\n".join(lines)

    lines.append(f"Total time: {format_minutes(sum(e.minutes for e in summary.breakdown))}")
    lines.append(f"Sessions: {summary.total_sessions}")
    lines.append(f"Workers: {summary.unique_workers}")
    if summary.mvp is not None:
        lines.append(f"MVP: {summary.mvp.username} ({format_minutes(summary.mvp.minutes)})")
    if summary.top_activity is not None:
        activity, seconds = summary.top_activity
        lines.append(f"Top activity: {activity} ({format_minutes(seconds // 60)})")
    if summary.longest_session is not None:
        username, activity, seconds = summary.longest_session
        lines.append(
            f"Longest session: {username} on {activity} ({format_minutes(seconds // 60)})"
        )

    per_user: dict[str, list[tuple[str, int]]] = {}
    for entry in summary.breakdown:
        per_user.setdefault(entry.username, []).append((entry.activity, entry.seconds))

    lines.append("")
    lines.append("Breakdown:")
    for username in sorted(per_user, key=lambda u: -sum(s for _, s in per_user[u])):
        parts = ", ".join(
            f"{activity} {format_minutes(seconds // 60)}"
            for activity, seconds in sorted(per_user[username], key=lambda p: -p[1])
        )
        lines.append(f"  - {username}: {parts}")
    return "\n".join(lines)


async def build_recap(summary: WeeklySummary, llm: RecapLLM | None = None) -> str:
    """LLM-written recap, falling back to the plain-text rendering.

    The LLM text is dropped when it leaves out the MVP's name.
    """
    raw = format_recap(summary)
    if llm is None or not summary.breakdown:
        return raw

    try:
        text = await llm.rewrite(_SYSTEM_PROMPT, raw)
    except Exception as exc:
        logger.warning("Weekly recap %s: LLM rewrite failed: %s", summary.week_id, exc)
        return raw

    if not text:
        logger.warning("Weekly recap %s: LLM returned nothing", summary.week_id)
        return raw
    if summary.mvp is not None and summary.mvp.username not in text:
        logger.warning("Weekly recap %s: LLM text omits the MVP, posting plain text", summary.week_id)
        return raw
    return text

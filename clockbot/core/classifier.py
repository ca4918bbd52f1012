"""
ClockBot — Style/Tier Classifier.

Style: every distinct activity a user worked on is embedded; the user's
vector is the time-weighted mean of those vectors, and the archetype with
the highest cosine similarity wins (exact ties go to the archetype listed
first).

Tier: total weekly minutes mapped through ascending thresholds.

The embedder is injected (any `async (text) -> vector`), so tests run with
a stub and production uses clockbot.core.embeddings.embed.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Sequence

import numpy as np

from clockbot.core.errors import EmbeddingUnavailable

if TYPE_CHECKING:
    from clockbot.data.models import AggregateEntry

logger = logging.getLogger(__name__)

Embedder = Callable[[str], Awaitable[Sequence[float]]]


@dataclass(frozen=True)
class StyleArchetype:
    name: str
    description: str


# Canonical order; earlier wins exact ties.
STYLE_ARCHETYPES: tuple[StyleArchetype, ...] = (
    StyleArchetype(
        "architect",
        "designing systems, architecture, planning structure, building foundations, "
        "infrastructure and engineering design",
    ),
    StyleArchetype(
        "visionary",
        "creative ideas, art, music, writing, brainstorming, concept design, "
        "imagining new products and exploring possibilities",
    ),
    StyleArchetype(
        "executor",
        "shipping work, grinding through tasks, coding features, fixing bugs, "
        "getting things done and delivering output",
    ),
    StyleArchetype(
        "analyst",
        "research, studying, reading, data analysis, math, science, "
        "investigating problems and learning",
    ),
    StyleArchetype(
        "ghost",
        "quiet background work, idle time, miscellaneous small chores, "
        "lurking and unnamed tasks",
    ),
    StyleArchetype(
        "strategist",
        "strategy, management, organizing teams, scheduling, meetings, "
        "business planning and coordination",
    ),
    StyleArchetype(
        "maverick",
        "experiments, side projects, hacking, gaming, improvising, "
        "unconventional and spontaneous work",
    ),
)


@dataclass
class Classification:
    guild_id: int
    user_id: int
    username: str
    style: str
    tier: int
    minutes: int


def minutes_to_tier(minutes: int, thresholds: Sequence[int]) -> int:
    """Map weekly minutes to a 1-based tier. Monotonic; 0 minutes → tier 1."""
    return max(1, bisect.bisect_right(list(thresholds), max(0, minutes)))


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


class StyleClassifier:
    def __init__(
        self,
        embed: Embedder,
        thresholds: Sequence[int],
        archetypes: Sequence[StyleArchetype] = STYLE_ARCHETYPES,
        timeout: float | None = None,
    ) -> None:
        if not archetypes:
            raise ValueError("at least one archetype is required")
        self._embed = embed
        self._thresholds = list(thresholds)
        self._archetypes = list(archetypes)
        self._timeout = timeout
        self._cache: dict[str, np.ndarray] = {}

    async def _vector(self, text: str) -> np.ndarray:
        cached = self._cache.get(text)
        if cached is not None:
            return cached
        try:
            raw = await asyncio.wait_for(self._embed(text), timeout=self._timeout)
        except EmbeddingUnavailable:
            raise
        except Exception as exc:
            logger.error("Embedding failed for '%s': %s", text, exc)
            raise EmbeddingUnavailable(str(exc)) from exc
        vector = np.asarray(raw, dtype=np.float64)
        self._cache[text] = vector
        return vector

    async def style_for(self, activity_seconds: dict[str, int]) -> str:
        """Pick the archetype closest to the time-weighted activity mix."""
        activities = sorted(activity_seconds)
        vectors = [await self._vector(a) for a in activities]
        weights = np.asarray([activity_seconds[a] for a in activities], dtype=np.float64)
        if weights.sum() <= 0:
            weights = np.ones(len(activities))
        user_vector = np.average(np.stack(vectors), axis=0, weights=weights)

        best_name = self._archetypes[0].name
        best_score = -np.inf
        for archetype in self._archetypes:
            score = cosine_similarity(user_vector, await self._vector(archetype.description))
            if score > best_score:
                best_name, best_score = archetype.name, score
        return best_name

    def tier_for(self, minutes: int) -> int:
        return minutes_to_tier(minutes, self._thresholds)

    async def classify_week(self, entries: Iterable[AggregateEntry]) -> list[Classification]:
        """Classify every user present in a week snapshot.

        Users absent from the snapshot are left unclassified. Raises
        EmbeddingUnavailable if the provider fails.
        """
        per_user: dict[tuple[int, int], dict[str, int]] = {}
        usernames: dict[tuple[int, int], str] = {}
        for entry in entries:
            key = (entry.guild_id, entry.user_id)
            mix = per_user.setdefault(key, {})
            mix[entry.activity] = mix.get(entry.activity, 0) + entry.seconds
            if entry.username:
                usernames[key] = entry.username

        results = []
        for (guild_id, user_id), mix in sorted(per_user.items()):
            # Sum of per-activity whole minutes, matching the weekly breakdown
            minutes = sum(seconds // 60 for seconds in mix.values())
            style = await self.style_for(mix)
            tier = self.tier_for(minutes)
            results.append(Classification(
                guild_id=guild_id,
                user_id=user_id,
                username=usernames.get((guild_id, user_id), str(user_id)),
                style=style,
                tier=tier,
                minutes=minutes,
            ))
        logger.info("Classified %d users", len(results))
        return results

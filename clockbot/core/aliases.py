"""
ClockBot — Alias Resolver.

Maps a short key typed by a user to a canonical activity name.
Lookup order: the user's own aliases, then the guild's, then the raw input
unchanged. Keys are normalized on write and on lookup, so "BS", "bs" and
"Bs" address the same alias.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from clockbot.core.errors import UsageError
from clockbot.core.normalize import normalize_activity

if TYPE_CHECKING:
    from clockbot.data.db import AliasDB
    from clockbot.data.models import Alias

logger = logging.getLogger(__name__)

USER_SCOPE = "user"
GUILD_SCOPE = "guild"


class AliasResolver:
    def __init__(self, db: AliasDB) -> None:
        self._db = db

    @staticmethod
    def _owner(scope: str, user_id: int) -> int:
        if scope not in (USER_SCOPE, GUILD_SCOPE):
            raise ValueError(f"Unknown alias scope: {scope!r}")
        return user_id if scope == USER_SCOPE else 0

    def resolve(self, guild_id: int, user_id: int, raw: str) -> str:
        """Return the canonical activity for `raw`. Never fails."""
        key = normalize_activity(raw)
        if key:
            for scope, owner in ((USER_SCOPE, user_id), (GUILD_SCOPE, 0)):
                activity = self._db.get_alias(guild_id, scope, owner, key)
                if activity is not None:
                    logger.debug("Resolved '%s' via %s alias → '%s'", raw, scope, activity)
                    return activity
        return raw

    def set_alias(
        self, guild_id: int, user_id: int, scope: str, key: str, activity: str,
    ) -> Alias:
        """Create or replace an alias in the given scope.

        Guild scope needs elevated permission; the platform layer checks it.
        """
        normalized = normalize_activity(key)
        if not normalized:
            raise UsageError("The alias key is empty.")
        if not activity.strip():
            raise UsageError("The alias needs an activity.")
        owner = self._owner(scope, user_id)
        return self._db.set_alias(guild_id, scope, owner, normalized, activity.strip())

    def remove_alias(self, guild_id: int, user_id: int, scope: str, key: str) -> bool:
        owner = self._owner(scope, user_id)
        return self._db.remove_alias(guild_id, scope, owner, normalize_activity(key))

    def list_aliases(self, guild_id: int, user_id: int, scope: str) -> list[Alias]:
        owner = self._owner(scope, user_id)
        return self._db.list_aliases(guild_id, scope, owner)

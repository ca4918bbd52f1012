"""
ClockBot — Error taxonomy.

Every error carries a short, human-readable `user_message` that the platform
layer may show verbatim. Raw exception text never reaches users.
"""

from __future__ import annotations


class ClockError(Exception):
    """Base class for all errors raised by the clock core."""

    code = "clock_error"
    user_message = "Something went wrong. Please try again."
    transient = False


class AlreadyActive(ClockError):
    """Clock in while a session is already open."""

    code = "already_active"

    def __init__(self, activity: str) -> None:
        super().__init__(f"already clocked in on {activity!r}")
        self.activity = activity

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return (
            f"You're already clocked in on **{self.activity}**.\n"
            "Use `switch <activity>` to change task or `out` to stop."
        )


class NoActiveSession(ClockError):
    """Clock out while idle."""

    code = "no_active_session"
    user_message = "You're not clocked in. Use `in <activity>` first."


class UnknownActivity(ClockError):
    """Rename source has no history for this user."""

    code = "unknown_activity"

    def __init__(self, activity: str) -> None:
        super().__init__(f"no sessions found with activity {activity!r}")
        self.activity = activity

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return f"You have no sessions under **{self.activity}**."


class PermissionDenied(ClockError):
    """Raised by the platform layer for admin-only commands."""

    code = "permission_denied"
    user_message = "You need the Manage Server permission for that."


class StorageUnavailable(ClockError):
    """The database is locked, unreachable or timed out."""

    code = "storage_unavailable"
    user_message = "The time store is busy right now. Please try again in a moment."
    transient = True


class StorageTimeout(StorageUnavailable):
    """A store call outlived the command timeout; its worker thread may still commit."""

    user_message = (
        "The time store is slow right now and your action may still go through. "
        "Check `status` before trying again."
    )


class EmbeddingUnavailable(ClockError):
    """The embedding provider failed or timed out."""

    code = "embedding_unavailable"
    user_message = "Classification is temporarily unavailable. Please try again later."
    transient = True


class UsageError(ValueError):
    """Malformed command input. The message is written for the user and shown as is."""

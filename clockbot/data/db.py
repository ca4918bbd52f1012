"""
ClockBot — Time Store.

The Memory pillar: sessions, aliases, aggregates and archives persist in
SQLite across restarts. Every mutation runs inside a `BEGIN IMMEDIATE`
transaction, which takes SQLite's single write lock; together with the
partial unique index on open sessions this serializes per-user session
changes and keeps the weekly rollover exclusive of live clock-outs.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from clockbot.core.errors import (
    AlreadyActive,
    NoActiveSession,
    StorageUnavailable,
    UnknownActivity,
)
from clockbot.data.models import (
    AggregateEntry,
    Alias,
    LeaderboardEntry,
    RoleAssignment,
    Session,
    User,
    WeeklySummary,
)

logger = logging.getLogger(__name__)


def to_db_time(dt: datetime) -> str:
    """Serialize an aware datetime as a sortable UTC string (second precision)."""
    if dt.tzinfo is None:
        raise ValueError("naive datetime passed to the time store")
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def seconds_between(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds()))


class _SQLiteStore:
    """Shared connection and transaction handling for every store."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from clockbot.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        from clockbot.config import settings

        try:
            conn = sqlite3.connect(
                self._db_path,
                timeout=settings.DB_BUSY_TIMEOUT_SECONDS,
                isolation_level=None,
            )
        except sqlite3.Error as exc:
            raise StorageUnavailable(str(exc)) from exc
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for single-statement reads."""
        with closing(self._connect()) as conn:
            try:
                yield conn
            except sqlite3.OperationalError as exc:
                raise StorageUnavailable(str(exc)) from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block as one write transaction holding the write lock."""
        with closing(self._connect()) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                raise StorageUnavailable(str(exc)) from exc
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.OperationalError as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageUnavailable(str(exc)) from exc
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def _init_db(self) -> None:
        # The stores share one database file and query across each other's
        # tables, so every store creates the whole schema.
        with self._transaction() as conn:
            for store in (SessionDB, AliasDB, ArchiveDB, RoleDB):
                store._create_tables(conn)
        logger.debug("%s initialized at %s", type(self).__name__, self._db_path)


# ---------------------------------------------------------------------------
# Sessions & users
# ---------------------------------------------------------------------------


class SessionDB(_SQLiteStore):
    """Work sessions, the users that own them, and the weekly aggregate view."""

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                guild_id    INTEGER NOT NULL,
                user_id     INTEGER NOT NULL,
                username    TEXT    NOT NULL,
                first_seen  TEXT    NOT NULL,
                PRIMARY KEY (guild_id, user_id)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id    INTEGER NOT NULL,
                user_id     INTEGER NOT NULL,
                activity    TEXT    NOT NULL,
                started_at  TEXT    NOT NULL,
                ended_at    TEXT,
                seconds     INTEGER
            )
        """)
        # Migrate existing DBs: add new columns if missing
        existing_cols = {
            row[1] for row in conn.execute("PRAGMA table_info(sessions)").fetchall()
        }
        if "week_id" not in existing_cols:
            conn.execute("ALTER TABLE sessions ADD COLUMN week_id TEXT")
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_one_open
                ON sessions(guild_id, user_id) WHERE ended_at IS NULL
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_user "
            "ON sessions(guild_id, user_id, ended_at)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_week ON sessions(week_id)"
        )
        conn.execute("""
            CREATE VIEW IF NOT EXISTS weekly_aggregate AS
                SELECT guild_id, user_id, activity,
                       SUM(seconds) AS seconds, COUNT(*) AS session_count
                FROM sessions
                WHERE ended_at IS NOT NULL AND week_id IS NULL
                GROUP BY guild_id, user_id, activity
        """)

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            guild_id=row["guild_id"],
            user_id=row["user_id"],
            activity=row["activity"],
            started_at=from_db_time(row["started_at"]),
            ended_at=from_db_time(row["ended_at"]),
            seconds=row["seconds"],
            week_id=row["week_id"],
        )

    @staticmethod
    def _touch_user(
        conn: sqlite3.Connection, guild_id: int, user_id: int, username: str, now: datetime,
    ) -> None:
        conn.execute(
            """
            INSERT INTO users (guild_id, user_id, username, first_seen)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (guild_id, user_id) DO UPDATE SET username = excluded.username
            """,
            (guild_id, user_id, username, to_db_time(now)),
        )

    @staticmethod
    def _open_row(
        conn: sqlite3.Connection, guild_id: int, user_id: int,
    ) -> sqlite3.Row | None:
        return conn.execute(
            "SELECT * FROM sessions WHERE guild_id = ? AND user_id = ? AND ended_at IS NULL",
            (guild_id, user_id),
        ).fetchone()

    @staticmethod
    def _insert_open(
        conn: sqlite3.Connection, guild_id: int, user_id: int, activity: str, now: datetime,
    ) -> Session:
        started = to_db_time(now)
        cursor = conn.execute(
            "INSERT INTO sessions (guild_id, user_id, activity, started_at) VALUES (?, ?, ?, ?)",
            (guild_id, user_id, activity, started),
        )
        return Session(
            id=cursor.lastrowid,
            guild_id=guild_id,
            user_id=user_id,
            activity=activity,
            started_at=from_db_time(started),
        )

    @classmethod
    def _close_row(cls, conn: sqlite3.Connection, row: sqlite3.Row, now: datetime) -> Session:
        session = cls._row_to_session(row)
        ended = from_db_time(to_db_time(now))
        seconds = seconds_between(session.started_at, ended)
        conn.execute(
            "UPDATE sessions SET ended_at = ?, seconds = ? WHERE id = ?",
            (to_db_time(ended), seconds, session.id),
        )
        session.ended_at = ended
        session.seconds = seconds
        return session

    def touch_user(self, guild_id: int, user_id: int, username: str, now: datetime) -> None:
        """Register the user or refresh their display name."""
        with self._transaction() as conn:
            self._touch_user(conn, guild_id, user_id, username, now)

    def get_user(self, guild_id: int, user_id: int) -> User | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE guild_id = ? AND user_id = ?",
                (guild_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return User(
            guild_id=row["guild_id"],
            user_id=row["user_id"],
            username=row["username"],
            first_seen=row["first_seen"],
        )

    def open_session(
        self, guild_id: int, user_id: int, username: str, activity: str, now: datetime,
    ) -> Session:
        """Open a session. Raises AlreadyActive if one is open."""
        with self._transaction() as conn:
            self._touch_user(conn, guild_id, user_id, username, now)
            current = self._open_row(conn, guild_id, user_id)
            if current is not None:
                raise AlreadyActive(current["activity"])
            session = self._insert_open(conn, guild_id, user_id, activity, now)
        logger.info("User %d clocked in on '%s' (session #%d)", user_id, activity, session.id)
        return session

    def close_session(self, guild_id: int, user_id: int, now: datetime) -> Session:
        """Close the open session. Raises NoActiveSession if idle."""
        with self._transaction() as conn:
            current = self._open_row(conn, guild_id, user_id)
            if current is None:
                raise NoActiveSession()
            session = self._close_row(conn, current, now)
        logger.info(
            "User %d clocked out of '%s' after %ds", user_id, session.activity, session.seconds,
        )
        return session

    def switch_session(
        self, guild_id: int, user_id: int, username: str, activity: str, now: datetime,
    ) -> tuple[Session | None, Session]:
        """Close the open session (if any) and open a new one, in one transaction."""
        with self._transaction() as conn:
            self._touch_user(conn, guild_id, user_id, username, now)
            current = self._open_row(conn, guild_id, user_id)
            closed = self._close_row(conn, current, now) if current is not None else None
            opened = self._insert_open(conn, guild_id, user_id, activity, now)
        logger.info(
            "User %d switched from '%s' to '%s'",
            user_id, closed.activity if closed else "(idle)", activity,
        )
        return closed, opened

    def get_open_session(self, guild_id: int, user_id: int) -> Session | None:
        with self._read() as conn:
            row = self._open_row(conn, guild_id, user_id)
        if row is None:
            return None
        return self._row_to_session(row)

    def count_open_sessions(self, guild_id: int, user_id: int) -> int:
        with self._read() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM sessions "
                "WHERE guild_id = ? AND user_id = ? AND ended_at IS NULL",
                (guild_id, user_id),
            ).fetchone()
        return row[0]

    def list_open_sessions(self, guild_id: int) -> list[tuple[Session, str]]:
        """All open sessions in the guild with usernames, earliest start first."""
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT s.*, COALESCE(u.username, CAST(s.user_id AS TEXT)) AS username
                FROM sessions s
                LEFT JOIN users u ON u.guild_id = s.guild_id AND u.user_id = s.user_id
                WHERE s.guild_id = ? AND s.ended_at IS NULL
                ORDER BY s.started_at, s.id
                """,
                (guild_id,),
            ).fetchall()
        return [(self._row_to_session(r), r["username"]) for r in rows]

    def recent_sessions(self, guild_id: int, user_id: int, limit: int = 5) -> list[Session]:
        """The user's most recently closed sessions, most recent first."""
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT * FROM sessions
                WHERE guild_id = ? AND user_id = ? AND ended_at IS NOT NULL
                ORDER BY ended_at DESC, id DESC
                LIMIT ?
                """,
                (guild_id, user_id, limit),
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def weekly_breakdown(
        self, guild_id: int, user_id: int | None = None,
    ) -> list[AggregateEntry]:
        """Current-week totals per (user, activity), largest first."""
        query = """
            SELECT w.*, COALESCE(u.username, CAST(w.user_id AS TEXT)) AS username
            FROM weekly_aggregate w
            LEFT JOIN users u ON u.guild_id = w.guild_id AND u.user_id = w.user_id
            WHERE w.guild_id = ?
        """
        params: list = [guild_id]
        if user_id is not None:
            query += " AND w.user_id = ?"
            params.append(user_id)
        query += " ORDER BY w.seconds DESC, w.activity"
        with self._read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_entry(r) for r in rows]

    def weekly_leaderboard(self, guild_id: int, limit: int = 15) -> list[LeaderboardEntry]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT w.user_id, COALESCE(u.username, CAST(w.user_id AS TEXT)) AS username,
                       SUM(w.seconds / 60) * 60 AS total
                FROM weekly_aggregate w
                LEFT JOIN users u ON u.guild_id = w.guild_id AND u.user_id = w.user_id
                WHERE w.guild_id = ?
                GROUP BY w.user_id
                ORDER BY total DESC, w.user_id
                LIMIT ?
                """,
                (guild_id, limit),
            ).fetchall()
        return [LeaderboardEntry(r["user_id"], r["username"], r["total"]) for r in rows]

    def rename_activity(
        self, guild_id: int, user_id: int, old_activity: str, new_activity: str,
    ) -> tuple[int, int]:
        """Relabel a user's history from old_activity to new_activity.

        Sessions are relabeled in place (including an open one). All-time and
        archived totals under the old name are merged into the new name.
        Returns (sessions_updated, archive_rows_merged).
        Raises UnknownActivity if the user has no history under old_activity.
        """
        key = (guild_id, user_id, old_activity)
        with self._transaction() as conn:
            found = conn.execute(
                """
                SELECT
                    EXISTS(SELECT 1 FROM sessions
                           WHERE guild_id = ? AND user_id = ? AND activity = ?)
                 OR EXISTS(SELECT 1 FROM all_time_aggregate
                           WHERE guild_id = ? AND user_id = ? AND activity = ?)
                 OR EXISTS(SELECT 1 FROM weekly_archive
                           WHERE guild_id = ? AND user_id = ? AND activity = ?)
                """,
                key * 3,
            ).fetchone()[0]
            if not found:
                raise UnknownActivity(old_activity)
            if old_activity == new_activity:
                return 0, 0

            sessions_updated = conn.execute(
                "UPDATE sessions SET activity = ? WHERE guild_id = ? AND user_id = ? AND activity = ?",
                (new_activity, *key),
            ).rowcount

            archive_rows_merged = conn.execute(
                """
                SELECT COUNT(*) FROM weekly_archive a
                WHERE a.guild_id = ? AND a.user_id = ? AND a.activity = ?
                  AND EXISTS (SELECT 1 FROM weekly_archive b
                              WHERE b.week_id = a.week_id AND b.guild_id = a.guild_id
                                AND b.user_id = a.user_id AND b.activity = ?)
                """,
                (*key, new_activity),
            ).fetchone()[0]

            conn.execute(
                """
                INSERT INTO weekly_archive
                    (week_id, guild_id, user_id, activity, seconds, session_count)
                SELECT week_id, guild_id, user_id, ?, seconds, session_count
                FROM weekly_archive
                WHERE guild_id = ? AND user_id = ? AND activity = ?
                ON CONFLICT (week_id, guild_id, user_id, activity) DO UPDATE SET
                    seconds = seconds + excluded.seconds,
                    session_count = session_count + excluded.session_count
                """,
                (new_activity, *key),
            )
            conn.execute(
                "DELETE FROM weekly_archive WHERE guild_id = ? AND user_id = ? AND activity = ?",
                key,
            )
            conn.execute(
                """
                INSERT INTO all_time_aggregate
                    (guild_id, user_id, activity, seconds, session_count)
                SELECT guild_id, user_id, ?, seconds, session_count
                FROM all_time_aggregate
                WHERE guild_id = ? AND user_id = ? AND activity = ?
                ON CONFLICT (guild_id, user_id, activity) DO UPDATE SET
                    seconds = seconds + excluded.seconds,
                    session_count = session_count + excluded.session_count
                """,
                (new_activity, *key),
            )
            conn.execute(
                "DELETE FROM all_time_aggregate WHERE guild_id = ? AND user_id = ? AND activity = ?",
                key,
            )
        logger.info(
            "User %d renamed '%s' → '%s' (%d sessions, %d archive rows merged)",
            user_id, old_activity, new_activity, sessions_updated, archive_rows_merged,
        )
        return sessions_updated, archive_rows_merged


def _row_to_entry(row: sqlite3.Row) -> AggregateEntry:
    keys = row.keys()
    return AggregateEntry(
        guild_id=row["guild_id"],
        user_id=row["user_id"],
        activity=row["activity"],
        seconds=row["seconds"] or 0,
        session_count=row["session_count"] if "session_count" in keys else 0,
        username=row["username"] if "username" in keys else "",
    )


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------


class AliasDB(_SQLiteStore):
    """Alias tables: one per-user scope and one guild-wide scope."""

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS aliases (
                guild_id    INTEGER NOT NULL,
                scope       TEXT    NOT NULL CHECK (scope IN ('user', 'guild')),
                owner_id    INTEGER NOT NULL,
                key         TEXT    NOT NULL,
                activity    TEXT    NOT NULL,
                PRIMARY KEY (guild_id, scope, owner_id, key)
            )
        """)

    @staticmethod
    def _row_to_alias(row: sqlite3.Row) -> Alias:
        return Alias(
            guild_id=row["guild_id"],
            scope=row["scope"],
            owner_id=row["owner_id"],
            key=row["key"],
            activity=row["activity"],
        )

    def set_alias(
        self, guild_id: int, scope: str, owner_id: int, key: str, activity: str,
    ) -> Alias:
        """Create or replace an alias. `key` must already be normalized."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO aliases (guild_id, scope, owner_id, key, activity)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (guild_id, scope, owner_id, key)
                    DO UPDATE SET activity = excluded.activity
                """,
                (guild_id, scope, owner_id, key, activity),
            )
        logger.info("Alias set (%s/%d): '%s' → '%s'", scope, owner_id, key, activity)
        return Alias(guild_id, scope, owner_id, key, activity)

    def get_alias(self, guild_id: int, scope: str, owner_id: int, key: str) -> str | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT activity FROM aliases "
                "WHERE guild_id = ? AND scope = ? AND owner_id = ? AND key = ?",
                (guild_id, scope, owner_id, key),
            ).fetchone()
        return None if row is None else row["activity"]

    def remove_alias(self, guild_id: int, scope: str, owner_id: int, key: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM aliases "
                "WHERE guild_id = ? AND scope = ? AND owner_id = ? AND key = ?",
                (guild_id, scope, owner_id, key),
            )
        removed = cursor.rowcount > 0
        if removed:
            logger.info("Alias removed (%s/%d): '%s'", scope, owner_id, key)
        return removed

    def list_aliases(self, guild_id: int, scope: str, owner_id: int) -> list[Alias]:
        """All aliases in one scope, sorted by key."""
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM aliases WHERE guild_id = ? AND scope = ? AND owner_id = ? "
                "ORDER BY key",
                (guild_id, scope, owner_id),
            ).fetchall()
        return [self._row_to_alias(r) for r in rows]


# ---------------------------------------------------------------------------
# Aggregates, archives & rollover
# ---------------------------------------------------------------------------


class ArchiveDB(_SQLiteStore):
    """All-time aggregates, immutable weekly archives and rollover metadata.

    Shares the database file with SessionDB: the rollover reads and splits
    sessions, archives the closing week and clears the weekly aggregate in a
    single transaction.
    """

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS all_time_aggregate (
                guild_id        INTEGER NOT NULL,
                user_id         INTEGER NOT NULL,
                activity        TEXT    NOT NULL,
                seconds         INTEGER NOT NULL DEFAULT 0,
                session_count   INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (guild_id, user_id, activity)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS weekly_archive (
                week_id         TEXT    NOT NULL,
                guild_id        INTEGER NOT NULL,
                user_id         INTEGER NOT NULL,
                activity        TEXT    NOT NULL,
                seconds         INTEGER NOT NULL,
                session_count   INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (week_id, guild_id, user_id, activity)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS metadata (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

    # -- metadata ------------------------------------------------------------

    @staticmethod
    def _get_meta(conn: sqlite3.Connection, key: str) -> str | None:
        row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return None if row is None else row["value"]

    @staticmethod
    def _set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
        conn.execute(
            "INSERT INTO metadata (key, value) VALUES (?, ?) "
            "ON CONFLICT (key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def get_meta(self, key: str) -> str | None:
        with self._read() as conn:
            return self._get_meta(conn, key)

    def set_meta(self, key: str, value: str) -> None:
        with self._transaction() as conn:
            self._set_meta(conn, key, value)

    def last_boundary(self) -> datetime | None:
        return from_db_time(self.get_meta("last_boundary"))

    # -- rollover ------------------------------------------------------------

    def archive_week(
        self, boundary: datetime, week_id: str, carry_over: bool = True,
    ) -> tuple[list[AggregateEntry], int] | None:
        """Roll the week ending at `boundary` into the archive.

        One transaction:
          1. sessions spanning the boundary are split at it (open sessions
             continue from the boundary when `carry_over`, else they are
             closed there);
          2. per (user, activity) totals of closed sessions started before the
             boundary form the snapshot;
          3. the snapshot is written to weekly_archive, added to
             all_time_aggregate, and those sessions are stamped with week_id,
             which removes them from the weekly aggregate view;
          4. the stored boundary advances.

        Returns (snapshot, split_count), or None if this boundary (or a later
        one) was already rolled over.
        """
        t = to_db_time(boundary)
        boundary = from_db_time(t)

        with self._transaction() as conn:
            last = self._get_meta(conn, "last_boundary")
            if last is not None and last >= t:
                logger.info("Rollover at %s already applied (last=%s)", t, last)
                return None

            spanning = conn.execute(
                """
                SELECT * FROM sessions
                WHERE week_id IS NULL AND started_at < ?
                  AND (ended_at IS NULL OR ended_at > ?)
                ORDER BY id
                """,
                (t, t),
            ).fetchall()
            for row in spanning:
                started = from_db_time(row["started_at"])
                conn.execute(
                    "UPDATE sessions SET ended_at = ?, seconds = ? WHERE id = ?",
                    (t, seconds_between(started, boundary), row["id"]),
                )
                if row["ended_at"] is not None:
                    ended = from_db_time(row["ended_at"])
                    conn.execute(
                        """
                        INSERT INTO sessions
                            (guild_id, user_id, activity, started_at, ended_at, seconds)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (row["guild_id"], row["user_id"], row["activity"],
                         t, row["ended_at"], seconds_between(boundary, ended)),
                    )
                elif carry_over:
                    conn.execute(
                        "INSERT INTO sessions (guild_id, user_id, activity, started_at) "
                        "VALUES (?, ?, ?, ?)",
                        (row["guild_id"], row["user_id"], row["activity"], t),
                    )

            rows = conn.execute(
                """
                SELECT s.guild_id, s.user_id, s.activity,
                       SUM(s.seconds) AS seconds, COUNT(*) AS session_count,
                       COALESCE(u.username, CAST(s.user_id AS TEXT)) AS username
                FROM sessions s
                LEFT JOIN users u ON u.guild_id = s.guild_id AND u.user_id = s.user_id
                WHERE s.week_id IS NULL AND s.ended_at IS NOT NULL AND s.started_at < ?
                GROUP BY s.guild_id, s.user_id, s.activity
                ORDER BY s.guild_id, s.user_id, s.activity
                """,
                (t,),
            ).fetchall()
            snapshot = [_row_to_entry(r) for r in rows]

            conn.executemany(
                """
                INSERT INTO weekly_archive
                    (week_id, guild_id, user_id, activity, seconds, session_count)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (week_id, guild_id, user_id, activity) DO UPDATE SET
                    seconds = seconds + excluded.seconds,
                    session_count = session_count + excluded.session_count
                """,
                [(week_id, e.guild_id, e.user_id, e.activity, e.seconds, e.session_count)
                 for e in snapshot],
            )
            conn.executemany(
                """
                INSERT INTO all_time_aggregate
                    (guild_id, user_id, activity, seconds, session_count)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (guild_id, user_id, activity) DO UPDATE SET
                    seconds = seconds + excluded.seconds,
                    session_count = session_count + excluded.session_count
                """,
                [(e.guild_id, e.user_id, e.activity, e.seconds, e.session_count)
                 for e in snapshot],
            )
            conn.execute(
                "UPDATE sessions SET week_id = ? "
                "WHERE week_id IS NULL AND ended_at IS NOT NULL AND started_at < ?",
                (week_id, t),
            )

            version = int(self._get_meta(conn, "rollover_version") or 0) + 1
            self._set_meta(conn, "last_boundary", t)
            self._set_meta(conn, "last_week_id", week_id)
            self._set_meta(conn, "rollover_version", str(version))

        logger.info(
            "Archived week %s at %s: %d entries, %d sessions split (version %d)",
            week_id, t, len(snapshot), len(spanning), version,
        )
        return snapshot, len(spanning)

    # -- reads ---------------------------------------------------------------

    def week_entries(self, week_id: str, guild_id: int | None = None) -> list[AggregateEntry]:
        """The archived snapshot of one week, optionally for one guild."""
        query = """
            SELECT a.*, COALESCE(u.username, CAST(a.user_id AS TEXT)) AS username
            FROM weekly_archive a
            LEFT JOIN users u ON u.guild_id = a.guild_id AND u.user_id = a.user_id
            WHERE a.week_id = ?
        """
        params: list = [week_id]
        if guild_id is not None:
            query += " AND a.guild_id = ?"
            params.append(guild_id)
        query += " ORDER BY a.guild_id, a.user_id, a.activity"
        with self._read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_entry(r) for r in rows]

    def archived_weeks(self, guild_id: int) -> list[str]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT DISTINCT week_id FROM weekly_archive WHERE guild_id = ? "
                "ORDER BY week_id DESC",
                (guild_id,),
            ).fetchall()
        return [r["week_id"] for r in rows]

    def week_leaderboard(
        self, guild_id: int, week_id: str, limit: int = 15,
    ) -> list[LeaderboardEntry]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT a.user_id, COALESCE(u.username, CAST(a.user_id AS TEXT)) AS username,
                       SUM(a.seconds / 60) * 60 AS total
                FROM weekly_archive a
                LEFT JOIN users u ON u.guild_id = a.guild_id AND u.user_id = a.user_id
                WHERE a.guild_id = ? AND a.week_id = ?
                GROUP BY a.user_id
                ORDER BY total DESC, a.user_id
                LIMIT ?
                """,
                (guild_id, week_id, limit),
            ).fetchall()
        return [LeaderboardEntry(r["user_id"], r["username"], r["total"]) for r in rows]

    def alltime_leaderboard(self, guild_id: int, limit: int = 15) -> list[LeaderboardEntry]:
        """Completed weeks plus the current week's closed sessions."""
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT t.user_id, COALESCE(u.username, CAST(t.user_id AS TEXT)) AS username,
                       SUM(t.seconds / 60) * 60 AS total
                FROM (
                    SELECT guild_id, user_id, activity, SUM(seconds) AS seconds
                    FROM (
                        SELECT guild_id, user_id, activity, seconds FROM all_time_aggregate
                        UNION ALL
                        SELECT guild_id, user_id, activity, seconds FROM weekly_aggregate
                    )
                    GROUP BY guild_id, user_id, activity
                ) t
                LEFT JOIN users u ON u.guild_id = t.guild_id AND u.user_id = t.user_id
                WHERE t.guild_id = ?
                GROUP BY t.user_id
                ORDER BY total DESC, t.user_id
                LIMIT ?
                """,
                (guild_id, limit),
            ).fetchall()
        return [LeaderboardEntry(r["user_id"], r["username"], r["total"]) for r in rows]

    def alltime_breakdown(self, guild_id: int, user_id: int) -> list[AggregateEntry]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT guild_id, user_id, activity,
                       SUM(seconds) AS seconds, SUM(session_count) AS session_count
                FROM (
                    SELECT guild_id, user_id, activity, seconds, session_count
                        FROM all_time_aggregate
                    UNION ALL
                    SELECT guild_id, user_id, activity, seconds, session_count
                        FROM weekly_aggregate
                )
                WHERE guild_id = ? AND user_id = ?
                GROUP BY activity
                ORDER BY seconds DESC, activity
                """,
                (guild_id, user_id),
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def alltime_entries(self, guild_id: int, user_id: int) -> list[AggregateEntry]:
        """Completed-weeks totals only (the AllTimeAggregate table itself)."""
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM all_time_aggregate WHERE guild_id = ? AND user_id = ? "
                "ORDER BY activity",
                (guild_id, user_id),
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def weekly_summary(self, guild_id: int, week_id: str) -> WeeklySummary:
        """Figures for the weekly recap post."""
        entries = self.week_entries(week_id, guild_id=guild_id)
        summary = WeeklySummary(week_id=week_id, breakdown=entries)
        if not entries:
            return summary

        summary.total_seconds = sum(e.seconds for e in entries)
        summary.total_sessions = sum(e.session_count for e in entries)
        summary.unique_workers = len({e.user_id for e in entries})

        per_user: dict[int, LeaderboardEntry] = {}
        per_activity: dict[str, int] = {}
        for e in entries:
            board = per_user.setdefault(e.user_id, LeaderboardEntry(e.user_id, e.username, 0))
            # Whole minutes per activity, the same total the tier is computed from
            board.seconds += e.minutes * 60
            per_activity[e.activity] = per_activity.get(e.activity, 0) + e.seconds
        summary.mvp = max(per_user.values(), key=lambda b: (b.seconds, -b.user_id))
        summary.top_activity = max(per_activity.items(), key=lambda kv: (kv[1], kv[0]))

        with self._read() as conn:
            row = conn.execute(
                """
                SELECT COALESCE(u.username, CAST(s.user_id AS TEXT)) AS username,
                       s.activity, s.seconds
                FROM sessions s
                LEFT JOIN users u ON u.guild_id = s.guild_id AND u.user_id = s.user_id
                WHERE s.guild_id = ? AND s.week_id = ?
                ORDER BY s.seconds DESC, s.id
                LIMIT 1
                """,
                (guild_id, week_id),
            ).fetchone()
        if row is not None:
            summary.longest_session = (row["username"], row["activity"], row["seconds"])
        return summary


# ---------------------------------------------------------------------------
# Role assignments
# ---------------------------------------------------------------------------


class RoleDB(_SQLiteStore):
    """The last (style, tier) role applied to each user."""

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS role_assignments (
                guild_id    INTEGER NOT NULL,
                user_id     INTEGER NOT NULL,
                style       TEXT    NOT NULL,
                tier        INTEGER NOT NULL,
                label       TEXT    NOT NULL,
                week_id     TEXT    NOT NULL,
                assigned_at TEXT    NOT NULL,
                PRIMARY KEY (guild_id, user_id)
            )
        """)

    @staticmethod
    def _row_to_assignment(row: sqlite3.Row) -> RoleAssignment:
        return RoleAssignment(
            guild_id=row["guild_id"],
            user_id=row["user_id"],
            style=row["style"],
            tier=row["tier"],
            label=row["label"],
            week_id=row["week_id"],
            assigned_at=row["assigned_at"],
        )

    def get_assignment(self, guild_id: int, user_id: int) -> RoleAssignment | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM role_assignments WHERE guild_id = ? AND user_id = ?",
                (guild_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_assignment(row)

    def save_assignment(self, assignment: RoleAssignment) -> None:
        if not assignment.assigned_at:
            assignment.assigned_at = to_db_time(datetime.now(timezone.utc))
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO role_assignments
                    (guild_id, user_id, style, tier, label, week_id, assigned_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (guild_id, user_id) DO UPDATE SET
                    style = excluded.style,
                    tier = excluded.tier,
                    label = excluded.label,
                    week_id = excluded.week_id,
                    assigned_at = excluded.assigned_at
                """,
                (assignment.guild_id, assignment.user_id, assignment.style,
                 assignment.tier, assignment.label, assignment.week_id,
                 assignment.assigned_at),
            )

    def list_assignments(self, guild_id: int) -> list[RoleAssignment]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM role_assignments WHERE guild_id = ? ORDER BY user_id",
                (guild_id,),
            ).fetchall()
        return [self._row_to_assignment(r) for r in rows]

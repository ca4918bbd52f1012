"""Shared test fixtures and configuration.

Sets up fake environment variables so clockbot.config doesn't sys.exit(),
and provides common fixtures like temp stores and a controllable clock.
"""

import os

# Patch env vars BEFORE any clockbot imports
os.environ.setdefault("DISCORD_TOKEN", "fake-token-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("LLM_PROVIDER", "none")
os.environ.setdefault("LLM_API_KEY", "")
os.environ.setdefault("EMBEDDING_PROVIDER", "local")
os.environ.setdefault("TIMEZONE", "Europe/Zurich")

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

ZURICH = ZoneInfo("Europe/Zurich")
GUILD = 1000
ALICE = 1
BOB = 2


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, when: datetime) -> datetime:
        self.now = when
        return self.now


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path shared by every store in a test."""
    return str(tmp_path / "test_clock.db")


@pytest.fixture
def session_db(tmp_db_path):
    from clockbot.data.db import SessionDB
    return SessionDB(db_path=tmp_db_path)


@pytest.fixture
def alias_db(tmp_db_path):
    from clockbot.data.db import AliasDB
    return AliasDB(db_path=tmp_db_path)


@pytest.fixture
def archive_db(tmp_db_path):
    from clockbot.data.db import ArchiveDB
    return ArchiveDB(db_path=tmp_db_path)


@pytest.fixture
def role_db(tmp_db_path):
    from clockbot.data.db import RoleDB
    return RoleDB(db_path=tmp_db_path)


@pytest.fixture
def resolver(alias_db):
    from clockbot.core.aliases import AliasResolver
    return AliasResolver(alias_db)


@pytest.fixture
def clock():
    # Wednesday 2025-01-15 10:00 UTC (11:00 in Zurich), ISO week 2025-W03
    return FakeClock(datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(session_db, resolver, clock):
    from clockbot.core.sessions import SessionEngine
    return SessionEngine(session_db, resolver, clock=clock)

"""
ClockBot — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from clockbot/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_DEFAULT_TIER_THRESHOLDS = [0, 1200, 2400, 3600, 4500, 5400]


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Discord
    DISCORD_TOKEN: str
    COMMAND_PREFIX: str = "/clock"

    # SQLite
    DATABASE_PATH: str = "data/clock.db"
    DB_BUSY_TIMEOUT_SECONDS: float = 5.0

    # Weekly rollover: boundary is Monday 00:00 in TIMEZONE
    TIMEZONE: str = "Europe/Zurich"
    ROLLOVER_POLICY: str = "split"     # "split" | "force_close"
    ROLLOVER_CHECK_MINUTES: int = 5
    ROLLOVER_MAX_ATTEMPTS: int = 3
    ROLLOVER_RETRY_SECONDS: float = 30.0

    # Upper bound on a single user command (storage + embedding)
    COMMAND_TIMEOUT_SECONDS: float = 10.0

    # Tier boundaries in weekly minutes, tier 1 first
    TIER_THRESHOLDS: list[int] = _DEFAULT_TIER_THRESHOLDS

    # Embeddings: local, openai, gemini or cohere
    EMBEDDING_PROVIDER: str = "local"
    EMBEDDING_MODEL: str = ""    # empty → smart default per provider
    EMBEDDING_API_KEY: str = ""

    # LLM for the weekly recap (optional, plain text fallback)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""
    LLM_API_KEY: str = ""
    LLM_TIMEOUT_SECONDS: float = 30.0

    # Roles & nicknames
    ROLES_ENABLED: bool = True
    ROLE_ANCHOR_ROLE_ID: int = 0

    # Weekly recap channel (0 → the guild's system channel)
    RECAP_CHANNEL_ID: int = 0

    # Operator alerts over Telegram (optional)
    ALERT_TELEGRAM_BOT_TOKEN: str = ""
    ALERT_TELEGRAM_CHAT_ID: int = 0

    LEADERBOARD_SIZE: int = 15

    @field_validator("TIER_THRESHOLDS", mode="before")
    @classmethod
    def parse_thresholds(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, str):
            v = [int(t.strip()) for t in v.split(",") if t.strip()] if v.strip() else []
        if not v:
            return list(_DEFAULT_TIER_THRESHOLDS)
        if v[0] != 0:
            raise ValueError("TIER_THRESHOLDS must start at 0")
        if any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("TIER_THRESHOLDS must be strictly ascending")
        return list(v)

    @field_validator("ROLLOVER_POLICY", mode="before")
    @classmethod
    def parse_policy(cls, v: str) -> str:
        policy = str(v).strip().lower().replace("-", "_")
        if policy not in ("split", "force_close"):
            raise ValueError(f"Unknown ROLLOVER_POLICY: {v!r}")
        return policy

    @field_validator("ROLES_ENABLED", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator(
        "ROLE_ANCHOR_ROLE_ID", "RECAP_CHANNEL_ID", "ALERT_TELEGRAM_CHAT_ID",
        mode="before",
    )
    @classmethod
    def parse_id(cls, v: str | int) -> int:
        if isinstance(v, str) and not v.strip():
            return 0
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("DISCORD_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: DISCORD_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        DISCORD_TOKEN=token,
        COMMAND_PREFIX=os.getenv("COMMAND_PREFIX", "/clock"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/clock.db"),
        DB_BUSY_TIMEOUT_SECONDS=os.getenv("DB_BUSY_TIMEOUT_SECONDS", "5"),
        TIMEZONE=os.getenv("TIMEZONE", "Europe/Zurich"),
        ROLLOVER_POLICY=os.getenv("ROLLOVER_POLICY", "split"),
        ROLLOVER_CHECK_MINUTES=os.getenv("ROLLOVER_CHECK_MINUTES", "5"),
        ROLLOVER_MAX_ATTEMPTS=os.getenv("ROLLOVER_MAX_ATTEMPTS", "3"),
        ROLLOVER_RETRY_SECONDS=os.getenv("ROLLOVER_RETRY_SECONDS", "30"),
        COMMAND_TIMEOUT_SECONDS=os.getenv("COMMAND_TIMEOUT_SECONDS", "10"),
        TIER_THRESHOLDS=os.getenv("TIER_THRESHOLDS", ""),
        EMBEDDING_PROVIDER=os.getenv("EMBEDDING_PROVIDER", "local"),
        EMBEDDING_MODEL=os.getenv("EMBEDDING_MODEL", ""),
        EMBEDDING_API_KEY=os.getenv("EMBEDDING_API_KEY", ""),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
        LLM_TIMEOUT_SECONDS=os.getenv("LLM_TIMEOUT_SECONDS", "30"),
        ROLES_ENABLED=os.getenv("ROLES_ENABLED", "true"),
        ROLE_ANCHOR_ROLE_ID=os.getenv("ROLE_ANCHOR_ROLE_ID", "0"),
        RECAP_CHANNEL_ID=os.getenv("RECAP_CHANNEL_ID", "0"),
        ALERT_TELEGRAM_BOT_TOKEN=os.getenv("ALERT_TELEGRAM_BOT_TOKEN", ""),
        ALERT_TELEGRAM_CHAT_ID=os.getenv("ALERT_TELEGRAM_CHAT_ID", "0"),
        LEADERBOARD_SIZE=os.getenv("LEADERBOARD_SIZE", "15"),
    )


# Singleton, imported by all other modules as:
#   from clockbot.config import settings
settings = _load_settings()

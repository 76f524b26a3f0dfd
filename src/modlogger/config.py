from __future__ import annotations

import os
from dataclasses import dataclass

from .constants import (
    DEFAULT_AUDIT_FETCH_LIMIT,
    DEFAULT_CONFIRMATION_WINDOW_MS,
    DEFAULT_CORRELATION_WINDOW_MS,
    DEFAULT_REMINDER_INTERVAL_MS,
)


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    token: str
    sync_guild_id: int
    owner_id: int
    sqlite_path: str
    log_level: str
    # Prefix commands ("!in", "!out") need the message content intent enabled
    # in the Discord Developer Portal; slash commands work without it.
    message_content_intent: bool = True

    # Operator switch for liveness probes. Turning it off suspends new probes
    # but leaves sessions already on duty untouched.
    reminders_enabled: bool = True

    # Defaults for workspaces that have not overridden their own timings.
    reminder_interval_ms: int = DEFAULT_REMINDER_INTERVAL_MS
    confirmation_window_ms: int = DEFAULT_CONFIRMATION_WINDOW_MS
    correlation_window_ms: int = DEFAULT_CORRELATION_WINDOW_MS
    audit_fetch_limit: int = DEFAULT_AUDIT_FETCH_LIMIT

    # Stats rollover happens at midnight in this offset from UTC.
    rollover_utc_offset_minutes: int = 0


def load_settings() -> Settings:
    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        raise RuntimeError("DISCORD_TOKEN is required")
    return Settings(
        token=token,
        sync_guild_id=_get_int("SYNC_GUILD_ID", 0),
        # Default to 0 to avoid accidentally granting owner powers to a random ID
        owner_id=_get_int("OWNER_ID", 0),
        sqlite_path=(os.getenv("SQLITE_PATH", "modlogger.sqlite3").strip() or "modlogger.sqlite3"),
        log_level=(os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"),
        message_content_intent=_get_bool("MESSAGE_CONTENT_INTENT", True),
        reminders_enabled=_get_bool("REMINDERS_ENABLED", True),
        reminder_interval_ms=max(1, _get_int("REMINDER_INTERVAL_MS", DEFAULT_REMINDER_INTERVAL_MS)),
        confirmation_window_ms=max(1, _get_int("CONFIRMATION_WINDOW_MS", DEFAULT_CONFIRMATION_WINDOW_MS)),
        correlation_window_ms=max(1, _get_int("CORRELATION_WINDOW_MS", DEFAULT_CORRELATION_WINDOW_MS)),
        audit_fetch_limit=max(1, _get_int("AUDIT_FETCH_LIMIT", DEFAULT_AUDIT_FETCH_LIMIT)),
        rollover_utc_offset_minutes=_get_int("ROLLOVER_UTC_OFFSET_MINUTES", 0),
    )

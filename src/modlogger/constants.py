from __future__ import annotations

from typing import Final

# Discord limits
MAX_MESSAGE_LENGTH: Final[int] = 2000
MAX_EMBED_DESCRIPTION: Final[int] = 4096
MAX_EMBED_TITLE: Final[int] = 256
MAX_FIELD_VALUE: Final[int] = 1024

# Duty timing defaults (milliseconds)
DEFAULT_REMINDER_INTERVAL_MS: Final[int] = 30 * 60 * 1000
DEFAULT_CONFIRMATION_WINDOW_MS: Final[int] = 2 * 60 * 1000
DEFAULT_CORRELATION_WINDOW_MS: Final[int] = 10 * 1000
DEFAULT_AUDIT_FETCH_LIMIT: Final[int] = 6

CONFIRM_EMOJI: Final[str] = "✅"

# Colors (hex values)
COLORS = {
    "default": 0x5865F2,
    "success": 0x57F287,
    "error": 0xED4245,
    "info": 0x3498DB,
}

# Error messages
ERROR_MESSAGES = {
    "missing_permissions": "You don't have permission to use this command.",
    "not_moderator": "❌ You are not a moderator.",
    "already_active": "You are already **ON DUTY**.",
    "owner_only": "Only the bot owner can use this command.",
    "unexpected": "Something went wrong running that command.",
}

"""ModLogger: moderator duty tracking and audit-log attribution for Discord."""

__version__ = "1.0.0"

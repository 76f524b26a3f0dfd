from __future__ import annotations

from .constants import ERROR_MESSAGES


class ModLoggerError(Exception):
    """Base class for errors raised by the duty engine.

    ``user_message`` is what the command error handler shows to the invoker;
    errors without one are only logged.
    """

    user_message: str | None = None


class AlreadyActive(ModLoggerError):
    user_message = ERROR_MESSAGES["already_active"]

    def __init__(self, workspace_id: int, actor_id: int) -> None:
        super().__init__(f"actor {actor_id} already on duty in workspace {workspace_id}")
        self.workspace_id = workspace_id
        self.actor_id = actor_id


class NotModerator(ModLoggerError):
    user_message = ERROR_MESSAGES["not_moderator"]

    def __init__(self, workspace_id: int, actor_id: int) -> None:
        super().__init__(f"actor {actor_id} holds no moderator role in workspace {workspace_id}")
        self.workspace_id = workspace_id
        self.actor_id = actor_id


class SourceUnavailable(ModLoggerError):
    """An audit-log or membership lookup failed (network, permissions, rate limit)."""


class ConfigMissing(ModLoggerError):
    """A feature was asked to run for a workspace that has not configured it."""

    def __init__(self, workspace_id: int, field: str) -> None:
        super().__init__(f"workspace {workspace_id} has no {field} configured")
        self.workspace_id = workspace_id
        self.field = field

"""Attribute gateway side effects to the moderator who caused them.

Discord never says *who* deleted a message or dragged a member to another
voice channel; the gateway event only says it happened. The audit log does
record the executor, but asynchronously and with no link back to the event.
Correlation is therefore a heuristic: fetch the few most recent audit entries
of the matching kind and accept the first one whose target, channel and
timestamp agree with the event.

``match`` is the whole policy and is pure. ``AuditCorrelator`` adds the I/O:
the audit query, the moderator-role check and fan-out to attribution sinks.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol, Sequence

from ..constants import DEFAULT_AUDIT_FETCH_LIMIT, DEFAULT_CORRELATION_WINDOW_MS
from ..errors import ConfigMissing, SourceUnavailable
from .config_store import WorkspaceConfig

log = logging.getLogger("modlogger.correlator")

_MAX_TRACKED_MOVES = 512


class AuditEventKind(str, Enum):
    MESSAGE_DELETE = "message_delete"
    BULK_MESSAGE_DELETE = "bulk_message_delete"
    FORCED_MOVE = "member_move"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SideEffectEvent:
    """A gateway event that may have been caused by a moderator.

    ``target_actor_id`` and ``channel_id`` take part in matching when set.
    ``details`` is display-only (deleted content, message count, moved
    member) and is copied onto the attribution untouched.
    """

    kind: AuditEventKind
    workspace_id: int
    target_actor_id: int | None = None
    channel_id: int | None = None
    occurred_at: datetime = field(default_factory=_utcnow)
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditEntry:
    kind: AuditEventKind
    executor_id: int
    created_at: datetime
    target_id: int | None = None
    channel_id: int | None = None
    executor_is_bot: bool = False
    entry_id: int | None = None
    # Discord folds repeated moves by one executor into one channel into a
    # single entry and bumps this instead of writing a new one.
    count: int = 1

    @property
    def key(self) -> tuple:
        if self.entry_id is not None:
            return (self.kind, self.entry_id)
        return (self.kind, self.executor_id, self.created_at)


@dataclass(frozen=True)
class AuditQuery:
    workspace_id: int
    kind: AuditEventKind
    window_ms: int
    limit: int = DEFAULT_AUDIT_FETCH_LIMIT
    target_actor_id: int | None = None
    channel_id: int | None = None

    @classmethod
    def for_event(cls, event: SideEffectEvent, *, window_ms: int, limit: int) -> "AuditQuery":
        return cls(
            workspace_id=event.workspace_id,
            kind=event.kind,
            window_ms=window_ms,
            limit=limit,
            target_actor_id=event.target_actor_id,
            channel_id=event.channel_id,
        )


@dataclass(frozen=True)
class Attribution:
    kind: AuditEventKind
    workspace_id: int
    executor_id: int
    timestamp: datetime
    target_actor_id: int | None = None
    channel_id: int | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


def match(
    event: SideEffectEvent,
    candidates: Iterable[AuditEntry],
    *,
    window_ms: int = DEFAULT_CORRELATION_WINDOW_MS,
) -> AuditEntry | None:
    """Return the first candidate consistent with ``event``, or None.

    Candidates are taken in the order given (the audit log returns newest
    first) and the first one passing every predicate wins.
    """
    window_s = window_ms / 1000
    for entry in candidates:
        if entry.kind is not event.kind:
            continue
        if event.target_actor_id is not None and entry.target_id != event.target_actor_id:
            continue
        if event.channel_id is not None and entry.channel_id != event.channel_id:
            continue
        if abs((event.occurred_at - entry.created_at).total_seconds()) >= window_s:
            continue
        return entry
    return None


class AuditSource(Protocol):
    async def query(
        self, workspace_id: int, kind: AuditEventKind, limit: int
    ) -> Sequence[AuditEntry]:
        """Most recent entries of ``kind`` first. Raises SourceUnavailable."""
        ...


class MembershipSource(Protocol):
    async def resolve_roles(self, workspace_id: int, actor_id: int) -> set[int]:
        """Role ids held by the actor. Raises SourceUnavailable."""
        ...


class ConfigSource(Protocol):
    def get(self, workspace_id: int) -> WorkspaceConfig: ...


AttributionSink = Callable[[Attribution], Awaitable[None]]


def log_channel_for(kind: AuditEventKind, config: WorkspaceConfig) -> int | None:
    if kind is AuditEventKind.FORCED_MOVE:
        return config.voice_log_channel_id
    return config.message_log_channel_id


class AuditCorrelator:
    def __init__(
        self,
        configs: ConfigSource,
        audit_source: AuditSource,
        membership: MembershipSource,
        *,
        default_window_ms: int = DEFAULT_CORRELATION_WINDOW_MS,
        fetch_limit: int = DEFAULT_AUDIT_FETCH_LIMIT,
    ) -> None:
        self._configs = configs
        self._audit = audit_source
        self._membership = membership
        self._default_window_ms = default_window_ms
        self._fetch_limit = fetch_limit
        self._sinks: list[AttributionSink] = []
        # (workspace, entry key) -> moves already explained by that entry.
        self._moves_used: OrderedDict[tuple, int] = OrderedDict()

    def add_sink(self, sink: AttributionSink) -> None:
        self._sinks.append(sink)

    def window_ms(self, config: WorkspaceConfig) -> int:
        return config.correlation_window_ms or self._default_window_ms

    def _require_configured(self, event: SideEffectEvent, config: WorkspaceConfig) -> None:
        if not config.moderator_role_ids:
            raise ConfigMissing(event.workspace_id, "moderator_role_ids")
        if log_channel_for(event.kind, config) is None:
            field_name = (
                "voice_log_channel_id"
                if event.kind is AuditEventKind.FORCED_MOVE
                else "message_log_channel_id"
            )
            raise ConfigMissing(event.workspace_id, field_name)

    def _move_exhausted(self, workspace_id: int, entry: AuditEntry) -> bool:
        return self._moves_used.get((workspace_id, entry.key), 0) >= entry.count

    def _consume_move(self, workspace_id: int, entry: AuditEntry) -> None:
        # member_move entries have no target, so without this a voluntary
        # switch into the same channel inside the window would reuse them.
        key = (workspace_id, entry.key)
        self._moves_used[key] = self._moves_used.get(key, 0) + 1
        self._moves_used.move_to_end(key)
        while len(self._moves_used) > _MAX_TRACKED_MOVES:
            self._moves_used.popitem(last=False)

    async def correlate(self, event: SideEffectEvent) -> Attribution | None:
        config = self._configs.get(event.workspace_id)
        try:
            self._require_configured(event, config)
        except ConfigMissing as exc:
            log.debug("Skipping %s correlation: %s", event.kind.value, exc)
            return None

        query = AuditQuery.for_event(
            event, window_ms=self.window_ms(config), limit=self._fetch_limit
        )
        try:
            entries = await self._audit.query(query.workspace_id, query.kind, query.limit)
        except SourceUnavailable as exc:
            log.warning("Audit log unavailable for workspace %s: %s", event.workspace_id, exc)
            return None

        if event.kind is AuditEventKind.FORCED_MOVE:
            entries = [e for e in entries if not self._move_exhausted(event.workspace_id, e)]
        entry = match(event, entries, window_ms=query.window_ms)
        if entry is None:
            return None
        if event.kind is AuditEventKind.FORCED_MOVE:
            self._consume_move(event.workspace_id, entry)
        if entry.executor_is_bot:
            return None

        try:
            roles = await self._membership.resolve_roles(event.workspace_id, entry.executor_id)
        except SourceUnavailable as exc:
            log.warning(
                "Could not resolve roles for executor %s in workspace %s: %s",
                entry.executor_id, event.workspace_id, exc,
            )
            return None
        if not config.is_moderator(roles):
            return None

        attribution = Attribution(
            kind=event.kind,
            workspace_id=event.workspace_id,
            executor_id=entry.executor_id,
            timestamp=event.occurred_at,
            target_actor_id=event.target_actor_id,
            channel_id=event.channel_id,
            details=dict(event.details),
        )
        log.info(
            "Attributed %s in workspace %s to moderator %s",
            event.kind.value, event.workspace_id, entry.executor_id,
        )
        for sink in list(self._sinks):
            try:
                await sink(attribution)
            except Exception:
                log.exception("Attribution sink failed for workspace %s", event.workspace_id)
        return attribution

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Protocol

from ..errors import AlreadyActive
from .keyed_lock import KeyedLock
from .stats import StatsAggregator

log = logging.getLogger("modlogger.sessions")

SessionKey = tuple[int, int]


class EndReason(str, Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"


@dataclass(frozen=True, eq=False)
class ModeratorSession:
    """An open on-duty interval.

    Compared by identity: a session that was ended and restarted is a new
    object, which is how stale timeouts are told apart from live ones.
    """

    workspace_id: int
    actor_id: int
    started_at: float
    started_wall: datetime

    @property
    def key(self) -> SessionKey:
        return (self.workspace_id, self.actor_id)


class SessionTimer(Protocol):
    def register(self, session: ModeratorSession) -> None: ...

    def cancel(self, workspace_id: int, actor_id: int) -> None: ...


class SessionObserver(Protocol):
    async def on_session_started(self, session: ModeratorSession) -> None: ...

    async def on_session_ended(
        self, session: ModeratorSession, reason: EndReason, elapsed_ms: int
    ) -> None: ...


class SessionRegistry:
    def __init__(
        self,
        stats: StatsAggregator,
        timer: SessionTimer | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stats = stats
        self._timer = timer
        self._clock = clock
        self._sessions: dict[SessionKey, ModeratorSession] = {}
        self._locks: KeyedLock[SessionKey] = KeyedLock()
        self._observers: list[SessionObserver] = []

    def attach_timer(self, timer: SessionTimer) -> None:
        self._timer = timer

    def add_observer(self, observer: SessionObserver) -> None:
        self._observers.append(observer)

    def is_active(self, workspace_id: int, actor_id: int) -> bool:
        return (workspace_id, actor_id) in self._sessions

    def get(self, workspace_id: int, actor_id: int) -> ModeratorSession | None:
        return self._sessions.get((workspace_id, actor_id))

    def active(self, workspace_id: int) -> list[ModeratorSession]:
        found = [s for (ws, _), s in self._sessions.items() if ws == workspace_id]
        return sorted(found, key=lambda s: s.started_at)

    def elapsed_ms(self, session: ModeratorSession) -> int:
        return max(0, int(round((self._clock() - session.started_at) * 1000)))

    def __len__(self) -> int:
        return len(self._sessions)

    async def start_session(self, workspace_id: int, actor_id: int) -> ModeratorSession:
        key = (workspace_id, actor_id)
        async with self._locks.hold(key):
            if key in self._sessions:
                raise AlreadyActive(workspace_id, actor_id)
            session = ModeratorSession(
                workspace_id=workspace_id,
                actor_id=actor_id,
                started_at=self._clock(),
                started_wall=datetime.now(timezone.utc),
            )
            self._sessions[key] = session
            if self._timer is not None:
                self._timer.register(session)

        log.info("Actor %s on duty in workspace %s", actor_id, workspace_id)
        for observer in list(self._observers):
            try:
                await observer.on_session_started(session)
            except Exception:
                log.exception("Session observer failed on start for %s", key)
        return session

    async def end_session(
        self,
        workspace_id: int,
        actor_id: int,
        reason: EndReason = EndReason.MANUAL,
        *,
        session: ModeratorSession | None = None,
    ) -> int | None:
        """End the live session for the pair and return its length in ms.

        Returns ``None`` without touching stats when there is nothing to end,
        or when ``session`` is given and is no longer the live session.
        """
        key = (workspace_id, actor_id)
        async with self._locks.hold(key):
            current = self._sessions.get(key)
            if current is None:
                return None
            if session is not None and current is not session:
                log.debug("Ignoring %s end for superseded session %s", reason.value, key)
                return None
            elapsed_ms = self.elapsed_ms(current)
            await self._stats.record_duration(workspace_id, actor_id, elapsed_ms)
            del self._sessions[key]
            if self._timer is not None:
                self._timer.cancel(workspace_id, actor_id)

        log.info(
            "Actor %s off duty in workspace %s (%s, %d ms)",
            actor_id, workspace_id, reason.value, elapsed_ms,
        )
        for observer in list(self._observers):
            try:
                await observer.on_session_ended(current, reason, elapsed_ms)
            except Exception:
                log.exception("Session observer failed on end for %s", key)
        return elapsed_ms

    async def end_all(self, reason: EndReason = EndReason.MANUAL) -> int:
        ended = 0
        for ws, actor in list(self._sessions):
            if await self.end_session(ws, actor, reason) is not None:
                ended += 1
        return ended

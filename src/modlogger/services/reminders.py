from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Protocol

from ..constants import DEFAULT_CONFIRMATION_WINDOW_MS, DEFAULT_REMINDER_INTERVAL_MS
from .config_store import WorkspaceConfig
from .sessions import ModeratorSession, SessionKey

log = logging.getLogger("modlogger.reminders")


class ReminderState(str, Enum):
    IDLE = "idle"
    PROBE_SENT = "probe_sent"


class ProbeOutcome(str, Enum):
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class Probe:
    """A single liveness check. ``resolve`` takes effect at most once."""

    def __init__(self, session: ModeratorSession) -> None:
        self.session = session
        self.message_id: int | None = None
        self.outcome: ProbeOutcome | None = None
        self._done = asyncio.Event()

    @property
    def resolved(self) -> bool:
        return self.outcome is not None

    def resolve(self, outcome: ProbeOutcome) -> bool:
        if self.outcome is not None:
            return False
        self.outcome = outcome
        self._done.set()
        return True

    async def wait(self) -> ProbeOutcome:
        await self._done.wait()
        assert self.outcome is not None
        return self.outcome

    def __repr__(self) -> str:
        return (
            f"<Probe workspace={self.session.workspace_id} actor={self.session.actor_id} "
            f"message={self.message_id} outcome={self.outcome}>"
        )


class ConfigSource(Protocol):
    def get(self, workspace_id: int) -> WorkspaceConfig: ...


class ProbeSender(Protocol):
    async def send_probe(self, probe: Probe, config: WorkspaceConfig, window_ms: int) -> bool:
        """Deliver the probe; set ``probe.message_id`` and return True on success."""
        ...


TimeoutHandler = Callable[[ModeratorSession], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


class ReminderScheduler:
    """Runs one reminder loop per on-duty session.

    Each loop waits for the workspace's reminder interval, sends a probe and
    races the acknowledgement against the confirmation window. The probe's
    one-shot ``resolve`` decides the race; a timed-out probe hands the
    session to ``on_timeout``.
    """

    def __init__(
        self,
        configs: ConfigSource,
        sender: ProbeSender,
        on_timeout: TimeoutHandler,
        *,
        enabled: bool = True,
        default_interval_ms: int = DEFAULT_REMINDER_INTERVAL_MS,
        default_window_ms: int = DEFAULT_CONFIRMATION_WINDOW_MS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._configs = configs
        self._sender = sender
        self._on_timeout = on_timeout
        self._enabled = enabled
        self._default_interval_ms = default_interval_ms
        self._default_window_ms = default_window_ms
        self._sleep = sleep
        self._tasks: dict[SessionKey, asyncio.Task] = {}
        self._probes: dict[SessionKey, Probe] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        if bool(value) != self._enabled:
            log.info("Liveness reminders %s", "enabled" if value else "suspended")
        self._enabled = bool(value)

    def interval_ms(self, config: WorkspaceConfig) -> int:
        return config.reminder_interval_ms or self._default_interval_ms

    def window_ms(self, config: WorkspaceConfig) -> int:
        return config.confirmation_window_ms or self._default_window_ms

    def register(self, session: ModeratorSession) -> None:
        key = session.key
        previous = self._tasks.get(key)
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.create_task(
            self._run(session), name=f"modlogger-reminder-{key[0]}-{key[1]}"
        )
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))

    def cancel(self, workspace_id: int, actor_id: int) -> None:
        key = (workspace_id, actor_id)
        probe = self._probes.pop(key, None)
        if probe is not None:
            probe.resolve(ProbeOutcome.CANCELLED)
        task = self._tasks.pop(key, None)
        # The timeout path ends the session from inside its own task.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def acknowledge(self, workspace_id: int, actor_id: int, message_id: int | None = None) -> bool:
        probe = self._probes.get((workspace_id, actor_id))
        if probe is None:
            return False
        if message_id is not None and probe.message_id != message_id:
            return False
        return probe.resolve(ProbeOutcome.CONFIRMED)

    def state(self, workspace_id: int, actor_id: int) -> ReminderState | None:
        key = (workspace_id, actor_id)
        if key not in self._tasks:
            return None
        probe = self._probes.get(key)
        if probe is not None and not probe.resolved:
            return ReminderState.PROBE_SENT
        return ReminderState.IDLE

    def outstanding(self, workspace_id: int, actor_id: int) -> Probe | None:
        probe = self._probes.get((workspace_id, actor_id))
        if probe is None or probe.resolved:
            return None
        return probe

    def find_by_message(self, message_id: int) -> Probe | None:
        for probe in self._probes.values():
            if probe.message_id == message_id and not probe.resolved:
                return probe
        return None

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for probe in self._probes.values():
            probe.resolve(ProbeOutcome.CANCELLED)
        self._probes.clear()
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, key: SessionKey, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            self._tasks.pop(key, None)

    async def _run(self, session: ModeratorSession) -> None:
        ws = session.workspace_id
        try:
            while True:
                await self._sleep(self.interval_ms(self._configs.get(ws)) / 1000)
                if not self._enabled:
                    continue
                config = self._configs.get(ws)
                if config.log_channel_id is None:
                    continue
                outcome = await self._probe(session, config)
                if outcome is ProbeOutcome.TIMED_OUT:
                    log.info("Probe timed out for actor %s in workspace %s", session.actor_id, ws)
                    await self._on_timeout(session)
                    return
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Reminder loop failed for %s", session.key)

    async def _probe(self, session: ModeratorSession, config: WorkspaceConfig) -> ProbeOutcome:
        key = session.key
        window_ms = self.window_ms(config)
        probe = Probe(session)
        self._probes[key] = probe
        try:
            try:
                delivered = await self._sender.send_probe(probe, config, window_ms)
            except Exception:
                log.exception("Failed to send probe for %s", key)
                delivered = False
            if not delivered:
                probe.resolve(ProbeOutcome.CANCELLED)
                assert probe.outcome is not None
                return probe.outcome

            waiter = asyncio.ensure_future(probe.wait())
            timer = asyncio.ensure_future(self._sleep(window_ms / 1000))
            try:
                await asyncio.wait({waiter, timer}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                waiter.cancel()
                timer.cancel()
            # No-op when the acknowledgement (or a cancel) got there first.
            probe.resolve(ProbeOutcome.TIMED_OUT)
            assert probe.outcome is not None
            return probe.outcome
        finally:
            if self._probes.get(key) is probe:
                self._probes.pop(key, None)

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Protocol

from .config import Settings
from .services.config_store import WorkspaceConfigStore
from .services.correlator import Attribution, AuditCorrelator, AuditSource, MembershipSource
from .services.reminders import ProbeSender, ReminderScheduler
from .services.rollover import RolloverScheduler
from .services.sessions import EndReason, ModeratorSession, SessionObserver, SessionRegistry
from .services.stats import StatsAggregator, StatsReport
from .services.stats_store import StatsStore

log = logging.getLogger("modlogger.engine")


class EngineNotifier(SessionObserver, ProbeSender, Protocol):
    async def on_attribution(self, att: Attribution) -> None: ...

    async def on_report(self, report: StatsReport) -> None: ...


class DutyEngine:
    """Owns the duty-tracking services for the lifetime of the process.

    Built once by the bot and shared by every cog; tests build it directly
    with fakes for the notifier, the audit/membership sources and time.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        configs: WorkspaceConfigStore,
        audit_source: AuditSource,
        membership: MembershipSource,
        notifier: EngineNotifier,
        stats_store: StatsStore | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.configs = configs
        self.notifier = notifier

        self.stats = StatsAggregator(stats_store)
        self.registry = SessionRegistry(self.stats, clock=clock)
        self.reminders = ReminderScheduler(
            configs,
            notifier,
            self._on_probe_timeout,
            enabled=settings.reminders_enabled,
            default_interval_ms=settings.reminder_interval_ms,
            default_window_ms=settings.confirmation_window_ms,
            sleep=sleep,
        )
        self.registry.attach_timer(self.reminders)
        self.correlator = AuditCorrelator(
            configs,
            audit_source,
            membership,
            default_window_ms=settings.correlation_window_ms,
            fetch_limit=settings.audit_fetch_limit,
        )
        self.rollover = RolloverScheduler(
            self.stats,
            configs,
            utc_offset_minutes=settings.rollover_utc_offset_minutes,
            now=now,
            sleep=sleep,
        )

        self.registry.add_observer(notifier)
        self.correlator.add_sink(notifier.on_attribution)
        self.stats.add_report_sink(notifier.on_report)

    async def start(self) -> None:
        await self.stats.load()
        self.rollover.start()
        log.info("Duty engine started")

    async def stop(self) -> None:
        await self.reminders.stop()
        await self.rollover.stop()
        # Sessions are not persisted; bank the time worked before going down.
        ended = await self.registry.end_all(EndReason.MANUAL)
        log.info("Duty engine stopped (%d sessions closed)", ended)

    async def _on_probe_timeout(self, session: ModeratorSession) -> None:
        await self.registry.end_session(
            session.workspace_id, session.actor_id, EndReason.TIMEOUT, session=session
        )

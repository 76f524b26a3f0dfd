from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, Protocol

from .config_store import WorkspaceConfig
from .stats import StatsAggregator, StatsPeriod

log = logging.getLogger("modlogger.rollover")

Sleep = Callable[[float], Awaitable[None]]


def next_rollover(period: StatsPeriod, now: datetime) -> datetime:
    """The next midnight boundary for ``period`` strictly after ``now``.

    Daily rolls at every midnight, weekly at Monday midnight, monthly at
    midnight on the first of the month. ``now`` must be timezone-aware; the
    result is in the same timezone.
    """
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is StatsPeriod.DAILY:
        return midnight + timedelta(days=1)
    if period is StatsPeriod.WEEKLY:
        return midnight + timedelta(days=7 - midnight.weekday())
    if midnight.month == 12:
        return midnight.replace(year=midnight.year + 1, month=1, day=1)
    return midnight.replace(month=midnight.month + 1, day=1)


class ConfigSource(Protocol):
    def get(self, workspace_id: int) -> WorkspaceConfig: ...

    def workspaces(self) -> list[int]: ...


class RolloverScheduler:
    """One loop per cadence; each wakes at its boundary and rolls every workspace."""

    def __init__(
        self,
        stats: StatsAggregator,
        configs: ConfigSource,
        *,
        utc_offset_minutes: int = 0,
        now: Callable[[], datetime] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._stats = stats
        self._configs = configs
        self._tz = timezone(timedelta(minutes=utc_offset_minutes))
        self._now = now or (lambda: datetime.now(self._tz))
        self._sleep = sleep
        self._tasks: list[asyncio.Task] = []

    def start(self, periods: Iterable[StatsPeriod] = tuple(StatsPeriod)) -> None:
        if self._tasks:
            return
        for period in periods:
            self._tasks.append(
                asyncio.create_task(self._loop(period), name=f"modlogger-rollover-{period.value}")
            )
        log.info("Rollover scheduler started (%s)", ", ".join(p.value for p in periods))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def eligible_workspaces(self) -> list[int]:
        """Workspaces with an activity log channel; others have nowhere to report."""
        return [ws for ws in self._configs.workspaces() if self._configs.get(ws).log_channel_id is not None]

    async def run_once(self, period: StatsPeriod) -> int:
        rolled = 0
        for ws in self.eligible_workspaces():
            try:
                await self._stats.rollover(ws, period)
                rolled += 1
            except Exception:
                log.exception("%s rollover failed for workspace %s", period.value.capitalize(), ws)
        return rolled

    async def _loop(self, period: StatsPeriod) -> None:
        due = next_rollover(period, self._now())
        while True:
            try:
                await self._sleep(max(0.0, (due - self._now()).total_seconds()))
                # Advance from the boundary itself so an early wakeup can't roll twice.
                due = next_rollover(period, due)
                await self.run_once(period)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("%s rollover loop iteration failed", period.value.capitalize())
                await self._sleep(60)

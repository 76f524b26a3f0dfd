from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from .keyed_lock import KeyedLock

if TYPE_CHECKING:
    from .stats_store import StatsStore

log = logging.getLogger("modlogger.stats")


class StatsPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class StatsBuckets:
    """Cumulative on-duty milliseconds for one moderator."""

    daily: int = 0
    weekly: int = 0
    monthly: int = 0

    def get(self, period: StatsPeriod) -> int:
        return getattr(self, period.value)

    def reset(self, period: StatsPeriod) -> None:
        setattr(self, period.value, 0)


@dataclass(frozen=True)
class StatsReport:
    workspace_id: int
    period: StatsPeriod
    totals: dict[int, int]
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_empty(self) -> bool:
        return not self.totals


ReportSink = Callable[[StatsReport], Awaitable[None]]


class StatsAggregator:
    """Per-workspace duty totals.

    Every mutation for a workspace runs under that workspace's lock, so a
    rollover can never interleave with a ``record_duration`` on the same
    workspace. When a :class:`StatsStore` is attached the affected rows are
    written through after each mutation.
    """

    def __init__(self, store: StatsStore | None = None) -> None:
        self._store = store
        self._records: dict[int, dict[int, StatsBuckets]] = {}
        self._locks: KeyedLock[int] = KeyedLock()
        self._sinks: list[ReportSink] = []

    def add_report_sink(self, sink: ReportSink) -> None:
        self._sinks.append(sink)

    async def load(self) -> None:
        if self._store is None:
            return
        self._records = await self._store.load_all()
        log.info("Loaded duty stats for %d workspaces", len(self._records))

    def get(self, workspace_id: int, actor_id: int) -> StatsBuckets:
        b = self._records.get(workspace_id, {}).get(actor_id)
        if b is None:
            return StatsBuckets()
        return StatsBuckets(b.daily, b.weekly, b.monthly)

    def snapshot(self, workspace_id: int, period: StatsPeriod) -> dict[int, int]:
        return {actor: b.get(period) for actor, b in self._records.get(workspace_id, {}).items()}

    def workspaces(self) -> list[int]:
        return list(self._records)

    async def record_duration(self, workspace_id: int, actor_id: int, elapsed_ms: int) -> StatsBuckets:
        elapsed_ms = max(0, int(elapsed_ms))
        async with self._locks.hold(workspace_id):
            buckets = self._records.setdefault(workspace_id, {}).setdefault(actor_id, StatsBuckets())
            buckets.daily += elapsed_ms
            buckets.weekly += elapsed_ms
            buckets.monthly += elapsed_ms
            await self._persist(workspace_id, [(actor_id, buckets)])
            return StatsBuckets(buckets.daily, buckets.weekly, buckets.monthly)

    async def rollover(self, workspace_id: int, period: StatsPeriod) -> StatsReport:
        async with self._locks.hold(workspace_id):
            records = self._records.get(workspace_id, {})
            report = StatsReport(
                workspace_id=workspace_id,
                period=period,
                totals={actor: b.get(period) for actor, b in records.items()},
            )
            for b in records.values():
                b.reset(period)
            await self._persist(workspace_id, list(records.items()))

        log.info(
            "Rolled over %s stats for workspace %s (%d actors)",
            period.value, workspace_id, len(report.totals),
        )
        for sink in list(self._sinks):
            try:
                await sink(report)
            except Exception:
                log.exception("Stats report sink failed for workspace %s", workspace_id)
        return report

    async def rollover_daily(self, workspace_id: int) -> StatsReport:
        return await self.rollover(workspace_id, StatsPeriod.DAILY)

    async def rollover_weekly(self, workspace_id: int) -> StatsReport:
        return await self.rollover(workspace_id, StatsPeriod.WEEKLY)

    async def rollover_monthly(self, workspace_id: int) -> StatsReport:
        return await self.rollover(workspace_id, StatsPeriod.MONTHLY)

    async def _persist(self, workspace_id: int, rows: list[tuple[int, StatsBuckets]]) -> None:
        if self._store is None or not rows:
            return
        try:
            await self._store.save(workspace_id, rows)
        except Exception:
            # In-memory totals stay authoritative; the next write retries the row.
            log.exception("Failed to persist duty stats for workspace %s", workspace_id)

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

import aiosqlite

from .keyed_lock import KeyedLock

log = logging.getLogger("modlogger.config_store")


@dataclass(frozen=True)
class WorkspaceConfig:
    """Per-guild settings. ``None`` / empty means "not configured"."""

    workspace_id: int
    log_channel_id: int | None = None
    message_log_channel_id: int | None = None
    voice_log_channel_id: int | None = None
    moderator_role_ids: frozenset[int] = field(default_factory=frozenset)
    reminder_interval_ms: int | None = None
    confirmation_window_ms: int | None = None
    correlation_window_ms: int | None = None

    def is_moderator(self, role_ids: Iterable[int]) -> bool:
        if not self.moderator_role_ids:
            return False
        return not self.moderator_role_ids.isdisjoint(int(r) for r in role_ids)


_COLUMNS = (
    "log_channel_id",
    "message_log_channel_id",
    "voice_log_channel_id",
    "moderator_role_ids",
    "reminder_interval_ms",
    "confirmation_window_ms",
    "correlation_window_ms",
)


def _opt_int(value: Any) -> int | None:
    return int(value) if value is not None else None


class WorkspaceConfigStore:
    """Write-through store for :class:`WorkspaceConfig`.

    Reads are synchronous and served from memory; ``load()`` fills the cache
    at startup and every write goes through ``mutate()``, which persists to
    SQLite before swapping the cached value. With ``sqlite_path=None``
    nothing is persisted.
    """

    def __init__(self, sqlite_path: str | None) -> None:
        self._path = sqlite_path
        self._configs: dict[int, WorkspaceConfig] = {}
        self._locks: KeyedLock[int] = KeyedLock()

    async def init(self) -> None:
        if self._path is None:
            return
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS workspace_config (
                    guild_id INTEGER PRIMARY KEY,
                    log_channel_id INTEGER NULL,
                    message_log_channel_id INTEGER NULL,
                    voice_log_channel_id INTEGER NULL,
                    moderator_role_ids TEXT NOT NULL DEFAULT '[]',
                    reminder_interval_ms INTEGER NULL,
                    confirmation_window_ms INTEGER NULL,
                    correlation_window_ms INTEGER NULL
                )
                """
            )
            await db.commit()

    async def load(self) -> int:
        if self._path is None:
            return 0
        async with aiosqlite.connect(self._path) as db:
            async with db.execute(
                f"SELECT guild_id, {', '.join(_COLUMNS)} FROM workspace_config"
            ) as cur:
                rows = await cur.fetchall()
        for row in rows:
            cfg = WorkspaceConfig(
                workspace_id=int(row[0]),
                log_channel_id=_opt_int(row[1]),
                message_log_channel_id=_opt_int(row[2]),
                voice_log_channel_id=_opt_int(row[3]),
                moderator_role_ids=frozenset(int(r) for r in json.loads(row[4] or "[]")),
                reminder_interval_ms=_opt_int(row[5]),
                confirmation_window_ms=_opt_int(row[6]),
                correlation_window_ms=_opt_int(row[7]),
            )
            self._configs[cfg.workspace_id] = cfg
        log.info("Loaded %d workspace configs", len(rows))
        return len(rows)

    def get(self, workspace_id: int) -> WorkspaceConfig:
        cfg = self._configs.get(int(workspace_id))
        if cfg is None:
            return WorkspaceConfig(int(workspace_id))
        return cfg

    def workspaces(self) -> list[int]:
        return list(self._configs)

    async def update(self, workspace_id: int, **changes: Any) -> WorkspaceConfig:
        unknown = set(changes) - set(_COLUMNS)
        if unknown:
            raise TypeError(f"unknown config fields: {sorted(unknown)}")
        return await self.mutate(workspace_id, lambda cfg: replace(cfg, **changes))

    async def mutate(
        self, workspace_id: int, fn: Callable[[WorkspaceConfig], WorkspaceConfig]
    ) -> WorkspaceConfig:
        """Read, change and persist one workspace's config as a single step.

        ``fn`` sees the latest cached value; concurrent mutations of the same
        workspace are serialized so none of them is lost.
        """
        async with self._locks.hold(int(workspace_id)):
            cfg = fn(self.get(workspace_id))
            cfg = replace(cfg, moderator_role_ids=frozenset(int(r) for r in cfg.moderator_role_ids))
            await self._upsert(cfg)
            self._configs[cfg.workspace_id] = cfg
            return cfg

    async def add_moderator_role(self, workspace_id: int, role_id: int) -> WorkspaceConfig:
        return await self.mutate(
            workspace_id,
            lambda cfg: replace(cfg, moderator_role_ids=cfg.moderator_role_ids | {int(role_id)}),
        )

    async def remove_moderator_role(self, workspace_id: int, role_id: int) -> WorkspaceConfig:
        return await self.mutate(
            workspace_id,
            lambda cfg: replace(cfg, moderator_role_ids=cfg.moderator_role_ids - {int(role_id)}),
        )

    async def _upsert(self, cfg: WorkspaceConfig) -> None:
        if self._path is None:
            return
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                """
                INSERT INTO workspace_config (
                    guild_id, log_channel_id, message_log_channel_id, voice_log_channel_id,
                    moderator_role_ids, reminder_interval_ms, confirmation_window_ms, correlation_window_ms
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET
                    log_channel_id=excluded.log_channel_id,
                    message_log_channel_id=excluded.message_log_channel_id,
                    voice_log_channel_id=excluded.voice_log_channel_id,
                    moderator_role_ids=excluded.moderator_role_ids,
                    reminder_interval_ms=excluded.reminder_interval_ms,
                    confirmation_window_ms=excluded.confirmation_window_ms,
                    correlation_window_ms=excluded.correlation_window_ms
                """,
                (
                    int(cfg.workspace_id),
                    cfg.log_channel_id,
                    cfg.message_log_channel_id,
                    cfg.voice_log_channel_id,
                    json.dumps(sorted(cfg.moderator_role_ids)),
                    cfg.reminder_interval_ms,
                    cfg.confirmation_window_ms,
                    cfg.correlation_window_ms,
                ),
            )
            await db.commit()

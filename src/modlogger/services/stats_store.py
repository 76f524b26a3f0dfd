from __future__ import annotations

from typing import Iterable

import aiosqlite

from .stats import StatsBuckets


class StatsStore:
    def __init__(self, sqlite_path: str) -> None:
        self._path = sqlite_path

    async def init(self) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS duty_stats (
                    guild_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    daily_ms INTEGER NOT NULL DEFAULT 0,
                    weekly_ms INTEGER NOT NULL DEFAULT 0,
                    monthly_ms INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (guild_id, user_id)
                )
                """
            )
            await db.commit()

    async def load_all(self) -> dict[int, dict[int, StatsBuckets]]:
        out: dict[int, dict[int, StatsBuckets]] = {}
        async with aiosqlite.connect(self._path) as db:
            async with db.execute(
                "SELECT guild_id, user_id, daily_ms, weekly_ms, monthly_ms FROM duty_stats"
            ) as cur:
                rows = await cur.fetchall()
        for guild_id, user_id, daily, weekly, monthly in rows:
            out.setdefault(int(guild_id), {})[int(user_id)] = StatsBuckets(
                daily=int(daily), weekly=int(weekly), monthly=int(monthly)
            )
        return out

    async def save(self, workspace_id: int, records: Iterable[tuple[int, StatsBuckets]]) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.executemany(
                """
                INSERT INTO duty_stats (guild_id, user_id, daily_ms, weekly_ms, monthly_ms)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(guild_id, user_id) DO UPDATE SET
                    daily_ms=excluded.daily_ms,
                    weekly_ms=excluded.weekly_ms,
                    monthly_ms=excluded.monthly_ms
                """,
                [
                    (int(workspace_id), int(user_id), b.daily, b.weekly, b.monthly)
                    for user_id, b in records
                ],
            )
            await db.commit()

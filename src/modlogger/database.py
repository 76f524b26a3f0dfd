from __future__ import annotations

import logging
from typing import Protocol, Sequence

import aiosqlite

log = logging.getLogger("modlogger.database")


class Store(Protocol):
    async def init(self) -> None: ...


async def initialize_database(sqlite_path: str, stores: Sequence[Store]) -> None:
    """Apply connection pragmas and create every store's tables."""
    try:
        async with aiosqlite.connect(sqlite_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")
            await db.commit()
        log.info("Applied SQLite pragmas")

        for store in stores:
            await store.init()
            log.info("Initialized %s", store.__class__.__name__)

        log.info("Database initialization completed")
    except Exception as e:
        log.error("Failed to initialize database: %s", e)
        raise

from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands

from .config import Settings
from .database import initialize_database
from .engine import DutyEngine
from .error_handlers import setup_error_handlers
from .services.config_store import WorkspaceConfigStore
from .services.discord_sources import DiscordAuditSource, DiscordMembershipSource
from .services.notifier import Notifier
from .services.stats_store import StatsStore

log = logging.getLogger("modlogger.bot")


class _CommandSyncManager:
    def __init__(self, bot: "ModLoggerBot") -> None:
        self.bot = bot
        self._lock = asyncio.Lock()

    async def sync_startup(self) -> None:
        if self.bot.settings.sync_guild_id:
            await self.sync_guild(self.bot.settings.sync_guild_id)
        else:
            await self.sync_global()

    async def sync_global(self) -> None:
        async with self._lock:
            await self.bot.tree.sync()
            log.info("Commands synced globally")
            self._log_tree()

    async def sync_guild(self, guild_id: int) -> None:
        async with self._lock:
            guild = discord.Object(id=guild_id)
            self.bot.tree.copy_global_to(guild=guild)
            await self.bot.tree.sync(guild=guild)
            log.info("Commands synced to guild %d", guild_id)
            self._log_tree()

    def _log_tree(self) -> None:
        cmds = self.bot.tree.get_commands()
        log.info("Tree commands loaded: %d", len(cmds))
        for c in cmds:
            log.info(" - /%s", c.name)


class ModLoggerBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.members = True
        intents.voice_states = True
        intents.reactions = True
        intents.message_content = bool(settings.message_content_intent)

        log.info(
            "INTENTS: guilds=%s members=%s message_content=%s",
            intents.guilds, intents.members, intents.message_content,
        )

        super().__init__(
            command_prefix=commands.when_mentioned_or("!"),
            intents=intents,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=False, users=True),
            help_command=None,
        )

        self.settings = settings
        if settings.owner_id:
            self.owner_id = settings.owner_id

        self.config_store = WorkspaceConfigStore(settings.sqlite_path)
        self.stats_store = StatsStore(settings.sqlite_path)
        self.notifier = Notifier(self, self.config_store)
        self.engine = DutyEngine(
            settings,
            configs=self.config_store,
            audit_source=DiscordAuditSource(self),
            membership=DiscordMembershipSource(self),
            notifier=self.notifier,
            stats_store=self.stats_store,
        )
        self._sync_mgr = _CommandSyncManager(self)

    async def setup_hook(self) -> None:
        await initialize_database(self.settings.sqlite_path, [self.config_store, self.stats_store])
        await self.config_store.load()
        await self.engine.start()

        await setup_error_handlers(self)

        loaded: list[str] = []
        failed: list[str] = []

        # One bad cog must not prevent the rest from registering commands.
        async def _load_cog(import_path: str, class_name: str) -> None:
            try:
                mod = __import__(import_path, fromlist=[class_name])
                cls = getattr(mod, class_name)
                await self.add_cog(cls(self))
                loaded.append(f"{import_path}.{class_name}")
            except Exception as e:
                log.exception("Failed to load cog: %s.%s", import_path, class_name)
                failed.append(f"{import_path}.{class_name} ({type(e).__name__})")

        await _load_cog("modlogger.cogs.setup", "SetupCog")
        await _load_cog("modlogger.cogs.duty", "DutyCog")
        await _load_cog("modlogger.cogs.audit_watch", "AuditWatchCog")

        log.info("Startup cog load summary: loaded=%d failed=%d", len(loaded), len(failed))
        for name in failed:
            log.warning("Startup cog failed: %s", name)

        await self._sync_mgr.sync_startup()
        log.info("Command sync complete")

    async def close(self) -> None:
        try:
            await self.engine.stop()
        except Exception:
            log.exception("Duty engine shutdown failed")
        finally:
            await super().close()

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s) in %d guilds", self.user, getattr(self.user, "id", "?"), len(self.guilds))

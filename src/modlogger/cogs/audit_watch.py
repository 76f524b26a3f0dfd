from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands

from ..services.correlator import AuditEventKind, SideEffectEvent

log = logging.getLogger("modlogger.cogs.audit_watch")


class AuditWatchCog(commands.Cog):
    """Feeds deletions and voice moves to the correlator.

    Each event is correlated in its own task so a slow audit log fetch never
    holds up the gateway or the duty registry.
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot  # type: ignore[assignment]
        self._tasks: set[asyncio.Task] = set()

    async def cog_unload(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    def _spawn(self, event: SideEffectEvent) -> None:
        correlator = self.bot.engine.correlator  # type: ignore[attr-defined]
        task = asyncio.create_task(
            correlator.correlate(event), name=f"modlogger-correlate-{event.kind.value}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Correlation task failed", exc_info=task.exception())

    @commands.Cog.listener()
    async def on_message_delete(self, message: discord.Message) -> None:
        if not message.guild or message.author.bot:
            return
        self._spawn(
            SideEffectEvent(
                kind=AuditEventKind.MESSAGE_DELETE,
                workspace_id=message.guild.id,
                target_actor_id=message.author.id,
                channel_id=message.channel.id,
                details={"content": message.content, "author_tag": str(message.author)},
            )
        )

    @commands.Cog.listener()
    async def on_raw_bulk_message_delete(self, payload: discord.RawBulkMessageDeleteEvent) -> None:
        if not payload.guild_id:
            return
        self._spawn(
            SideEffectEvent(
                kind=AuditEventKind.BULK_MESSAGE_DELETE,
                workspace_id=payload.guild_id,
                channel_id=payload.channel_id,
                details={"count": len(payload.message_ids)},
            )
        )

    @commands.Cog.listener()
    async def on_voice_state_update(
        self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState
    ) -> None:
        if before.channel is None or after.channel is None or before.channel.id == after.channel.id:
            return
        # member_move audit entries carry no target: the destination channel is
        # matched and the correlator counts how many moves each entry explains.
        self._spawn(
            SideEffectEvent(
                kind=AuditEventKind.FORCED_MOVE,
                workspace_id=member.guild.id,
                channel_id=after.channel.id,
                details={"member_id": member.id, "from_channel_id": before.channel.id},
            )
        )

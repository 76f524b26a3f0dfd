from __future__ import annotations

import logging
from typing import Literal, Optional

import discord
from discord.ext import commands

from ..constants import CONFIRM_EMOJI
from ..errors import NotModerator
from ..services.stats import StatsPeriod
from ..utils import format_duration, info_embed, safe_response, truncate

log = logging.getLogger("modlogger.cogs.duty")

HELP_TEXT = (
    "**🛠️ ModLogger Commands**\n\n"
    "**Activity:** `/in`, `/out`, `/onduty`, `/daily`, `/weekly`, `/monthly`\n"
    "**Setup:** `/set-activity-log #ch`, `/set-message-log #ch`, `/set-voice-log #ch`, "
    "`/mod-role-add @role`, `/mod-role-remove @role`, `/set-reminder-interval`, "
    "`/set-confirmation-window`, `/set-correlation-window`, `/modlogger-config`\n"
    "**Owner:** `/reminders on|off`\n"
    "Every command also works with the `!` prefix."
)


class DutyCog(commands.Cog):
    """On/off duty toggles, stats views and probe acknowledgements."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot  # type: ignore[assignment]

    @property
    def engine(self):
        return self.bot.engine  # type: ignore[attr-defined]

    def _require_moderator(self, ctx: commands.Context) -> None:
        assert ctx.guild is not None
        cfg = self.engine.configs.get(ctx.guild.id)
        roles = [r.id for r in getattr(ctx.author, "roles", [])]
        if not cfg.is_moderator(roles):
            raise NotModerator(ctx.guild.id, ctx.author.id)

    @commands.hybrid_command(name="in", description="Go on duty.")
    @commands.guild_only()
    async def duty_in(self, ctx: commands.Context) -> None:
        self._require_moderator(ctx)
        await self.engine.registry.start_session(ctx.guild.id, ctx.author.id)
        await safe_response(ctx, "You are now **ON DUTY**.", ephemeral=True)

    @commands.hybrid_command(name="out", description="Go off duty.")
    @commands.guild_only()
    async def duty_out(self, ctx: commands.Context) -> None:
        self._require_moderator(ctx)
        elapsed = await self.engine.registry.end_session(ctx.guild.id, ctx.author.id)
        if elapsed is None:
            await safe_response(ctx, "You are not on duty.", ephemeral=True)
            return
        await safe_response(ctx, f"You are now **OFF DUTY**. Session: {format_duration(elapsed)}", ephemeral=True)

    @commands.hybrid_command(name="onduty", description="List moderators currently on duty.")
    @commands.guild_only()
    async def onduty(self, ctx: commands.Context) -> None:
        registry = self.engine.registry
        sessions = registry.active(ctx.guild.id)
        if not sessions:
            await safe_response(ctx, "Nobody is on duty right now.")
            return
        lines = [f"• <@{s.actor_id}> — on for {format_duration(registry.elapsed_ms(s))}" for s in sessions]
        await safe_response(ctx, embed=info_embed(truncate("\n".join(lines), 4000)))

    @commands.hybrid_command(name="daily", description="Today's on-duty totals.")
    @commands.guild_only()
    async def daily(self, ctx: commands.Context) -> None:
        await self._show_stats(ctx, StatsPeriod.DAILY)

    @commands.hybrid_command(name="weekly", description="This week's on-duty totals.")
    @commands.guild_only()
    async def weekly(self, ctx: commands.Context) -> None:
        await self._show_stats(ctx, StatsPeriod.WEEKLY)

    @commands.hybrid_command(name="monthly", description="This month's on-duty totals.")
    @commands.guild_only()
    async def monthly(self, ctx: commands.Context) -> None:
        await self._show_stats(ctx, StatsPeriod.MONTHLY)

    async def _show_stats(self, ctx: commands.Context, period: StatsPeriod) -> None:
        totals = self.engine.stats.snapshot(ctx.guild.id, period)
        if not totals:
            await safe_response(ctx, "No stats yet.")
            return
        lines = [f"📆 **{period.value.capitalize()} Stats**"]
        for uid, ms in sorted(totals.items(), key=lambda kv: kv[1], reverse=True):
            lines.append(f"• <@{uid}> — {format_duration(ms)}")
        await safe_response(ctx, truncate("\n".join(lines), 2000))

    @commands.hybrid_command(name="reminders", description="Turn liveness reminders on or off (owner only).")
    @commands.is_owner()
    async def reminders(self, ctx: commands.Context, state: Optional[Literal["on", "off"]] = None) -> None:
        if state is not None:
            self.engine.reminders.enabled = state == "on"
        status = "enabled" if self.engine.reminders.enabled else "suspended"
        await safe_response(ctx, f"Liveness reminders are **{status}**.", ephemeral=True)

    @commands.hybrid_command(name="help", description="Show ModLogger commands.")
    async def show_help(self, ctx: commands.Context) -> None:
        await safe_response(ctx, HELP_TEXT, ephemeral=True)

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        if str(payload.emoji) != CONFIRM_EMOJI or not payload.guild_id:
            return
        if self.bot.user is not None and payload.user_id == self.bot.user.id:
            return
        probe = self.engine.reminders.find_by_message(payload.message_id)
        if probe is None or probe.session.actor_id != payload.user_id:
            return
        if self.engine.reminders.acknowledge(payload.guild_id, payload.user_id, payload.message_id):
            log.debug("Probe %s confirmed by %s", payload.message_id, payload.user_id)
            await self.engine.notifier.probe_confirmed(
                payload.guild_id, payload.user_id, payload.channel_id, payload.message_id
            )

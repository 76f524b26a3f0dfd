from __future__ import annotations

import logging

import discord
from discord.ext import commands

from ..services.config_store import WorkspaceConfig
from ..utils import format_duration, safe_embed, safe_response, success_embed

log = logging.getLogger("modlogger.cogs.setup")


def _channel(cid: int | None) -> str:
    return f"<#{cid}>" if cid else "—"


class SetupCog(commands.Cog):
    """Per-server configuration. Everything here needs Manage Server."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot  # type: ignore[assignment]

    @property
    def store(self):
        return self.bot.config_store  # type: ignore[attr-defined]

    async def _update(self, ctx: commands.Context, message: str, **changes) -> WorkspaceConfig:
        assert ctx.guild is not None
        cfg = await self.store.update(ctx.guild.id, **changes)
        log.info("Guild %s config updated by %s: %s", ctx.guild.id, ctx.author.id, ", ".join(changes))
        await safe_response(ctx, embed=success_embed(message), ephemeral=True)
        return cfg

    async def _update_roles(self, ctx: commands.Context, message: str, role: discord.Role, *, add: bool) -> WorkspaceConfig:
        assert ctx.guild is not None
        if add:
            cfg = await self.store.add_moderator_role(ctx.guild.id, role.id)
        else:
            cfg = await self.store.remove_moderator_role(ctx.guild.id, role.id)
        log.info(
            "Guild %s moderator role %s %s by %s",
            ctx.guild.id, role.id, "added" if add else "removed", ctx.author.id,
        )
        await safe_response(ctx, embed=success_embed(message), ephemeral=True)
        return cfg

    @commands.hybrid_command(name="set-activity-log", description="Channel for duty changes, reminders and reports.")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def set_activity_log(self, ctx: commands.Context, channel: discord.TextChannel) -> None:
        await self._update(ctx, f"✅ Activity log channel set to {channel.mention}", log_channel_id=channel.id)

    @commands.hybrid_command(name="set-message-log", description="Channel for moderator message deletions.")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def set_message_log(self, ctx: commands.Context, channel: discord.TextChannel) -> None:
        await self._update(ctx, f"✅ Message log channel set to {channel.mention}", message_log_channel_id=channel.id)

    @commands.hybrid_command(name="set-voice-log", description="Channel for moderator voice moves.")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def set_voice_log(self, ctx: commands.Context, channel: discord.TextChannel) -> None:
        await self._update(ctx, f"✅ Voice log channel set to {channel.mention}", voice_log_channel_id=channel.id)

    @commands.hybrid_command(name="mod-role-add", description="Treat members with this role as moderators.")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def mod_role_add(self, ctx: commands.Context, role: discord.Role) -> None:
        await self._update_roles(ctx, f"✅ {role.mention} is now a moderator role.", role, add=True)

    @commands.hybrid_command(name="mod-role-remove", description="Stop treating this role as a moderator role.")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def mod_role_remove(self, ctx: commands.Context, role: discord.Role) -> None:
        await self._update_roles(ctx, f"✅ {role.mention} is no longer a moderator role.", role, add=False)

    @commands.hybrid_command(name="set-reminder-interval", description="Minutes between liveness reminders.")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def set_reminder_interval(self, ctx: commands.Context, minutes: commands.Range[int, 1, 1440]) -> None:
        await self._update(
            ctx, f"✅ Reminders every {minutes} minutes.", reminder_interval_ms=int(minutes) * 60_000
        )

    @commands.hybrid_command(name="set-confirmation-window", description="Seconds a moderator has to confirm a reminder.")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def set_confirmation_window(self, ctx: commands.Context, seconds: commands.Range[int, 10, 3600]) -> None:
        await self._update(
            ctx, f"✅ Reminders must be confirmed within {seconds} seconds.", confirmation_window_ms=int(seconds) * 1000
        )

    @commands.hybrid_command(name="set-correlation-window", description="Max audit log age (seconds) for attribution.")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def set_correlation_window(self, ctx: commands.Context, seconds: commands.Range[int, 1, 120]) -> None:
        await self._update(
            ctx, f"✅ Audit entries older than {seconds} seconds are ignored.", correlation_window_ms=int(seconds) * 1000
        )

    @commands.hybrid_command(name="modlogger-config", description="Show this server's ModLogger settings.")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def show_config(self, ctx: commands.Context) -> None:
        cfg = self.store.get(ctx.guild.id)
        engine = self.bot.engine  # type: ignore[attr-defined]
        e = safe_embed("ModLogger configuration")
        e.add_field(name="Activity log", value=_channel(cfg.log_channel_id), inline=True)
        e.add_field(name="Message log", value=_channel(cfg.message_log_channel_id), inline=True)
        e.add_field(name="Voice log", value=_channel(cfg.voice_log_channel_id), inline=True)
        roles = ", ".join(f"<@&{r}>" for r in sorted(cfg.moderator_role_ids)) or "—"
        e.add_field(name="Moderator roles", value=roles, inline=False)
        e.add_field(name="Reminder interval", value=format_duration(engine.reminders.interval_ms(cfg)), inline=True)
        e.add_field(name="Confirmation window", value=format_duration(engine.reminders.window_ms(cfg)), inline=True)
        e.add_field(name="Correlation window", value=format_duration(engine.correlator.window_ms(cfg)), inline=True)
        if not engine.reminders.enabled:
            e.set_footer(text="Liveness reminders are currently suspended by the bot owner.")
        await safe_response(ctx, embed=e, ephemeral=True)

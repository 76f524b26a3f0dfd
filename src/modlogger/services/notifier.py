from __future__ import annotations

import logging
from typing import Any

import discord

from ..constants import COLORS, CONFIRM_EMOJI, MAX_MESSAGE_LENGTH
from ..utils import format_duration, safe_embed, truncate
from .config_store import WorkspaceConfig
from .correlator import Attribution, AuditEventKind, log_channel_for
from .reminders import Probe
from .sessions import EndReason, ModeratorSession
from .stats import StatsReport

log = logging.getLogger("modlogger.notifier")

_ATTRIBUTION_TITLES = {
    AuditEventKind.MESSAGE_DELETE: "🗑️ Message Deleted by Moderator",
    AuditEventKind.BULK_MESSAGE_DELETE: "🧹 Messages Bulk Deleted by Moderator",
    AuditEventKind.FORCED_MOVE: "🔀 Member Moved by Moderator",
}


def render_duty_started(session: ModeratorSession) -> str:
    return f"🟢 <@{session.actor_id}> is now **ON DUTY**."


def render_duty_ended(session: ModeratorSession, reason: EndReason, elapsed_ms: int) -> str:
    suffix = " (timed out)" if reason is EndReason.TIMEOUT else ""
    return f"🔴 <@{session.actor_id}> is now **OFF DUTY**{suffix}. Session: {format_duration(elapsed_ms)}"


def render_probe(actor_id: int, window_ms: int) -> str:
    minutes, seconds = divmod(max(0, window_ms) // 1000, 60)
    if minutes and not seconds:
        window = f"{minutes} minute{'s' if minutes != 1 else ''}"
    elif minutes:
        window = f"{minutes}m {seconds}s"
    else:
        window = f"{seconds} seconds"
    return (
        f"🔔 Hey <@{actor_id}>, are you still active? "
        f"React with {CONFIRM_EMOJI} within {window} to stay active."
    )


def render_report(report: StatsReport) -> str:
    title = f"📊 **{report.period.value.capitalize()} Mod Stats for {report.generated_at:%Y-%m-%d}**"
    if report.is_empty:
        return f"{title}\nNo data."
    ranked = sorted(report.totals.items(), key=lambda kv: kv[1], reverse=True)
    lines = [title] + [f"• <@{uid}> — {format_duration(ms)}" for uid, ms in ranked]
    return truncate("\n".join(lines), MAX_MESSAGE_LENGTH)


def render_attribution(att: Attribution) -> discord.Embed:
    e = safe_embed(_ATTRIBUTION_TITLES[att.kind], color=COLORS["error"])
    e.timestamp = att.timestamp
    e.add_field(name="Moderator", value=f"<@{att.executor_id}>", inline=True)
    details = att.details
    if att.kind is AuditEventKind.MESSAGE_DELETE:
        author = details.get("author_tag")
        mention = f"<@{att.target_actor_id}>" if att.target_actor_id else "Unknown"
        e.add_field(name="Original Author", value=f"{author} ({mention})" if author else mention, inline=True)
    elif att.kind is AuditEventKind.FORCED_MOVE and details.get("member_id"):
        e.add_field(name="Member", value=f"<@{details['member_id']}>", inline=True)
    if att.channel_id:
        e.add_field(name="Channel", value=f"<#{att.channel_id}>", inline=True)
    if att.kind is AuditEventKind.FORCED_MOVE and details.get("from_channel_id"):
        e.add_field(name="From", value=f"<#{details['from_channel_id']}>", inline=True)
    if att.kind is AuditEventKind.BULK_MESSAGE_DELETE and details.get("count") is not None:
        e.add_field(name="Messages", value=str(details["count"]), inline=True)
    if att.kind is AuditEventKind.MESSAGE_DELETE:
        e.add_field(name="Content", value=truncate(str(details.get("content") or "_(No content)_")), inline=False)
    return e


class Notifier:
    """Sends duty, probe, attribution and report messages to guild log channels.

    Every send is fire-and-forget: a missing channel or an HTTP failure is
    logged here and never reaches the caller.
    """

    def __init__(self, client: discord.Client, configs: Any) -> None:
        self._client = client
        self._configs = configs

    def _channel(self, workspace_id: int, channel_id: int | None) -> Any | None:
        if not channel_id:
            return None
        guild = self._client.get_guild(workspace_id)
        if guild is None:
            return None
        channel = guild.get_channel(channel_id)
        if channel is None or not hasattr(channel, "send"):
            log.warning("Log channel %s missing in guild %s", channel_id, workspace_id)
            return None
        return channel

    async def _send(self, workspace_id: int, channel_id: int | None, **kwargs: Any) -> discord.Message | None:
        channel = self._channel(workspace_id, channel_id)
        if channel is None:
            return None
        try:
            return await channel.send(**kwargs)
        except discord.HTTPException:
            log.exception("Failed to send log message to channel %s in guild %s", channel_id, workspace_id)
            return None

    def _config(self, workspace_id: int) -> WorkspaceConfig:
        return self._configs.get(workspace_id)

    async def on_session_started(self, session: ModeratorSession) -> None:
        cfg = self._config(session.workspace_id)
        await self._send(session.workspace_id, cfg.log_channel_id, content=render_duty_started(session))

    async def on_session_ended(self, session: ModeratorSession, reason: EndReason, elapsed_ms: int) -> None:
        cfg = self._config(session.workspace_id)
        await self._send(
            session.workspace_id, cfg.log_channel_id, content=render_duty_ended(session, reason, elapsed_ms)
        )

    async def send_probe(self, probe: Probe, config: WorkspaceConfig, window_ms: int) -> bool:
        session = probe.session
        msg = await self._send(
            session.workspace_id, config.log_channel_id, content=render_probe(session.actor_id, window_ms)
        )
        if msg is None:
            return False
        probe.message_id = msg.id
        try:
            await msg.add_reaction(CONFIRM_EMOJI)
        except discord.HTTPException:
            # The moderator can still add the reaction by hand.
            log.warning("Could not add confirm reaction to probe %s", msg.id)
        return True

    async def probe_confirmed(self, workspace_id: int, actor_id: int, channel_id: int, message_id: int) -> None:
        channel = self._channel(workspace_id, channel_id)
        if channel is None:
            return
        try:
            await channel.send(
                content=f"{CONFIRM_EMOJI} <@{actor_id}> confirmed active.",
                reference=discord.MessageReference(message_id=message_id, channel_id=channel_id, guild_id=workspace_id),
                mention_author=False,
            )
        except discord.HTTPException:
            log.exception("Failed to confirm probe %s", message_id)

    async def on_attribution(self, att: Attribution) -> None:
        cfg = self._config(att.workspace_id)
        await self._send(att.workspace_id, log_channel_for(att.kind, cfg), embed=render_attribution(att))

    async def on_report(self, report: StatsReport) -> None:
        cfg = self._config(report.workspace_id)
        await self._send(report.workspace_id, cfg.log_channel_id, content=render_report(report))

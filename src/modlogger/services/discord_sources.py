from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
import discord

from ..errors import SourceUnavailable
from .correlator import AuditEntry, AuditEventKind

log = logging.getLogger("modlogger.discord_sources")

_ACTIONS = {
    AuditEventKind.MESSAGE_DELETE: discord.AuditLogAction.message_delete,
    AuditEventKind.BULK_MESSAGE_DELETE: discord.AuditLogAction.message_bulk_delete,
    AuditEventKind.FORCED_MOVE: discord.AuditLogAction.member_move,
}


def _id_of(obj: Any) -> int | None:
    oid = getattr(obj, "id", None)
    return int(oid) if oid is not None else None


def entry_from_audit_log(kind: AuditEventKind, entry: discord.AuditLogEntry) -> AuditEntry | None:
    """Flatten a discord.py audit log entry; None when it has no executor."""
    executor = entry.user
    executor_id = _id_of(executor) or getattr(entry, "user_id", None)
    if executor_id is None:
        return None

    extra = entry.extra
    if kind is AuditEventKind.BULK_MESSAGE_DELETE:
        # Bulk deletes target the channel itself.
        target_id, channel_id = None, _id_of(entry.target)
    elif kind is AuditEventKind.MESSAGE_DELETE:
        target_id, channel_id = _id_of(entry.target), _id_of(getattr(extra, "channel", None))
    else:
        # member_move entries carry only the destination channel and a count.
        target_id, channel_id = None, _id_of(getattr(extra, "channel", None))

    return AuditEntry(
        kind=kind,
        executor_id=int(executor_id),
        created_at=entry.created_at,
        target_id=target_id,
        channel_id=channel_id,
        executor_is_bot=bool(getattr(executor, "bot", False)),
        entry_id=_id_of(entry),
        count=max(1, int(getattr(extra, "count", None) or 1)),
    )


class DiscordAuditSource:
    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def query(self, workspace_id: int, kind: AuditEventKind, limit: int) -> list[AuditEntry]:
        guild = self._client.get_guild(workspace_id)
        if guild is None:
            raise SourceUnavailable(f"guild {workspace_id} not cached")
        out: list[AuditEntry] = []
        try:
            async for raw in guild.audit_logs(limit=limit, action=_ACTIONS[kind]):
                entry = entry_from_audit_log(kind, raw)
                if entry is not None:
                    out.append(entry)
        except discord.Forbidden as exc:
            raise SourceUnavailable("missing View Audit Log permission") from exc
        except discord.HTTPException as exc:
            raise SourceUnavailable(f"audit log fetch failed: {exc}") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SourceUnavailable(f"audit log fetch failed: {exc!r}") from exc
        return out


class DiscordMembershipSource:
    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def resolve_roles(self, workspace_id: int, actor_id: int) -> set[int]:
        guild = self._client.get_guild(workspace_id)
        if guild is None:
            raise SourceUnavailable(f"guild {workspace_id} not cached")
        member = guild.get_member(actor_id)
        if member is None:
            try:
                member = await guild.fetch_member(actor_id)
            except discord.NotFound:
                return set()
            except discord.HTTPException as exc:
                raise SourceUnavailable(f"member fetch failed: {exc}") from exc
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise SourceUnavailable(f"member fetch failed: {exc!r}") from exc
        return {role.id for role in member.roles}

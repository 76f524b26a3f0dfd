"""Adapters from discord.py audit logs and members to the correlator."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import aiohttp
import discord
import pytest

from modlogger.errors import SourceUnavailable
from modlogger.services.correlator import AuditEventKind
from modlogger.services.discord_sources import (
    DiscordAuditSource,
    DiscordMembershipSource,
    entry_from_audit_log,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _raw(user=None, target=None, extra=None):
    return SimpleNamespace(
        user=user if user is not None else SimpleNamespace(id=7, bot=False),
        target=target,
        extra=extra,
        created_at=NOW,
    )


def _response(status: int, reason: str) -> SimpleNamespace:
    return SimpleNamespace(status=status, reason=reason)


class FakeAuditGuild:
    def __init__(self, entries=(), error=None, members=None, fetch_error=None):
        self.entries = list(entries)
        self.error = error
        self.members = members or {}
        self.fetch_error = fetch_error
        self.calls = []

    async def audit_logs(self, *, limit, action):
        self.calls.append((limit, action))
        if self.error is not None:
            raise self.error
        for entry in self.entries[:limit]:
            yield entry

    def get_member(self, user_id):
        return self.members.get(user_id)

    async def fetch_member(self, user_id):
        if self.fetch_error is not None:
            raise self.fetch_error
        raise discord.NotFound(_response(404, "Not Found"), "Unknown Member")


class TestEntryFromAuditLog:
    def test_message_delete(self):
        raw = _raw(
            target=SimpleNamespace(id=9),
            extra=SimpleNamespace(channel=SimpleNamespace(id=3), count=1),
        )

        entry = entry_from_audit_log(AuditEventKind.MESSAGE_DELETE, raw)

        assert entry.executor_id == 7
        assert entry.target_id == 9
        assert entry.channel_id == 3
        assert entry.created_at == NOW
        assert entry.executor_is_bot is False

    def test_bulk_delete_targets_channel(self):
        raw = _raw(target=SimpleNamespace(id=3), extra=SimpleNamespace(count=12))

        entry = entry_from_audit_log(AuditEventKind.BULK_MESSAGE_DELETE, raw)

        assert entry.target_id is None
        assert entry.channel_id == 3

    def test_member_move_uses_destination_channel(self):
        raw = _raw(extra=SimpleNamespace(channel=SimpleNamespace(id=4), count=1))

        entry = entry_from_audit_log(AuditEventKind.FORCED_MOVE, raw)

        assert entry.target_id is None
        assert entry.channel_id == 4
        assert entry.count == 1

    def test_member_move_keeps_id_and_count(self):
        raw = _raw(extra=SimpleNamespace(channel=SimpleNamespace(id=4), count=3))
        raw.id = 1234

        entry = entry_from_audit_log(AuditEventKind.FORCED_MOVE, raw)

        assert entry.entry_id == 1234
        assert entry.count == 3

    def test_bot_executor_is_flagged(self):
        raw = _raw(user=SimpleNamespace(id=8, bot=True), target=SimpleNamespace(id=9))

        assert entry_from_audit_log(AuditEventKind.MESSAGE_DELETE, raw).executor_is_bot

    def test_entry_without_executor_is_skipped(self):
        raw = SimpleNamespace(user=None, target=None, extra=None, created_at=NOW)

        assert entry_from_audit_log(AuditEventKind.MESSAGE_DELETE, raw) is None


class TestDiscordAuditSource:
    @pytest.mark.asyncio
    async def test_query_uses_action_and_limit(self):
        guild = FakeAuditGuild([_raw(target=SimpleNamespace(id=3)) for _ in range(10)])
        source = DiscordAuditSource(SimpleNamespace(get_guild=lambda gid: guild))

        entries = await source.query(1, AuditEventKind.BULK_MESSAGE_DELETE, 6)

        assert len(entries) == 6
        assert guild.calls == [(6, discord.AuditLogAction.message_bulk_delete)]

    @pytest.mark.asyncio
    async def test_forbidden_becomes_source_unavailable(self):
        guild = FakeAuditGuild(error=discord.Forbidden(_response(403, "Forbidden"), "Missing Permissions"))
        source = DiscordAuditSource(SimpleNamespace(get_guild=lambda gid: guild))

        with pytest.raises(SourceUnavailable):
            await source.query(1, AuditEventKind.MESSAGE_DELETE, 6)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [aiohttp.ClientConnectionError("reset by peer"), asyncio.TimeoutError()]
    )
    async def test_transport_errors_become_source_unavailable(self, error):
        guild = FakeAuditGuild(error=error)
        source = DiscordAuditSource(SimpleNamespace(get_guild=lambda gid: guild))

        with pytest.raises(SourceUnavailable) as info:
            await source.query(1, AuditEventKind.FORCED_MOVE, 6)

        assert info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_uncached_guild_is_unavailable(self):
        source = DiscordAuditSource(SimpleNamespace(get_guild=lambda gid: None))

        with pytest.raises(SourceUnavailable):
            await source.query(1, AuditEventKind.MESSAGE_DELETE, 6)


class TestDiscordMembershipSource:
    @pytest.mark.asyncio
    async def test_cached_member_roles(self):
        member = SimpleNamespace(roles=[SimpleNamespace(id=1), SimpleNamespace(id=500)])
        guild = FakeAuditGuild(members={7: member})
        source = DiscordMembershipSource(SimpleNamespace(get_guild=lambda gid: guild))

        assert await source.resolve_roles(1, 7) == {1, 500}

    @pytest.mark.asyncio
    async def test_departed_member_has_no_roles(self):
        source = DiscordMembershipSource(SimpleNamespace(get_guild=lambda gid: FakeAuditGuild()))

        assert await source.resolve_roles(1, 7) == set()

    @pytest.mark.asyncio
    async def test_fetch_failure_is_unavailable(self):
        guild = FakeAuditGuild(fetch_error=discord.HTTPException(_response(500, "Server Error"), "boom"))
        source = DiscordMembershipSource(SimpleNamespace(get_guild=lambda gid: guild))

        with pytest.raises(SourceUnavailable):
            await source.resolve_roles(1, 7)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [aiohttp.ServerDisconnectedError(), asyncio.TimeoutError()]
    )
    async def test_fetch_transport_error_is_unavailable(self, error):
        guild = FakeAuditGuild(fetch_error=error)
        source = DiscordMembershipSource(SimpleNamespace(get_guild=lambda gid: guild))

        with pytest.raises(SourceUnavailable):
            await source.resolve_roles(1, 7)

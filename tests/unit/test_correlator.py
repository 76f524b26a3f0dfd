"""Unit tests for audit-log correlation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from modlogger.services.correlator import (
    AuditEntry,
    AuditEventKind,
    SideEffectEvent,
    match,
)

W = 1
MOD = 7
AUTHOR = 9
CHANNEL = 3
MOD_ROLE = 500
NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def _event(kind=AuditEventKind.MESSAGE_DELETE, target=AUTHOR, channel=CHANNEL, **details) -> SideEffectEvent:
    return SideEffectEvent(
        kind=kind,
        workspace_id=W,
        target_actor_id=target,
        channel_id=channel,
        occurred_at=NOW,
        details=details,
    )


def _entry(
    kind=AuditEventKind.MESSAGE_DELETE,
    executor=MOD,
    target=AUTHOR,
    channel=CHANNEL,
    age_s: float = 1.0,
    bot: bool = False,
) -> AuditEntry:
    return AuditEntry(
        kind=kind,
        executor_id=executor,
        created_at=NOW - timedelta(seconds=age_s),
        target_id=target,
        channel_id=channel,
        executor_is_bot=bot,
    )


async def _configure(configs, **overrides):
    values = dict(message_log_channel_id=11, voice_log_channel_id=12, moderator_role_ids={MOD_ROLE})
    values.update(overrides)
    await configs.update(W, **values)


# ---------------------------------------------------------------------------
# match()
# ---------------------------------------------------------------------------


class TestMatch:
    def test_exact_match_is_returned(self):
        entry = _entry()
        assert match(_event(), [entry]) is entry

    def test_first_qualifying_entry_wins(self):
        newest = _entry(executor=1, age_s=0.5)
        older = _entry(executor=2, age_s=2.0)
        assert match(_event(), [newest, older]) is newest

    def test_skips_entries_for_other_target(self):
        wrong = _entry(target=AUTHOR + 1)
        right = _entry(executor=2)
        assert match(_event(), [wrong, right]) is right

    def test_skips_entries_for_other_channel(self):
        assert match(_event(), [_entry(channel=CHANNEL + 1)]) is None

    def test_skips_entries_of_other_kind(self):
        assert match(_event(), [_entry(kind=AuditEventKind.BULK_MESSAGE_DELETE)]) is None

    def test_stale_entry_is_rejected(self):
        assert match(_event(), [_entry(age_s=15)], window_ms=10_000) is None

    def test_window_boundary_is_exclusive(self):
        assert match(_event(), [_entry(age_s=10)], window_ms=10_000) is None
        assert match(_event(), [_entry(age_s=9.999)], window_ms=10_000) is not None

    def test_entry_slightly_after_event_is_accepted(self):
        assert match(_event(), [_entry(age_s=-2)]) is not None

    def test_missing_event_fields_are_not_constrained(self):
        event = _event(kind=AuditEventKind.FORCED_MOVE, target=None, channel=None)
        entry = _entry(kind=AuditEventKind.FORCED_MOVE, target=None, channel=99)
        assert match(event, [entry]) is entry

    def test_no_candidates(self):
        assert match(_event(), []) is None


# ---------------------------------------------------------------------------
# AuditCorrelator
# ---------------------------------------------------------------------------


class TestAuditCorrelator:
    @pytest.mark.asyncio
    async def test_verified_match_is_attributed(self, engine, configs, audit_source, membership, notifier):
        await _configure(configs)
        audit_source.entries = [_entry()]
        membership.roles[MOD] = {MOD_ROLE, 1}

        att = await engine.correlator.correlate(_event(content="hello"))

        assert att is not None
        assert att.executor_id == MOD
        assert att.target_actor_id == AUTHOR
        assert att.channel_id == CHANNEL
        assert att.timestamp == NOW
        assert att.details["content"] == "hello"
        assert notifier.attributions == [att]
        assert audit_source.queries == [(W, AuditEventKind.MESSAGE_DELETE, 6)]

    @pytest.mark.asyncio
    async def test_stale_match_is_unattributed(self, engine, configs, audit_source, membership, notifier):
        await _configure(configs)
        audit_source.entries = [_entry(age_s=15)]
        membership.roles[MOD] = {MOD_ROLE}

        assert await engine.correlator.correlate(_event()) is None
        assert notifier.attributions == []

    @pytest.mark.asyncio
    async def test_workspace_window_override(self, engine, configs, audit_source, membership, notifier):
        await _configure(configs, correlation_window_ms=20_000)
        audit_source.entries = [_entry(age_s=15)]
        membership.roles[MOD] = {MOD_ROLE}

        assert await engine.correlator.correlate(_event()) is not None

    @pytest.mark.asyncio
    async def test_non_moderator_executor_is_dropped(self, engine, configs, audit_source, membership, notifier):
        await _configure(configs)
        audit_source.entries = [_entry()]
        membership.roles[MOD] = {1, 2}

        assert await engine.correlator.correlate(_event()) is None
        assert notifier.attributions == []

    @pytest.mark.asyncio
    async def test_bot_executor_is_dropped(self, engine, configs, audit_source, membership, notifier):
        await _configure(configs)
        audit_source.entries = [_entry(bot=True)]
        membership.roles[MOD] = {MOD_ROLE}

        assert await engine.correlator.correlate(_event()) is None

    @pytest.mark.asyncio
    async def test_audit_failure_is_logged_and_dropped(self, engine, configs, audit_source, notifier, caplog):
        await _configure(configs)
        audit_source.fail = True

        with caplog.at_level(logging.WARNING, logger="modlogger.correlator"):
            assert await engine.correlator.correlate(_event()) is None

        assert "Audit log unavailable" in caplog.text
        assert notifier.attributions == []

    @pytest.mark.asyncio
    async def test_membership_failure_counts_as_not_moderator(self, engine, configs, audit_source, membership, notifier):
        await _configure(configs)
        audit_source.entries = [_entry()]
        membership.fail = True

        assert await engine.correlator.correlate(_event()) is None
        assert notifier.attributions == []

    @pytest.mark.asyncio
    async def test_no_moderator_roles_skips_query(self, engine, configs, audit_source):
        await _configure(configs, moderator_role_ids=set())

        assert await engine.correlator.correlate(_event()) is None
        assert audit_source.queries == []

    @pytest.mark.asyncio
    async def test_no_log_channel_skips_query(self, engine, configs, audit_source):
        await _configure(configs, voice_log_channel_id=None)
        event = _event(kind=AuditEventKind.FORCED_MOVE, target=None)

        assert await engine.correlator.correlate(event) is None
        assert audit_source.queries == []

    @pytest.mark.asyncio
    async def test_forced_move_attribution(self, engine, configs, audit_source, membership, notifier):
        await _configure(configs)
        audit_source.entries = [
            _entry(kind=AuditEventKind.MESSAGE_DELETE),
            _entry(kind=AuditEventKind.FORCED_MOVE, target=None, channel=CHANNEL),
        ]
        membership.roles[MOD] = {MOD_ROLE}
        event = _event(kind=AuditEventKind.FORCED_MOVE, target=None, member_id=AUTHOR)

        att = await engine.correlator.correlate(event)

        assert att is not None
        assert att.kind is AuditEventKind.FORCED_MOVE
        assert att.details["member_id"] == AUTHOR

    @pytest.mark.asyncio
    async def test_move_entry_is_not_reused_for_a_later_switch(
        self, engine, configs, audit_source, membership, notifier
    ):
        await _configure(configs)
        audit_source.entries = [
            replace(_entry(kind=AuditEventKind.FORCED_MOVE, target=None), entry_id=100)
        ]
        membership.roles[MOD] = {MOD_ROLE}

        first = await engine.correlator.correlate(
            _event(kind=AuditEventKind.FORCED_MOVE, target=None, member_id=AUTHOR)
        )
        # Someone joins the same channel on their own a moment later.
        second = await engine.correlator.correlate(
            _event(kind=AuditEventKind.FORCED_MOVE, target=None, member_id=AUTHOR + 1)
        )

        assert first is not None
        assert second is None
        assert [a.details["member_id"] for a in notifier.attributions] == [AUTHOR]

    @pytest.mark.asyncio
    async def test_merged_move_entry_covers_its_count(self, engine, configs, audit_source, membership, notifier):
        await _configure(configs)
        audit_source.entries = [
            replace(_entry(kind=AuditEventKind.FORCED_MOVE, target=None), entry_id=100, count=2)
        ]
        membership.roles[MOD] = {MOD_ROLE}

        results = [
            await engine.correlator.correlate(
                _event(kind=AuditEventKind.FORCED_MOVE, target=None, member_id=m)
            )
            for m in (20, 21, 22)
        ]

        assert [r is not None for r in results] == [True, True, False]

    @pytest.mark.asyncio
    async def test_simultaneous_moves_share_one_entry_once(
        self, engine, configs, audit_source, membership, notifier
    ):
        await _configure(configs)
        audit_source.entries = [_entry(kind=AuditEventKind.FORCED_MOVE, target=None)]
        membership.roles[MOD] = {MOD_ROLE}

        results = await asyncio.gather(
            engine.correlator.correlate(_event(kind=AuditEventKind.FORCED_MOVE, target=None, member_id=20)),
            engine.correlator.correlate(_event(kind=AuditEventKind.FORCED_MOVE, target=None, member_id=21)),
        )

        assert sum(r is not None for r in results) == 1
        assert len(notifier.attributions) == 1

    @pytest.mark.asyncio
    async def test_newer_move_entry_is_used_once_older_is_spent(
        self, engine, configs, audit_source, membership, notifier
    ):
        await _configure(configs)
        older = replace(_entry(kind=AuditEventKind.FORCED_MOVE, target=None, age_s=3), entry_id=100)
        membership.roles[MOD] = {MOD_ROLE}
        audit_source.entries = [older]
        await engine.correlator.correlate(_event(kind=AuditEventKind.FORCED_MOVE, target=None, member_id=20))

        newer = replace(_entry(kind=AuditEventKind.FORCED_MOVE, target=None, age_s=1), entry_id=101)
        audit_source.entries = [newer, older]
        att = await engine.correlator.correlate(_event(kind=AuditEventKind.FORCED_MOVE, target=None, member_id=21))

        assert att is not None
        assert len(notifier.attributions) == 2

    @pytest.mark.asyncio
    async def test_message_delete_entries_may_repeat(self, engine, configs, audit_source, membership, notifier):
        await _configure(configs)
        audit_source.entries = [_entry()]
        membership.roles[MOD] = {MOD_ROLE}

        await engine.correlator.correlate(_event())
        await engine.correlator.correlate(_event())

        assert len(notifier.attributions) == 2

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_lose_attribution(self, engine, configs, audit_source, membership):
        await _configure(configs)
        audit_source.entries = [_entry()]
        membership.roles[MOD] = {MOD_ROLE}

        async def broken(att):
            raise RuntimeError("boom")

        engine.correlator.add_sink(broken)

        assert await engine.correlator.correlate(_event()) is not None

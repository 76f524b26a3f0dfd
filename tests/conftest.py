from __future__ import annotations

import pytest
import pytest_asyncio

from modlogger.engine import DutyEngine
from modlogger.services.config_store import WorkspaceConfigStore
from modlogger.testing.fakes import (
    FakeClock,
    RecordingNotifier,
    ScriptedAuditSource,
    StaticMembershipSource,
    make_settings,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def configs() -> WorkspaceConfigStore:
    return WorkspaceConfigStore(None)


@pytest.fixture
def audit_source() -> ScriptedAuditSource:
    return ScriptedAuditSource()


@pytest.fixture
def membership() -> StaticMembershipSource:
    return StaticMembershipSource()


@pytest_asyncio.fixture
async def engine(clock, notifier, configs, audit_source, membership):
    eng = DutyEngine(
        make_settings(),
        configs=configs,
        audit_source=audit_source,
        membership=membership,
        notifier=notifier,
        clock=clock,
        sleep=clock.sleep,
    )
    yield eng
    await eng.reminders.stop()
    await eng.rollover.stop()

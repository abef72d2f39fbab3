"""Shared fixtures: a controllable clock and in-memory wiring.

Every component takes a clock, so tests pin time at T0 and move it by hand.
Schedulers are built with arm_timers=False and firings are driven through
ReminderJob.fire(), which keeps the reminder tests free of real sleeps.
"""

from datetime import datetime, timedelta, timezone

import pytest

from channels.memory import InMemoryNotificationClient
from core.config import Settings
from core.engine import TransitionEngine
from core.fanout import NotificationFanOut
from core.reminder import ReminderScheduler
from core.store import InMemoryIncidentStore
from schemas.incident import IncidentDraft

T0 = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


def make_draft(channel_id="inc-1", title="Checkout is down", **overrides) -> IncidentDraft:
    fields = {
        "title": title,
        "channel_id": channel_id,
        "description": "Payments fail with 502 since 09:00.",
        "author_id": "U_AUTHOR",
        "severity_level": 1,
    }
    fields.update(overrides)
    return IncidentDraft(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(product_channel_id="product-updates", support_team="S_SUPPORT")


@pytest.fixture
def store(clock):
    return InMemoryIncidentStore(clock=clock)


@pytest.fixture
def client(clock):
    return InMemoryNotificationClient(clock=clock)


@pytest.fixture
def fanout(client):
    return NotificationFanOut(client)


@pytest.fixture
def scheduler(store, fanout, settings, clock):
    return ReminderScheduler(store, fanout, settings, clock=clock, arm_timers=False)


@pytest.fixture
def engine(store, fanout, scheduler, settings, clock):
    return TransitionEngine(store, fanout, scheduler, settings, clock=clock)

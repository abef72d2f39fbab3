"""Reminder scheduler tests.

Firings are single-stepped with ReminderJob.fire() against a FakeClock; only
TestTimerLoop uses real (short) sleeps to exercise the background task.
"""

import asyncio
from datetime import timedelta

import pytest

from channels.memory import InMemoryNotificationClient
from core.config import Settings
from core.errors import PersistenceError
from core.fanout import NotificationFanOut
from core.reminder import ReminderScheduler, build_policies
from core.store import InMemoryIncidentStore
from schemas.events import ReminderOutcome
from schemas.incident import Incident, IncidentStatus

from conftest import T0, make_draft


def reminders(client, channel_id="inc-1"):
    """Reminder posts are the unpinned messages in the incident channel."""
    return [m for m in client.sent_to(channel_id) if not m.pinned]


class FlakyStore(InMemoryIncidentStore):
    def __init__(self, clock):
        super().__init__(clock=clock)
        self.fail_reads = False
        self.fail_list = False

    async def get(self, channel_id):
        if self.fail_reads:
            raise PersistenceError("database is locked")
        return await super().get(channel_id)

    async def list_active(self, limit=100):
        if self.fail_list:
            raise PersistenceError("database is locked")
        return await super().list_active(limit)


# ── Policy table ──────────────────────────────────────────────────────────────

class TestPolicies:
    def test_table_covers_active_statuses_only(self, settings):
        policies = build_policies(settings)
        assert set(policies) == {IncidentStatus.OPEN, IncidentStatus.RESOLVED}
        assert policies[IncidentStatus.OPEN].interval == timedelta(hours=2)
        assert policies[IncidentStatus.RESOLVED].interval == timedelta(hours=24)
        assert policies[IncidentStatus.OPEN].notice.text == settings.reminder_open_message

    def test_terminal_status_has_no_policy(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.policy_for(IncidentStatus.CLOSED)


# ── Firing decisions ──────────────────────────────────────────────────────────

class TestFiring:
    async def test_stale_pin_sends_reminder(self, engine, scheduler, client, clock):
        await engine.open(make_draft())
        job = scheduler.get("inc-1")

        # The open card was pinned at T0: exactly one interval old is stale.
        clock.advance(hours=2)
        assert await job.fire() == ReminderOutcome.SENT

        sent = reminders(client)
        assert len(sent) == 1
        assert sent[0].notice.text.startswith("Incident Status: Open")
        assert job.running

    async def test_fresh_pin_suppresses_then_expires(self, engine, scheduler, client, clock):
        await engine.open(make_draft())
        job = scheduler.get("inc-1")
        client.pin_external("inc-1", T0 + timedelta(hours=1))

        clock.set(T0 + timedelta(hours=2))
        assert await job.fire() == ReminderOutcome.FRESH_PIN
        assert reminders(client) == []

        clock.set(T0 + timedelta(hours=3))
        assert await job.fire() == ReminderOutcome.SENT
        assert len(reminders(client)) == 1

    async def test_reminder_is_not_pinned(self, engine, scheduler, client, clock):
        await engine.open(make_draft())
        clock.advance(hours=2)
        await scheduler.get("inc-1").fire()
        # A reminder must never count as a status update.
        assert await client.last_pin_timestamp("inc-1") == T0

    async def test_snooze_suppresses(self, engine, scheduler, client, clock):
        await engine.open(make_draft())
        await engine.snooze("inc-1", T0 + timedelta(hours=3))
        job = scheduler.get("inc-1")

        clock.advance(hours=2)
        assert await job.fire() == ReminderOutcome.SNOOZED
        assert reminders(client) == []

        clock.advance(hours=2)
        assert await job.fire() == ReminderOutcome.SENT

    async def test_sla_grace_window(self, engine, scheduler, client, clock):
        await engine.open(make_draft())
        await engine.resolve("inc-1", "Rolled back")
        job = scheduler.get("inc-1")
        assert job.status == IncidentStatus.RESOLVED

        clock.set(T0 + timedelta(hours=168, minutes=59))
        assert await job.fire() == ReminderOutcome.SLA_GRACE

        clock.set(T0 + timedelta(hours=169))
        assert await job.fire() == ReminderOutcome.SENT
        assert reminders(client)[-1].notice.text.startswith("Incident Status: Resolved")

    async def test_terminal_status_stops_without_notice(self, engine, scheduler, store, client, clock):
        await engine.open(make_draft())
        job = scheduler.get("inc-1")
        await store.update("inc-1", {"status": IncidentStatus.CLOSED})
        before = len(client.messages)

        clock.advance(hours=2)
        assert await job.fire() == ReminderOutcome.STOPPED
        assert not job.running
        assert scheduler.get("inc-1") is None
        assert len(client.messages) == before

    async def test_missing_incident_stops_job(self, scheduler):
        ghost = Incident(
            id=99, channel_id="ghost", title="ghost", status=IncidentStatus.OPEN, identification_ts=T0,
        )
        job = await scheduler.schedule(ghost)
        assert await job.fire() == ReminderOutcome.GONE
        assert scheduler.jobs() == []

    async def test_status_change_replaces_job_exactly_once(self, engine, scheduler, store, client, clock):
        await engine.open(make_draft())
        old = scheduler.get("inc-1")
        # Resolved behind the scheduler's back, e.g. by another process.
        await store.update("inc-1", {"status": IncidentStatus.RESOLVED, "end_ts": T0})

        clock.advance(hours=2)
        outcomes = await asyncio.gather(old.fire(), old.fire())

        assert outcomes == [ReminderOutcome.STATUS_CHANGED, ReminderOutcome.STATUS_CHANGED]
        assert not old.running
        jobs = scheduler.jobs()
        assert len(jobs) == 1
        assert jobs[0] is not old
        assert jobs[0].status == IncidentStatus.RESOLVED
        assert jobs[0].interval == timedelta(hours=24)
        assert reminders(client) == []

    async def test_store_error_is_a_noop(self, clock, settings, client):
        store = FlakyStore(clock)
        scheduler = ReminderScheduler(store, NotificationFanOut(client), settings, clock=clock, arm_timers=False)
        incident = await store.insert({
            "channel_id": "inc-1", "title": "t", "status": IncidentStatus.OPEN, "identification_ts": T0,
        })
        job = await scheduler.schedule(incident)

        store.fail_reads = True
        clock.advance(hours=2)
        assert await job.fire() == ReminderOutcome.ERROR
        assert job.running
        assert scheduler.get("inc-1") is job

    async def test_store_error_is_reported_on_the_event(self, clock, settings, client):
        store = FlakyStore(clock)
        queue: asyncio.Queue = asyncio.Queue()
        scheduler = ReminderScheduler(
            store, NotificationFanOut(client), settings, clock=clock, event_queue=queue, arm_timers=False,
        )
        incident = await store.insert({
            "channel_id": "inc-1", "title": "t", "status": IncidentStatus.OPEN, "identification_ts": T0,
        })
        job = await scheduler.schedule(incident)
        queue.get_nowait()

        store.fail_reads = True
        clock.advance(hours=2)
        await job.fire()

        event = queue.get_nowait()
        assert event.outcome == ReminderOutcome.ERROR
        assert event.message == "Could not load incident 'inc-1': database is locked"

    async def test_pin_lookup_error_is_a_noop(self, engine, scheduler, client, clock):
        await engine.open(make_draft())
        client.fail_pins_lookup.add("inc-1")
        job = scheduler.get("inc-1")

        clock.advance(hours=2)
        assert await job.fire() == ReminderOutcome.ERROR
        assert job.running
        assert reminders(client) == []

    async def test_delivery_error_is_a_noop(self, engine, scheduler, client, clock):
        await engine.open(make_draft())
        client.fail_post.add("inc-1")
        job = scheduler.get("inc-1")

        clock.advance(hours=2)
        assert await job.fire() == ReminderOutcome.ERROR
        assert job.running
        assert job.last_outcome == ReminderOutcome.ERROR
        assert job.firings == 1


# ── Scheduler operations ──────────────────────────────────────────────────────

class TestScheduler:
    async def test_start_all_rebuilds_jobs_for_active_incidents(self, store, scheduler):
        for channel_id, status in [
            ("inc-a", IncidentStatus.OPEN),
            ("inc-b", IncidentStatus.RESOLVED),
            ("inc-c", IncidentStatus.CLOSED),
            ("inc-d", IncidentStatus.CANCELED),
        ]:
            await store.insert({
                "channel_id": channel_id, "title": "t", "status": status, "identification_ts": T0,
            })

        assert await scheduler.start_all() == 2
        statuses = {job.channel_id: job.status for job in scheduler.jobs()}
        assert statuses == {"inc-a": IncidentStatus.OPEN, "inc-b": IncidentStatus.RESOLVED}

    async def test_start_all_survives_store_failure(self, clock, settings, client):
        store = FlakyStore(clock)
        store.fail_list = True
        scheduler = ReminderScheduler(store, NotificationFanOut(client), settings, clock=clock, arm_timers=False)
        assert await scheduler.start_all() == 0
        assert scheduler.jobs() == []

    async def test_schedule_replaces_existing_job(self, engine, scheduler, store):
        await engine.open(make_draft())
        first = scheduler.get("inc-1")
        second = await scheduler.schedule(await store.get("inc-1"))
        assert not first.running
        assert scheduler.jobs() == [second]

    async def test_schedule_terminal_incident_cancels(self, engine, scheduler, store):
        await engine.open(make_draft())
        await store.update("inc-1", {"status": IncidentStatus.CANCELED})
        assert await scheduler.schedule(await store.get("inc-1")) is None
        assert scheduler.jobs() == []

    async def test_retarget_keeps_the_same_job(self, engine, scheduler):
        await engine.open(make_draft())
        job = scheduler.get("inc-1")
        await engine.resolve("inc-1", "fixed")
        assert scheduler.get("inc-1") is job
        assert job.status == IncidentStatus.RESOLVED
        assert job.interval == timedelta(hours=24)

    async def test_cancel(self, engine, scheduler):
        await engine.open(make_draft())
        job = scheduler.get("inc-1")
        assert await scheduler.cancel("inc-1") is True
        assert await scheduler.cancel("inc-1") is False
        assert not job.running

    async def test_events_are_published(self, store, client, settings, clock):
        queue: asyncio.Queue = asyncio.Queue()
        scheduler = ReminderScheduler(
            store, NotificationFanOut(client), settings, clock=clock, event_queue=queue, arm_timers=False,
        )
        incident = await store.insert({
            "channel_id": "inc-1", "title": "t", "status": IncidentStatus.OPEN, "identification_ts": T0,
        })
        job = await scheduler.schedule(incident)
        clock.advance(hours=2)
        await job.fire()

        armed = queue.get_nowait()
        fired = queue.get_nowait()
        assert armed.outcome == ReminderOutcome.ARMED
        assert fired.outcome == ReminderOutcome.SENT
        assert fired.at == clock.now


# ── Background loop ───────────────────────────────────────────────────────────

class TestTimerLoop:
    @pytest.fixture
    def fast_settings(self):
        return Settings(reminder_open_seconds=1, reminder_resolved_seconds=1)

    async def test_loop_fires_after_interval(self, fast_settings):
        store = InMemoryIncidentStore()
        scheduler = ReminderScheduler(store, NotificationFanOut(InMemoryNotificationClient()), fast_settings)
        incident = await store.insert({
            "channel_id": "inc-1", "title": "t", "status": IncidentStatus.OPEN,
            "identification_ts": T0,
        })
        job = await scheduler.schedule(incident)

        await asyncio.sleep(1.3)
        assert job.firings >= 1
        await scheduler.stop_all()
        assert not job.running
        assert job.task.done()

    async def test_stop_wakes_the_wait(self, fast_settings):
        store = InMemoryIncidentStore()
        scheduler = ReminderScheduler(store, NotificationFanOut(InMemoryNotificationClient()), fast_settings)
        incident = await store.insert({
            "channel_id": "inc-1", "title": "t", "status": IncidentStatus.OPEN,
            "identification_ts": T0,
        })
        job = await scheduler.schedule(incident)
        await asyncio.sleep(0)

        await scheduler.cancel("inc-1")
        await asyncio.wait_for(job.wait_stopped(), timeout=0.5)
        assert job.firings == 0
        assert job.next_fire_at is None

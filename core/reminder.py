"""Reminder scheduler.

For every active incident one ReminderJob runs as its own asyncio task and,
on each firing, decides whether a "please update the status" notice is due.
The job adapts to the incident without the caller recreating it:

    firing
        → reload the incident from the store (never trust a cached copy)
        → terminal status?             stop, no notice
        → status changed (open→resolved)? register a replacement job with
                                        the new status's policy, stop
        → snoozed_until in the future?  suppress
        → status-specific suppression (resolved: SLA grace window)
        → a pin newer than now - interval? suppress (someone already
                                        posted a fresher update)
        → otherwise post the status template to the incident channel

Per-status behaviour is a closed lookup table (status → ReminderPolicy), not
a class hierarchy. Jobs are not persisted: start_all() rebuilds one job per
active incident at process start.

Stopping a job prevents further firings but never interrupts a firing that
is already running. An error during a firing is a no-op for that cycle —
only a terminal status (or a vanished incident) ends a job.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from core.config import Settings
from core.errors import NotFoundError, SchedulingError
from core.fanout import NotificationFanOut
from core.notices import STATUS_COLOR
from core.registry import JobRegistry
from core.store import IncidentStore
from schemas.events import ReminderEvent, ReminderJobInfo, ReminderOutcome
from schemas.incident import Incident, IncidentStatus
from schemas.notice import Destination, Notice
from utils.formatting import format_duration
from utils.timestamps import Clock, elapsed_whole_hours, is_fresher_than, utc_now

logger = logging.getLogger(__name__)

SuppressionRule = Callable[[Incident, datetime], ReminderOutcome | None]


@dataclass(frozen=True)
class ReminderPolicy:
    """How reminders behave for one incident status.

    Attributes:
        status: The status this policy applies to.
        interval: Time between firings, also the staleness window for pins.
        notice: Reminder text posted when a reminder is due.
        suppress: Extra status-specific rule. Returns the outcome to record
            when the reminder should be held back, None otherwise.
    """

    status: IncidentStatus
    interval: timedelta
    notice: Notice
    suppress: SuppressionRule


def _never(incident: Incident, now: datetime) -> ReminderOutcome | None:
    return None


def _within_sla_grace(sla_hours: int) -> SuppressionRule:
    """Hold reminders for resolved incidents until the grace window has passed.

    Whole hours since end_ts are compared to the threshold, so with a 168h
    window the first reminder can go out once 169 full hours have elapsed.
    """

    def rule(incident: Incident, now: datetime) -> ReminderOutcome | None:
        if incident.end_ts is None:
            return None
        if elapsed_whole_hours(incident.end_ts, now) <= sla_hours:
            return ReminderOutcome.SLA_GRACE
        return None

    return rule


def build_policies(settings: Settings) -> dict[IncidentStatus, ReminderPolicy]:
    """The closed status → policy table. Terminal statuses have no entry."""
    return {
        IncidentStatus.OPEN: ReminderPolicy(
            status=IncidentStatus.OPEN,
            interval=timedelta(seconds=settings.reminder_open_seconds),
            notice=Notice(text=settings.reminder_open_message, color=STATUS_COLOR),
            suppress=_never,
        ),
        IncidentStatus.RESOLVED: ReminderPolicy(
            status=IncidentStatus.RESOLVED,
            interval=timedelta(seconds=settings.reminder_resolved_seconds),
            notice=Notice(text=settings.reminder_resolved_message, color=STATUS_COLOR),
            suppress=_within_sla_grace(settings.sla_hours_to_close),
        ),
    }


class ReminderJob:
    """A cancellable periodic reminder task bound to one incident.

    States are `running` (timer armed or firing) and `stopped` (terminal).
    arm() starts the background loop; fire() runs exactly one evaluation and
    is what the loop calls — tests call it directly to single-step firings.

    Attributes:
        channel_id: Incident this job follows.
        firings: Number of completed fire() calls.
        last_outcome: Outcome of the most recent firing.
        next_fire_at: When the armed timer is due, None if not armed.
    """

    def __init__(self, scheduler: "ReminderScheduler", channel_id: str, policy: ReminderPolicy) -> None:
        self.channel_id = channel_id
        self._scheduler = scheduler
        self._policy = policy
        self._stopped = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.firings = 0
        self.last_outcome: ReminderOutcome | None = None
        self.next_fire_at: datetime | None = None

    @property
    def status(self) -> IncidentStatus:
        return self._policy.status

    @property
    def interval(self) -> timedelta:
        return self._policy.interval

    @property
    def running(self) -> bool:
        return not self._stopped.is_set()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def arm(self) -> asyncio.Task:
        """Start the periodic loop as an independent task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"reminder-{self.channel_id}")
        return self._task

    def retarget(self, policy: ReminderPolicy) -> None:
        """Swap the policy in place.

        The wait currently in progress keeps its original length; the new
        interval applies from the next re-arm.
        """
        logger.info(
            "Reminder for %s retargeted %s → %s (interval=%s).",
            self.channel_id,
            self._policy.status.value,
            policy.status.value,
            format_duration(policy.interval.total_seconds()),
        )
        self._policy = policy

    def stop(self) -> None:
        """Prevent further firings. A firing already running completes."""
        self._stopped.set()
        self.next_fire_at = None

    async def wait_stopped(self) -> None:
        """Wait for the background loop (and any in-flight firing) to finish."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        logger.info(
            "Reminder armed for %s (status=%s, interval=%s).",
            self.channel_id,
            self.status.value,
            format_duration(self.interval.total_seconds()),
        )
        while self.running:
            interval = self.interval
            self.next_fire_at = self._scheduler.clock() + interval
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval.total_seconds())
            except asyncio.TimeoutError:
                await self.fire()

    async def fire(self) -> ReminderOutcome:
        """Run one reminder evaluation and return what it decided.

        Never raises. Errors are logged and recorded as ERROR so the job
        keeps its schedule.
        """
        policy = self._policy
        now = self._scheduler.clock()

        try:
            outcome, detail = await self._evaluate(policy, now)
        except SchedulingError as exc:
            # Skip this cycle; the next natural interval retries.
            outcome, detail = ReminderOutcome.ERROR, str(exc)
        except Exception as exc:
            logger.exception("Reminder firing for %s raised unexpectedly.", self.channel_id)
            outcome, detail = ReminderOutcome.ERROR, str(exc)

        self.firings += 1
        self.last_outcome = outcome

        level = logging.WARNING if outcome == ReminderOutcome.ERROR else logging.INFO
        logger.log(
            level,
            "Reminder %s for %s (status=%s): %s",
            outcome.value,
            self.channel_id,
            policy.status.value,
            detail,
        )

        await self._scheduler._emit(ReminderEvent(
            channel_id=self.channel_id,
            status=policy.status.value,
            outcome=outcome,
            message=detail,
            at=now,
        ))
        return outcome

    async def _evaluate(self, policy: ReminderPolicy, now: datetime) -> tuple[ReminderOutcome, str]:
        scheduler = self._scheduler

        try:
            incident = await scheduler.store.get(self.channel_id)
        except NotFoundError:
            await scheduler._release(self)
            return ReminderOutcome.GONE, "incident no longer exists"
        except Exception as exc:
            raise SchedulingError(f"Could not load incident '{self.channel_id}': {exc}") from exc

        if incident.is_terminal:
            await scheduler._release(self)
            return ReminderOutcome.STOPPED, f"incident is {incident.status.value}"

        if incident.status != policy.status:
            await scheduler._replace(self, incident)
            return (
                ReminderOutcome.STATUS_CHANGED,
                f"{policy.status.value} → {incident.status.value}, job replaced",
            )

        if incident.snoozed_until is not None and incident.snoozed_until > now:
            return ReminderOutcome.SNOOZED, f"snoozed until {incident.snoozed_until.isoformat()}"

        suppressed = policy.suppress(incident, now)
        if suppressed is not None:
            return suppressed, "within SLA grace window"

        try:
            last_pin = await scheduler.fanout.client.last_pin_timestamp(self.channel_id)
        except Exception as exc:
            return ReminderOutcome.ERROR, f"could not read pins: {exc}"

        if is_fresher_than(last_pin, now, policy.interval):
            return ReminderOutcome.FRESH_PIN, f"status pinned at {last_pin.isoformat()}"

        result = await scheduler.fanout.deliver(policy.notice, [Destination.primary(self.channel_id, pin=False)])
        if not result.ok:
            return ReminderOutcome.ERROR, result.failures[0].error or "delivery failed"

        return ReminderOutcome.SENT, f"next check in {format_duration(policy.interval.total_seconds())}"

    def info(self) -> ReminderJobInfo:
        return ReminderJobInfo(
            channel_id=self.channel_id,
            status=self.status.value,
            interval_seconds=int(self.interval.total_seconds()),
            running=self.running,
            firings=self.firings,
            last_outcome=self.last_outcome,
            next_fire_at=self.next_fire_at,
        )


class ReminderScheduler:
    """Owns the registry of reminder jobs and every operation that changes it.

    The scheduler is the explicit context object passed to whoever creates
    jobs (the engine, start-up code, the jobs themselves) — there is no
    module-level job list.

    Attributes:
        store: Source of truth re-read on every firing.
        fanout: Used to post reminders and to read the channel's last pin.
        settings: Intervals, templates and the SLA grace window.
        clock: Time source for firing decisions.
        arm_timers: When False, jobs are registered but their loops are not
            started. Tests use this to drive firings by hand.
    """

    def __init__(
        self,
        store: IncidentStore,
        fanout: NotificationFanOut,
        settings: Settings,
        clock: Clock = utc_now,
        event_queue: asyncio.Queue | None = None,
        arm_timers: bool = True,
    ) -> None:
        self.store = store
        self.fanout = fanout
        self.settings = settings
        self.clock = clock
        self.arm_timers = arm_timers
        self._event_queue = event_queue
        self._registry = JobRegistry()
        self._policies = build_policies(settings)

    def policy_for(self, status: IncidentStatus) -> ReminderPolicy:
        """Return the policy for an active status.

        Raises:
            ValueError: For terminal statuses — they never have a job.
        """
        try:
            return self._policies[status]
        except KeyError:
            raise ValueError(f"No reminder policy for status '{status.value}'.") from None

    async def start_all(self) -> int:
        """Create one job per active incident. Called once at process start.

        A store failure is logged and leaves the scheduler empty but usable;
        incidents opened afterwards still get jobs.

        Returns:
            Number of jobs started.
        """
        try:
            incidents = await self.store.list_active()
        except Exception as exc:
            logger.error("Could not list active incidents at start-up: %s", exc)
            return 0

        started = 0
        for incident in incidents:
            if await self.schedule(incident) is not None:
                started += 1

        logger.info("Reminder scheduler started %d job(s).", started)
        return started

    async def schedule(self, incident: Incident) -> ReminderJob | None:
        """Register (or replace) the job for an incident.

        Terminal incidents get no job; any existing one is cancelled.

        Returns:
            The new job, or None for terminal incidents.
        """
        if incident.is_terminal:
            await self.cancel(incident.channel_id)
            return None

        job = ReminderJob(self, incident.channel_id, self.policy_for(incident.status))
        previous = await self._registry.put(job)
        if previous is not None:
            previous.stop()

        await self._start(job)
        return job

    async def retarget(self, incident: Incident) -> ReminderJob | None:
        """Make the incident's job follow a non-terminal status change.

        A live job keeps its current wait and only changes policy. Without a
        live job a fresh one is scheduled.
        """
        if incident.is_terminal:
            await self.cancel(incident.channel_id)
            return None

        job = self._registry.get(incident.channel_id)
        if job is None or not job.running:
            return await self.schedule(incident)

        if job.status != incident.status:
            job.retarget(self.policy_for(incident.status))
        return job

    async def cancel(self, channel_id: str) -> bool:
        """Stop and forget the job for channel_id.

        Returns:
            True if a job was registered.
        """
        job = await self._registry.pop(channel_id)
        if job is None:
            return False
        job.stop()
        logger.info("Reminder for %s cancelled.", channel_id)
        return True

    async def stop_all(self) -> None:
        """Stop every job and wait for in-flight firings to finish."""
        jobs = await self._registry.drain()
        for job in jobs:
            job.stop()
        await asyncio.gather(*(job.wait_stopped() for job in jobs))
        logger.info("Reminder scheduler stopped %d job(s).", len(jobs))

    def get(self, channel_id: str) -> ReminderJob | None:
        return self._registry.get(channel_id)

    def jobs(self) -> list[ReminderJob]:
        return self._registry.snapshot()

    async def _replace(self, job: ReminderJob, incident: Incident) -> None:
        """Replace `job` with one for the incident's new status.

        Only the job currently registered may replace itself, so two firings
        racing on the same incident can never leave two live jobs behind.
        """
        job.stop()
        replacement = ReminderJob(self, job.channel_id, self.policy_for(incident.status))
        if await self._registry.swap(job, replacement):
            await self._start(replacement)

    async def _start(self, job: ReminderJob) -> None:
        if self.arm_timers:
            job.arm()

        await self._emit(ReminderEvent(
            channel_id=job.channel_id,
            status=job.status.value,
            outcome=ReminderOutcome.ARMED,
            message=f"every {format_duration(job.interval.total_seconds())}",
            at=self.clock(),
        ))

    async def _release(self, job: ReminderJob) -> None:
        job.stop()
        await self._registry.remove_if(job.channel_id, job)

    async def _emit(self, event: ReminderEvent) -> None:
        if self._event_queue is not None:
            await self._event_queue.put(event)

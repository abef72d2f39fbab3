"""State transition engine.

TransitionEngine is the only code that changes an incident's status. Every
operation follows the same order:

    read current record
        → check the edge against the transition table
        → conditional write (expected_statuses), the commit point
        → fan-out to the operation's destinations
        → scheduler step (schedule / retarget / cancel)
        → raise DeliveryError if the primary destination failed

A NotFoundError or PersistenceError aborts before any notification or
scheduler step. Anything after the write cannot undo it: callers receiving
DeliveryError know the transition is committed.
"""

import asyncio
import logging
from datetime import datetime

from pydantic import ValidationError as SchemaValidationError

from core.config import Settings
from core.errors import DeliveryError, InvalidTransitionError, ValidationError
from core.fanout import NotificationFanOut
from core.notices import (
    cancel_notice,
    close_notice,
    close_private_notice,
    error_notice,
    open_notice,
    resolve_notice,
)
from core.reminder import ReminderScheduler
from core.store import DEFAULT_LIST_LIMIT, IncidentStore
from schemas.incident import ACTIVE_STATUSES, Incident, IncidentDraft, IncidentEdit, IncidentStatus
from schemas.notice import Destination, FanOutResult, Notice
from utils.timestamps import Clock, TimestampParseError, ensure_utc, parse_date_layout, utc_now

logger = logging.getLogger(__name__)

# action → statuses the action may start from. Anything else is refused.
TRANSITIONS: dict[str, frozenset[IncidentStatus]] = {
    "resolve": frozenset({IncidentStatus.OPEN}),
    "cancel": frozenset({IncidentStatus.OPEN}),
    "close": frozenset({IncidentStatus.OPEN, IncidentStatus.RESOLVED}),
    "snooze": ACTIVE_STATUSES,
}

_ROUTING_FIELDS = ("commander_id", "commander_email")


class TransitionEngine:
    """Validates and applies incident transitions.

    Holds no incident state between calls: every operation re-reads the
    store, so two engines (or an engine and a reminder firing) working on
    the same incident only ever disagree for the duration of one call.

    Attributes:
        store: Incident persistence.
        fanout: Delivers transition cards.
        scheduler: Keeps one reminder job per active incident.
        settings: Product channel, notify flags and support team.
        clock: Time source for identification_ts, end_ts and snooze checks.
    """

    def __init__(
        self,
        store: IncidentStore,
        fanout: NotificationFanOut,
        scheduler: ReminderScheduler,
        settings: Settings,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.fanout = fanout
        self.scheduler = scheduler
        self.settings = settings
        self.clock = clock

    async def open(self, draft: IncidentDraft | dict) -> Incident:
        """Create an incident in status open and start its reminders.

        Args:
            draft: Validated draft, or a raw mapping to validate.

        Returns:
            The persisted incident.

        Raises:
            ValidationError: Title, channel or description missing.
            PersistenceError: The channel already has an incident.
            DeliveryError: The card could not be posted or pinned in the
                incident channel. The incident exists and has a job.
        """
        if not isinstance(draft, IncidentDraft):
            try:
                draft = IncidentDraft.model_validate(draft)
            except SchemaValidationError as exc:
                raise ValidationError(f"Invalid incident draft: {exc}") from exc

        fields = draft.model_dump(exclude={"description"})
        fields.update(
            description_started=draft.description,
            status=IncidentStatus.OPEN,
            identification_ts=self.clock(),
        )
        incident = await self.store.insert(fields)
        logger.info("Incident #%d opened in %s: %s", incident.id, incident.channel_id, incident.title)

        destinations = [Destination.primary(incident.channel_id)]
        destinations += self._product(self.settings.notify_on_open, pin=True)
        result = await self.fanout.deliver(open_notice(incident, self.settings.support_team), destinations)

        await self.scheduler.schedule(incident)
        self._check_primary(incident, result)
        return incident

    async def cancel(self, channel_id: str, reason: str, requester: str | None = None) -> Incident:
        """Cancel an open incident and stop its reminders.

        Raises:
            NotFoundError, InvalidTransitionError, ValidationError,
            PersistenceError, DeliveryError.
        """
        reason = _required("reason", reason)
        await self._check_edge(channel_id, "cancel")

        incident = await self.store.update(
            channel_id,
            {"status": IncidentStatus.CANCELED, "description_cancelled": reason},
            expected_statuses=TRANSITIONS["cancel"],
        )
        logger.info("Incident #%d in %s canceled by %s.", incident.id, channel_id, requester or "unknown")

        destinations = [Destination.primary(channel_id)]
        destinations += self._product(self.settings.notify_on_cancel)
        result = await self.fanout.deliver(cancel_notice(incident), destinations)

        await self.scheduler.cancel(channel_id)
        self._check_primary(incident, result)
        return incident

    async def resolve(self, channel_id: str, description: str, requester: str | None = None) -> Incident:
        """Resolve an open incident.

        The reminder job keeps running on the resolved interval; its current
        wait is not restarted.

        Raises:
            NotFoundError, InvalidTransitionError, ValidationError,
            PersistenceError, DeliveryError.
        """
        description = _required("description", description)
        await self._check_edge(channel_id, "resolve")

        incident = await self.store.update(
            channel_id,
            {
                "status": IncidentStatus.RESOLVED,
                "end_ts": self.clock(),
                "description_resolved": description,
            },
            expected_statuses=TRANSITIONS["resolve"],
        )
        logger.info("Incident #%d in %s resolved.", incident.id, channel_id)

        destinations = [Destination.primary(channel_id)]
        destinations += self._product(self.settings.notify_on_resolve)
        if requester:
            destinations.append(Destination.auxiliary(requester))
        result = await self.fanout.deliver(resolve_notice(incident), destinations)

        await self.scheduler.retarget(incident)
        self._check_primary(incident, result)
        return incident

    async def close(
        self,
        channel_id: str,
        root_cause: str,
        severity: int | None = None,
        start_ts: datetime | str | None = None,
        requester: str | None = None,
    ) -> Incident:
        """Close an open or resolved incident and stop its reminders.

        Args:
            channel_id: Incident channel.
            root_cause: Required narrative.
            severity: Optional correction of the severity level (0–3).
            start_ts: Optional correction of when impact began, either a
                datetime or text in DATE_LAYOUT.
            requester: User who asked; receives a private confirmation.

        Raises:
            NotFoundError, InvalidTransitionError, ValidationError,
            PersistenceError, DeliveryError.
        """
        root_cause = _required("root_cause", root_cause)
        fields: dict = {"status": IncidentStatus.CLOSED, "root_cause": root_cause}

        if severity is not None:
            if not 0 <= severity <= 3:
                raise ValidationError(f"severity must be between 0 and 3, got {severity}.")
            fields["severity_level"] = severity

        if start_ts is not None:
            fields["start_ts"] = _coerce_start_ts(start_ts)

        await self._check_edge(channel_id, "close")
        incident = await self.store.update(channel_id, fields, expected_statuses=TRANSITIONS["close"])
        logger.info("Incident #%d in %s closed.", incident.id, channel_id)

        destinations = [Destination.primary(channel_id)]
        destinations += self._product(self.settings.notify_on_close)
        private = [Destination.auxiliary(requester)] if requester else []

        # The requester gets a different notice, so it is a second fan-out
        # dispatched alongside the first. Both settle before the scheduler step.
        async with asyncio.TaskGroup() as tg:
            public_task = tg.create_task(self.fanout.deliver(close_notice(incident), destinations))
            private_task = tg.create_task(self.fanout.deliver(close_private_notice(incident), private))
        result = FanOutResult(deliveries=public_task.result().deliveries + private_task.result().deliveries)

        await self.scheduler.cancel(channel_id)
        self._check_primary(incident, result)
        return incident

    async def edit(self, channel_id: str, fields: IncidentEdit | dict) -> Incident:
        """Apply narrative and metadata changes. Status is never touched.

        Allowed in every status, terminal ones included.

        Raises:
            NotFoundError, ValidationError (unknown or status field),
            PersistenceError.
        """
        if not isinstance(fields, IncidentEdit):
            try:
                fields = IncidentEdit.model_validate(fields)
            except SchemaValidationError as exc:
                raise ValidationError(f"Invalid edit: {exc}") from exc

        changes = fields.changes()
        current = await self.store.get(channel_id)
        if not changes:
            return current

        if "start_ts" in changes and changes["start_ts"] is not None:
            changes["start_ts"] = ensure_utc(changes["start_ts"])

        incident = await self.store.update(channel_id, changes)

        changed_routing = [f for f in _ROUTING_FIELDS if getattr(current, f) != getattr(incident, f)]
        if changed_routing:
            logger.info(
                "Incident #%d routing fields changed: %s",
                incident.id,
                ", ".join(changed_routing),
            )
        return incident

    async def snooze(self, channel_id: str, until: datetime | None) -> Incident:
        """Suppress reminders until `until`, or lift the snooze with None.

        Raises:
            NotFoundError, InvalidTransitionError (terminal incident),
            ValidationError (`until` not in the future), PersistenceError.
        """
        if until is not None:
            until = ensure_utc(until)
            if until <= self.clock():
                raise ValidationError("snoozed_until must be in the future.")

        await self._check_edge(channel_id, "snooze")
        incident = await self.store.update(
            channel_id, {"snoozed_until": until}, expected_statuses=TRANSITIONS["snooze"]
        )
        if until is None:
            logger.info("Incident #%d reminders unsnoozed.", incident.id)
        else:
            logger.info("Incident #%d reminders snoozed until %s.", incident.id, until.isoformat())
        return incident

    async def get(self, channel_id: str) -> Incident:
        return await self.store.get(channel_id)

    async def list_active(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Incident]:
        return await self.store.list_active(limit)

    async def report_failure(self, requester: str | None, channel_id: str, error: Exception) -> FanOutResult | None:
        """Tell the requester their transition did not go through.

        Refused transitions (wrong current status) are sent as warnings,
        everything else as errors. A failure to deliver this notice is only
        logged.
        """
        if not requester:
            logger.info("Failure on %s with no requester to notify: %s", channel_id, error)
            return None

        notice: Notice = error_notice(str(error), warning=isinstance(error, InvalidTransitionError))
        result = await self.fanout.deliver(notice, [Destination.auxiliary(requester)])
        if not result.ok:
            logger.error("Could not report failure on %s to %s.", channel_id, requester)
        return result

    async def _check_edge(self, channel_id: str, action: str) -> Incident:
        current = await self.store.get(channel_id)
        if current.status not in TRANSITIONS[action]:
            raise InvalidTransitionError(channel_id, current.status, action)
        return current

    def _product(self, enabled: bool, pin: bool = False) -> list[Destination]:
        if not enabled or not self.settings.product_channel_id:
            return []
        return [Destination.auxiliary(self.settings.product_channel_id, pin=pin)]

    def _check_primary(self, incident: Incident, result: FanOutResult) -> None:
        if result.primary_failures:
            raise DeliveryError(incident, result.failures)


def _required(name: str, value: str | None) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{name} is required.")
    return value


def _coerce_start_ts(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return parse_date_layout(value)
    except TimestampParseError as exc:
        raise ValidationError(str(exc)) from exc

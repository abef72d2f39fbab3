"""Reminder event schema.

Events are emitted by reminder jobs after every firing so the display layer
can render live per-incident panels. The scheduler works correctly whether
or not anything is listening to these events.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class ReminderOutcome(str, Enum):
    """What a single reminder firing decided.

    Values:
        ARMED: Job was created and its timer is running.
        SENT: A reminder notice was posted to the incident channel.
        SNOOZED: Suppressed, snoozed_until is still in the future.
        SLA_GRACE: Suppressed, incident resolved too recently.
        FRESH_PIN: Suppressed, a status update was pinned within the interval.
        STATUS_CHANGED: Incident moved to another active status; this job
            stopped and a replacement was scheduled.
        STOPPED: Incident reached a terminal status; job stopped.
        GONE: Incident no longer exists in the store; job stopped.
        ERROR: Store or channel failure; no-op for this cycle.
    """

    ARMED = "armed"
    SENT = "sent"
    SNOOZED = "snoozed"
    SLA_GRACE = "sla_grace"
    FRESH_PIN = "fresh_pin"
    STATUS_CHANGED = "status_changed"
    STOPPED = "stopped"
    GONE = "gone"
    ERROR = "error"


class ReminderEvent(BaseModel):
    """A single reminder-job event.

    Attributes:
        channel_id: Incident the job belongs to. Maps to a panel in the
            live display.
        status: Incident status the job was armed with when it fired.
        outcome: What the firing decided.
        message: Human-readable detail ("next check in 2h").
        at: Clock time of the firing.
    """

    channel_id: str
    status: str
    outcome: ReminderOutcome
    message: str
    at: datetime


class ReminderJobInfo(BaseModel):
    """Read-only view of one live reminder job, exposed by the API."""

    channel_id: str
    status: str
    interval_seconds: int
    running: bool
    firings: int
    last_outcome: ReminderOutcome | None = None
    next_fire_at: datetime | None = None

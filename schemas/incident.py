"""Incident schemas.

Defines the incident record that the store persists and the engine mutates,
plus the two inputs that enter the system from a human action: the draft
used to open an incident and the partial edit applied to an existing one.

Status is a closed set. Which edges between statuses are legal is decided by
the TransitionEngine, not here — these models only describe shape.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class IncidentStatus(str, Enum):
    """Lifecycle stages of an incident.

    Extends str so values serialize to plain strings ("open", "closed")
    in API responses and log lines.

    Values:
        OPEN: Incident is ongoing. Reminders fire on the open interval.
        RESOLVED: Impact is over but the incident is not yet closed.
            Reminders fire on the (longer) resolved interval once the SLA
            grace window has elapsed.
        CLOSED: Root cause recorded. Terminal.
        CANCELED: Opened by mistake or not an incident. Terminal.
    """

    OPEN = "open"
    RESOLVED = "resolved"
    CLOSED = "closed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({IncidentStatus.CLOSED, IncidentStatus.CANCELED})
ACTIVE_STATUSES = frozenset({IncidentStatus.OPEN, IncidentStatus.RESOLVED})


class Incident(BaseModel):
    """A persisted incident record.

    The store is the only source of truth. The engine and every reminder
    firing re-read this record rather than holding a copy between steps, so
    any instance in memory is a snapshot that may already be stale.

    Attributes:
        id: Numeric identifier assigned by the store on insert.
        channel_id: Chat channel the incident lives in. One channel per
            incident, never changes after creation. Used as the lookup key
            everywhere.
        status: Current lifecycle stage. Exactly one at any time.
        identification_ts: When the incident was opened.
        start_ts: When the impact actually began. Optional; usually filled
            in on edit or close once it is known.
        end_ts: When the incident was resolved.
        snoozed_until: While in the future, reminders are suppressed.
        updated_at: Stamped by the store on every write.
        description_started / description_resolved / description_cancelled:
            Free text captured at open, resolve and cancel respectively.
        root_cause: Captured at close, editable afterwards.
    """

    id: int
    channel_id: str
    channel_name: str = ""
    title: str
    product: str = ""
    commander_id: str = ""
    commander_email: str = ""
    author_id: str = ""
    severity_level: int | None = None
    meeting_url: str = ""
    post_mortem_url: str = ""

    status: IncidentStatus

    description_started: str = ""
    description_resolved: str = ""
    description_cancelled: str = ""
    root_cause: str = ""

    identification_ts: datetime
    start_ts: datetime | None = None
    end_ts: datetime | None = None
    snoozed_until: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_active(self) -> bool:
        return self.status.is_active


class IncidentDraft(BaseModel):
    """Payload for opening a new incident.

    Title, channel and description are required. Everything else can be
    filled in later through an edit.
    """

    title: str = Field(min_length=1, max_length=100)
    channel_id: str = Field(min_length=1)
    description: str = Field(min_length=1, max_length=500)
    channel_name: str = ""
    product: str = ""
    commander_id: str = ""
    commander_email: str = ""
    author_id: str = ""
    severity_level: int | None = Field(default=None, ge=0, le=3)
    meeting_url: str = ""

    @field_validator("title", "channel_id", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class IncidentEdit(BaseModel):
    """Partial update of an incident's narrative and metadata.

    Only fields explicitly set are applied (model_dump(exclude_unset=True)).
    Status is deliberately absent and unknown keys are rejected, so an edit
    can never be used to move an incident between lifecycle stages.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=100)
    product: str | None = None
    commander_id: str | None = None
    commander_email: str | None = None
    severity_level: int | None = Field(default=None, ge=0, le=3)
    meeting_url: str | None = None
    post_mortem_url: str | None = None
    start_ts: datetime | None = None
    root_cause: str | None = Field(default=None, max_length=500)
    description_started: str | None = Field(default=None, max_length=500)

    @field_validator(
        "title",
        "product",
        "commander_id",
        "commander_email",
        "meeting_url",
        "post_mortem_url",
        "root_cause",
        "description_started",
    )
    @classmethod
    def _not_null(cls, value: str | None) -> str:
        # Only severity_level and start_ts can be cleared; text fields take "".
        if value is None:
            raise ValueError("cannot be null")
        return value

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)

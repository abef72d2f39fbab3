"""Runtime configuration.

Settings are read once from the environment (and a local .env file, loaded
with python-dotenv) into a validated pydantic model. Everything downstream
receives a Settings instance explicitly — nothing reads os.environ after
startup.

Environment variables (all optional):
    WARDEN_REMINDER_OPEN_SECONDS       Reminder interval for open incidents.
    WARDEN_REMINDER_RESOLVED_SECONDS   Reminder interval for resolved incidents.
    WARDEN_SLA_HOURS_TO_CLOSE          Grace window after resolve, in hours.
    WARDEN_REMINDER_OPEN_MESSAGE       Reminder text for open incidents.
    WARDEN_REMINDER_RESOLVED_MESSAGE   Reminder text for resolved incidents.
    WARDEN_NOTIFY_ON_OPEN / _RESOLVE / _CLOSE / _CANCEL
                                       Copy transition cards to the product channel.
    WARDEN_PRODUCT_CHANNEL_ID          Shared product channel. Empty disables it.
    WARDEN_SUPPORT_TEAM                Team mentioned on open cards.
    WARDEN_SLACK_TOKEN                 Bot token. Unset means in-memory client.
    WARDEN_ALLOWED_ORIGINS             Comma-separated CORS origins for the API.
"""

import os
from collections.abc import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as SchemaValidationError, model_validator

from core.errors import ValidationError

ENV_PREFIX = "WARDEN_"

DEFAULT_OPEN_MESSAGE = (
    "Incident Status: Open - Update the status of this incident, "
    "just pin a message with status on the channel."
)
DEFAULT_RESOLVED_MESSAGE = (
    "Incident Status: Resolved - Update the status of this incident, "
    "just pin a message with status on the channel."
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class Settings(BaseModel):
    """Validated configuration for the engine, scheduler and API.

    Attributes:
        reminder_open_seconds: Recurrence of reminder checks while open.
        reminder_resolved_seconds: Recurrence while resolved. Must not be
            shorter than the open interval.
        sla_hours_to_close: Whole hours after end_ts during which a resolved
            incident gets no reminders.
        reminder_open_message / reminder_resolved_message: Reminder text.
        notify_on_*: Whether that transition's card is also sent to the
            product channel.
        product_channel_id: Shared product channel, "" to disable.
        support_team: Team handle mentioned on open cards.
        slack_token: Bot token for the Slack client, None for in-memory.
        allowed_origins: CORS origins for the JSON API.
    """

    reminder_open_seconds: int = Field(default=7200, gt=0)
    reminder_resolved_seconds: int = Field(default=86400, gt=0)
    sla_hours_to_close: int = Field(default=168, ge=0)
    reminder_open_message: str = Field(default=DEFAULT_OPEN_MESSAGE, min_length=1)
    reminder_resolved_message: str = Field(default=DEFAULT_RESOLVED_MESSAGE, min_length=1)
    notify_on_open: bool = True
    notify_on_resolve: bool = True
    notify_on_close: bool = True
    notify_on_cancel: bool = True
    product_channel_id: str = ""
    support_team: str = ""
    slack_token: str | None = None
    allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @model_validator(mode="after")
    def _resolved_not_shorter_than_open(self) -> "Settings":
        if self.reminder_resolved_seconds < self.reminder_open_seconds:
            raise ValueError(
                "reminder_resolved_seconds must be >= reminder_open_seconds "
                f"({self.reminder_resolved_seconds} < {self.reminder_open_seconds})"
            )
        return self


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from the environment.

    Loads .env first (without overriding variables already set), then reads
    every WARDEN_* variable. Passing `environ` skips .env and is how tests
    supply configuration.

    Raises:
        ValidationError: If a variable has an invalid value. Fails at
            startup rather than at the first reminder.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    raw: dict = {}
    for name in Settings.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in environ:
            raw[name] = environ[key]

    try:
        if "allowed_origins" in raw:
            raw["allowed_origins"] = [o.strip() for o in raw["allowed_origins"].split(",") if o.strip()]
        for name in ("notify_on_open", "notify_on_resolve", "notify_on_close", "notify_on_cancel"):
            if name in raw:
                raw[name] = _parse_bool(name, raw[name])
        if raw.get("slack_token") == "":
            raw["slack_token"] = None
        return Settings.model_validate(raw)
    except (SchemaValidationError, ValueError) as exc:
        raise ValidationError(f"Invalid configuration: {exc}") from exc


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{ENV_PREFIX}{name.upper()} must be a boolean, got '{value}'")

"""Error taxonomy for incident transitions, notifications and reminders.

Every error the engine surfaces derives from IncidentError, so callers (the
API layer, the demo CLI) can catch one base class and map subclasses to a
user-visible failure. None of these are retried internally.
"""

from schemas.incident import Incident, IncidentStatus
from schemas.notice import DeliveryResult


class IncidentError(Exception):
    """Base class for all incident lifecycle errors."""


class NotFoundError(IncidentError):
    """No incident is bound to the given channel reference."""

    def __init__(self, channel_id: str):
        super().__init__(f"No incident found for channel '{channel_id}'.")
        self.channel_id = channel_id


class InvalidTransitionError(IncidentError):
    """A transition was attempted from a status that does not allow it.

    Carries the current status verbatim so the caller can tell the requester
    why nothing happened (e.g. "already `closed`").
    """

    def __init__(self, channel_id: str, current: IncidentStatus, attempted: str):
        super().__init__(
            f"Cannot {attempted} incident '{channel_id}': it is already "
            f"`{current.value}`."
        )
        self.channel_id = channel_id
        self.current = current
        self.attempted = attempted


class ValidationError(IncidentError):
    """Input to a transition is missing required fields or is malformed."""


class PersistenceError(IncidentError):
    """A store write failed or affected zero rows.

    Fatal to the transition: no notification or scheduler step follows.
    """


class SchedulingError(IncidentError):
    """Incident state could not be read during a reminder firing."""


class ChannelClientError(IncidentError):
    """A notification client call (post, pin, list pins) failed."""


class DeliveryError(IncidentError):
    """The primary destination of a fan-out failed after a committed transition.

    The state change is already persisted when this is raised. Callers must
    report the notification failure distinctly from a persistence failure.

    Attributes:
        incident: The committed post-transition record.
        failures: The failed deliveries (primary and auxiliary).
    """

    def __init__(self, incident: Incident, failures: list[DeliveryResult]):
        targets = ", ".join(f.destination.target for f in failures)
        super().__init__(
            f"Incident '{incident.channel_id}' is now `{incident.status.value}` "
            f"but notification failed for: {targets}."
        )
        self.incident = incident
        self.failures = failures

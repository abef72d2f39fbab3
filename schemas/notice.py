"""Notice and delivery schemas.

A Notice is the rendered, channel-agnostic content of one notification.
Destinations say where it goes. DeliveryResult and FanOutResult are what the
NotificationFanOut hands back to the caller once every destination has
settled.
"""

from enum import Enum

from pydantic import BaseModel, Field


class NoticeField(BaseModel):
    """One labelled value inside a notice body (e.g. "Severity": "SEV1 ...")."""

    title: str
    value: str


class Notice(BaseModel):
    """Rendered notification content.

    Channel clients decide how to lay this out on their platform. The
    engine and scheduler never look inside a notice after rendering it.

    Attributes:
        text: Headline / fallback text. Always present so that clients with
            no rich layout still have something to show.
        body: Optional longer lines shown under the headline.
        fields: Optional labelled values.
        color: Optional accent color hint ("#FE4D4D").
    """

    text: str
    body: list[str] = Field(default_factory=list)
    fields: list[NoticeField] = Field(default_factory=list)
    color: str | None = None


class DestinationKind(str, Enum):
    """Whether a destination's failure fails the whole operation.

    Values:
        PRIMARY: The incident's own channel. A failed delivery here is
            escalated to the caller of the transition.
        AUXILIARY: Shared product channel or a direct message. Failures are
            logged and otherwise ignored.
    """

    PRIMARY = "primary"
    AUXILIARY = "auxiliary"


class Destination(BaseModel):
    """A single delivery target for a fan-out call.

    Attributes:
        target: Channel or user reference understood by the channel client.
        kind: PRIMARY or AUXILIARY.
        pin: Whether to pin the message after posting. Reminders and
            auxiliary copies are posted without pinning so they never count
            as a status update.
    """

    target: str
    kind: DestinationKind = DestinationKind.AUXILIARY
    pin: bool = True

    @classmethod
    def primary(cls, target: str, pin: bool = True) -> "Destination":
        return cls(target=target, kind=DestinationKind.PRIMARY, pin=pin)

    @classmethod
    def auxiliary(cls, target: str, pin: bool = False) -> "Destination":
        return cls(target=target, kind=DestinationKind.AUXILIARY, pin=pin)


class MessageRef(BaseModel):
    """Reference to a posted message, returned by NotificationClient.post()."""

    channel: str
    ts: str


class DeliveryResult(BaseModel):
    """Outcome of delivering one notice to one destination.

    A delivery is successful only if the post succeeded and, when requested,
    the pin succeeded too. A failed pin leaves `message_ref` set — the post
    is not retracted.

    Attributes:
        destination: Where the notice was sent.
        message_ref: Reference of the posted message, None if posting failed.
        pinned: True if the message was pinned.
        error: Failure description, None on success.
        elapsed_ms: Wall-clock time of this delivery, recorded by the fan-out.
    """

    destination: Destination
    message_ref: MessageRef | None = None
    pinned: bool = False
    error: str | None = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class FanOutResult(BaseModel):
    """All deliveries of one fan-out call, in the order destinations were given."""

    deliveries: list[DeliveryResult]

    @property
    def ok(self) -> bool:
        return all(d.ok for d in self.deliveries)

    @property
    def failures(self) -> list[DeliveryResult]:
        return [d for d in self.deliveries if not d.ok]

    @property
    def primary_failures(self) -> list[DeliveryResult]:
        return [d for d in self.failures if d.destination.kind == DestinationKind.PRIMARY]

    @property
    def auxiliary_failures(self) -> list[DeliveryResult]:
        return [d for d in self.failures if d.destination.kind == DestinationKind.AUXILIARY]

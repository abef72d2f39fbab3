"""NotificationClient abstract base class.

Defines the three chat primitives the fan-out and the reminder scheduler
rely on. The rest of the system depends only on this interface — never on a
concrete chat platform. Swapping Slack for another platform means writing a
new class that satisfies this interface, with zero changes elsewhere.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from schemas.notice import MessageRef, Notice


class NotificationClient(ABC):
    """Abstract base class for chat platform clients.

    The NotificationFanOut receives a client at construction time and calls
    post() then pin() per destination. The ReminderScheduler calls
    last_pin_timestamp() to decide whether a status update is fresh enough.

    Implementations raise ChannelClientError on platform failures so callers
    can tell a delivery failure from a programming error.
    """

    @abstractmethod
    async def post(self, target: str, notice: Notice) -> MessageRef:
        """Post a notice to a channel or user and return its reference.

        Args:
            target: Channel ID, or user ID for a direct message.
            notice: Rendered content. The client decides the layout.

        Returns:
            Reference to the posted message, used for pinning.
        """
        ...

    @abstractmethod
    async def pin(self, target: str, ref: MessageRef) -> None:
        """Pin a previously posted message in target."""
        ...

    @abstractmethod
    async def last_pin_timestamp(self, target: str) -> datetime | None:
        """Return when the most recent pinned message in target was posted.

        Returns:
            Aware UTC datetime of the newest pinned message, or None if the
            channel has no pins.
        """
        ...

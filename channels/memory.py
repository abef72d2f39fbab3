"""In-memory notification client for tests and the demo CLI.

Records every post and pin so callers can assert on what was sent. Failures
can be injected per target to exercise fan-out failure handling, and an
optional delay per target makes concurrency visible.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from channels.base import NotificationClient
from core.errors import ChannelClientError
from schemas.notice import MessageRef, Notice
from utils.timestamps import Clock, format_message_ts, parse_message_ts, utc_now


@dataclass
class PostedMessage:
    target: str
    notice: Notice
    ref: MessageRef
    posted_at: datetime
    pinned: bool = False


@dataclass
class InMemoryNotificationClient(NotificationClient):
    """NotificationClient that keeps messages in lists.

    Attributes:
        clock: Time source used to stamp posts.
        fail_post: Targets whose post() raises ChannelClientError.
        fail_pin: Targets whose pin() raises ChannelClientError.
        fail_pins_lookup: Targets whose last_pin_timestamp() raises.
        delays: target → seconds to sleep inside post().
        messages: Every successful post in order.
    """

    clock: Clock = utc_now
    fail_post: set[str] = field(default_factory=set)
    fail_pin: set[str] = field(default_factory=set)
    fail_pins_lookup: set[str] = field(default_factory=set)
    delays: dict[str, float] = field(default_factory=dict)
    messages: list[PostedMessage] = field(default_factory=list)

    async def post(self, target: str, notice: Notice) -> MessageRef:
        delay = self.delays.get(target)
        if delay:
            await asyncio.sleep(delay)
        if target in self.fail_post:
            raise ChannelClientError(f"channel_not_found: {target}")

        now = self.clock()
        taken = {m.ref.ts for m in self.messages if m.target == target}
        ts = format_message_ts(now)
        bump = 0
        # Two posts within the same microsecond must still get distinct refs.
        while ts in taken:
            bump += 1
            ts = format_message_ts(now + timedelta(microseconds=bump))

        ref = MessageRef(channel=target, ts=ts)
        self.messages.append(PostedMessage(target=target, notice=notice, ref=ref, posted_at=now))
        return ref

    async def pin(self, target: str, ref: MessageRef) -> None:
        if target in self.fail_pin:
            raise ChannelClientError(f"pin failed: {target}")
        for message in self.messages:
            if message.ref == ref:
                message.pinned = True
                return
        raise ChannelClientError(f"message_not_found: {ref.ts}")

    async def last_pin_timestamp(self, target: str) -> datetime | None:
        if target in self.fail_pins_lookup:
            raise ChannelClientError(f"pins.list failed: {target}")
        pinned = [parse_message_ts(m.ref.ts) for m in self.messages if m.target == target and m.pinned]
        return max(pinned) if pinned else None

    def pin_external(self, target: str, at: datetime, text: str = "status update") -> MessageRef:
        """Record a pinned message posted by a human at a given time."""
        ref = MessageRef(channel=target, ts=format_message_ts(at))
        self.messages.append(
            PostedMessage(target=target, notice=Notice(text=text), ref=ref, posted_at=at, pinned=True)
        )
        return ref

    def sent_to(self, target: str) -> list[PostedMessage]:
        return [m for m in self.messages if m.target == target]

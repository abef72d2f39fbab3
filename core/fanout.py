"""Notification fan-out.

NotificationFanOut delivers one rendered notice to several destinations
concurrently and collects the outcome of each. It handles fault isolation
so the engine and the reminder scheduler do not have to.

The key guarantee: the call returns only after every destination has
settled. One destination failing never causes another to be skipped or
cancelled. Each delivery runs in its own task with its own exception
boundary.
"""

import asyncio
import logging
import time

from channels.base import NotificationClient
from schemas.notice import DeliveryResult, Destination, FanOutResult, Notice

logger = logging.getLogger(__name__)


class NotificationFanOut:
    """Posts (and optionally pins) a notice to a list of destinations.

    Uses asyncio.TaskGroup to dispatch all destinations at once. Within a
    destination the order is fixed: post, then pin using the returned
    message reference. Across destinations there is no ordering.

    There is no retry and no overall deadline. A hung delivery hangs the
    caller — destinations are a small fixed set and the client enforces its
    own request timeout.

    Attributes:
        client: The chat client used for every delivery.
    """

    def __init__(self, client: NotificationClient) -> None:
        self.client = client

    async def deliver(self, notice: Notice, destinations: list[Destination]) -> FanOutResult:
        """Deliver notice to every destination and wait for all of them.

        Args:
            notice: Rendered content, identical for every destination.
            destinations: Targets in caller order. The returned deliveries
                follow the same order regardless of completion order.

        Returns:
            FanOutResult with one DeliveryResult per destination. Failures
            are reported, never raised.
        """
        if not destinations:
            return FanOutResult(deliveries=[])

        async with asyncio.TaskGroup() as tg:
            tasks = [
                tg.create_task(
                    self._deliver_safely(notice, destination),
                    name=f"deliver-{destination.target}",
                )
                for destination in destinations
            ]

        result = FanOutResult(deliveries=[t.result() for t in tasks])

        for failure in result.failures:
            logger.warning(
                "Delivery to %s destination '%s' failed: %s",
                failure.destination.kind.value,
                failure.destination.target,
                failure.error,
            )

        return result

    async def _deliver_safely(self, notice: Notice, destination: Destination) -> DeliveryResult:
        """Post then pin to a single destination.

        This method never raises. A failure is recorded on the returned
        DeliveryResult, which is what keeps one destination from propagating
        into the TaskGroup and cancelling the others.
        """
        start = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        try:
            ref = await self.client.post(destination.target, notice)
        except Exception as exc:
            return DeliveryResult(destination=destination, error=f"post failed: {exc}", elapsed_ms=elapsed())

        if not destination.pin:
            return DeliveryResult(destination=destination, message_ref=ref, elapsed_ms=elapsed())

        try:
            await self.client.pin(destination.target, ref)
        except Exception as exc:
            # The post stands; only the pin is reported as failed.
            return DeliveryResult(
                destination=destination,
                message_ref=ref,
                error=f"pin failed: {exc}",
                elapsed_ms=elapsed(),
            )

        return DeliveryResult(destination=destination, message_ref=ref, pinned=True, elapsed_ms=elapsed())

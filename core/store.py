"""Incident store interface and in-memory implementation.

The engine and the reminder scheduler depend only on IncidentStore — never
on a concrete backend. The relational backend lives outside this repository;
InMemoryIncidentStore is what the tests, the demo CLI and the default API
process run against.

Lost on process restart — the scheduler's start_all() rebuilds reminder jobs
from whatever store is plugged in.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable

from core.errors import NotFoundError, PersistenceError
from schemas.incident import ACTIVE_STATUSES, Incident, IncidentStatus
from utils.timestamps import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100


class IncidentStore(ABC):
    """Abstract base class for incident persistence.

    To add a backend, subclass IncidentStore and implement the four methods.
    Implementations raise NotFoundError for unknown channels and
    PersistenceError for writes that fail or match no row.
    """

    @abstractmethod
    async def get(self, channel_id: str) -> Incident:
        """Return the incident bound to channel_id.

        Raises:
            NotFoundError: If no incident uses that channel.
        """
        ...

    @abstractmethod
    async def insert(self, fields: dict) -> Incident:
        """Persist a new incident and return it with its assigned id.

        Raises:
            PersistenceError: If the channel already has an incident.
        """
        ...

    @abstractmethod
    async def update(
        self,
        channel_id: str,
        fields: dict,
        expected_statuses: Iterable[IncidentStatus] | None = None,
    ) -> Incident:
        """Apply fields to the incident and return the updated record.

        When expected_statuses is given the write only happens if the stored
        status is one of them — a conditional write that makes concurrent
        transitions on the same incident fail instead of double-applying.

        Raises:
            PersistenceError: If zero rows were affected.
        """
        ...

    @abstractmethod
    async def list_active(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Incident]:
        """Return up to `limit` incidents whose status is open or resolved."""
        ...


class InMemoryIncidentStore(IncidentStore):
    """Dict-backed IncidentStore guarded by one asyncio.Lock.

    Records are copied on the way in and out, so callers holding an
    Incident never observe later writes — the same semantics a database
    round-trip gives.

    Attributes:
        _incidents: channel_id → Incident.
        _next_id: Next numeric id to assign.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._incidents: dict[str, Incident] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, channel_id: str) -> Incident:
        async with self._lock:
            incident = self._incidents.get(channel_id)
            if incident is None:
                raise NotFoundError(channel_id)
            return incident.model_copy()

    async def insert(self, fields: dict) -> Incident:
        async with self._lock:
            channel_id = fields.get("channel_id", "")
            if channel_id in self._incidents:
                raise PersistenceError(
                    f"Channel '{channel_id}' is already bound to incident "
                    f"#{self._incidents[channel_id].id}."
                )

            incident = Incident.model_validate({
                **fields,
                "id": self._next_id,
                "updated_at": self._clock(),
            })
            self._incidents[channel_id] = incident
            self._next_id += 1

        logger.debug("Inserted incident #%d for channel %s.", incident.id, channel_id)
        return incident.model_copy()

    async def update(
        self,
        channel_id: str,
        fields: dict,
        expected_statuses: Iterable[IncidentStatus] | None = None,
    ) -> Incident:
        async with self._lock:
            current = self._incidents.get(channel_id)
            if current is None:
                raise PersistenceError(f"Rows not affected: no incident for channel '{channel_id}'.")

            if expected_statuses is not None:
                allowed = set(expected_statuses)
                if current.status not in allowed:
                    raise PersistenceError(
                        f"Rows not affected: incident '{channel_id}' is "
                        f"`{current.status.value}`, expected one of "
                        f"{sorted(s.value for s in allowed)}."
                    )

            forbidden = {"id", "channel_id"} & fields.keys()
            if forbidden:
                raise PersistenceError(f"Immutable fields cannot be updated: {sorted(forbidden)}.")

            updated = Incident.model_validate({
                **current.model_dump(),
                **fields,
                "updated_at": self._clock(),
            })
            self._incidents[channel_id] = updated

        return updated.model_copy()

    async def list_active(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Incident]:
        async with self._lock:
            active = [i for i in self._incidents.values() if i.status in ACTIVE_STATUSES]
        active.sort(key=lambda i: i.id)
        return [i.model_copy() for i in active[:limit]]

    def __len__(self) -> int:
        return len(self._incidents)

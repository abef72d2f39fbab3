"""Reminder job registry.

JobRegistry is the scheduler's arena of live reminder jobs, keyed by the
incident's channel. ReminderScheduler delegates every insert, replace and
removal to this class; nothing else holds job references.

The registry enforces one invariant: at most one job per incident. Putting
a job for a channel that already has one hands the old job back to the
caller, who must stop it. A job only ever removes its own entry.
"""

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.reminder import ReminderJob


class JobRegistry:
    """Tracks live reminder jobs and provides lookup by channel.

    Internally backed by a dict keyed on channel_id and guarded by one
    asyncio.Lock, which is the single synchronization point for insert and
    replace. Reads take a snapshot so iteration never races with a job
    replacing itself.

    Attributes:
        _jobs: Internal dict mapping channel_id to the live job.
    """

    def __init__(self) -> None:
        """Initialise an empty registry."""
        self._jobs: dict[str, "ReminderJob"] = {}
        self._lock = asyncio.Lock()

    async def put(self, job: "ReminderJob") -> "ReminderJob | None":
        """Register job as the live job for its channel.

        Args:
            job: The job to register. Its channel_id is the key.

        Returns:
            The job previously registered for that channel, or None. The
            caller is responsible for stopping it.
        """
        async with self._lock:
            previous = self._jobs.get(job.channel_id)
            self._jobs[job.channel_id] = job
            return previous if previous is not job else None

    async def remove_if(self, channel_id: str, job: "ReminderJob") -> bool:
        """Remove the entry for channel_id only if it is still `job`.

        A job that stops itself must not evict the replacement that was
        registered in its place.

        Returns:
            True if the entry was removed.
        """
        async with self._lock:
            if self._jobs.get(channel_id) is job:
                del self._jobs[channel_id]
                return True
            return False

    async def swap(self, old: "ReminderJob", new: "ReminderJob") -> bool:
        """Replace `old` with `new` only if `old` is still registered.

        Two firings of the same job racing to replace it can therefore
        never leave two live jobs behind: the second swap finds the
        replacement in place and does nothing.

        Returns:
            True if `new` was registered.
        """
        async with self._lock:
            if self._jobs.get(old.channel_id) is not old:
                return False
            self._jobs[new.channel_id] = new
            return True

    async def pop(self, channel_id: str) -> "ReminderJob | None":
        """Remove and return whatever job is registered for channel_id."""
        async with self._lock:
            return self._jobs.pop(channel_id, None)

    async def drain(self) -> list["ReminderJob"]:
        """Remove and return every registered job."""
        async with self._lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
            return jobs

    def get(self, channel_id: str) -> "ReminderJob | None":
        """Return the live job for channel_id, or None.

        A missing job is a valid answer — the incident may be terminal or
        the scheduler may not have started yet.
        """
        return self._jobs.get(channel_id)

    def snapshot(self) -> list["ReminderJob"]:
        """Return a copy of all live jobs, safe to iterate while jobs churn."""
        return list(self._jobs.values())

    def __contains__(self, channel_id: str) -> bool:
        return channel_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

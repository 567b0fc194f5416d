"""Abstract durable job store."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from adsync_jobs.models import Job, JobProgress, JobStatus, QueueName, RecurringJob


class JobStore(ABC):
    """
    Persistence primitive the queues are built on.

    A store keeps every job of every queue, answers status counts, and
    hands out waiting jobs one at a time. ``lease_next_job`` must be atomic:
    a job is handed to at most one worker per attempt.
    """

    @abstractmethod
    async def add_job(self, job: Job) -> Job:
        """Persist a new job."""

    @abstractmethod
    async def get_job(self, queue: QueueName, job_id: str) -> Optional[Job]:
        """Get a job by id, or None when it does not exist."""

    @abstractmethod
    async def update_job(self, job: Job) -> bool:
        """
        Overwrite the stored state of a job.

        Returns:
            False when the job no longer exists (it was removed)
        """

    @abstractmethod
    async def update_progress(
        self, queue: QueueName, job_id: str, progress: JobProgress
    ) -> bool:
        """Persist progress. Returns False when the job no longer exists."""

    @abstractmethod
    async def remove_job(self, queue: QueueName, job_id: str) -> bool:
        """Delete a job. Returns False when it did not exist."""

    @abstractmethod
    async def list_jobs(
        self,
        queue: QueueName,
        statuses: Optional[Sequence[JobStatus]] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> List[Job]:
        """List jobs newest first, optionally filtered by status and tenant."""

    @abstractmethod
    async def count_jobs(self, queue: QueueName, status: JobStatus) -> int:
        """Count jobs of a queue in one status."""

    @abstractmethod
    async def promote_delayed_jobs(self, queue: QueueName, now: datetime) -> int:
        """Move delayed jobs whose ``run_at`` has passed back to waiting."""

    @abstractmethod
    async def lease_next_job(self, queue: QueueName, now: datetime) -> Optional[Job]:
        """
        Atomically take the next eligible waiting job.

        Due delayed jobs are promoted first. The job with the lowest
        ``(priority, enqueue order)`` is marked active, its attempts are
        incremented and ``processed_at`` is set.
        """

    @abstractmethod
    async def clean_jobs(
        self, queue: QueueName, status: JobStatus, older_than: datetime
    ) -> int:
        """Delete jobs in ``status`` finished (or created) before ``older_than``."""

    @abstractmethod
    async def trim_finished_jobs(
        self, queue: QueueName, status: JobStatus, keep: int
    ) -> int:
        """Keep only the ``keep`` most recently finished jobs in ``status``."""

    @abstractmethod
    async def set_paused(self, queue: QueueName, paused: bool) -> None:
        """Pause or resume leasing for one queue."""

    @abstractmethod
    async def is_paused(self, queue: QueueName) -> bool:
        """Whether leasing is paused for a queue."""

    @abstractmethod
    async def save_recurring(self, recurring: RecurringJob) -> None:
        """Insert or replace a recurring registration by name."""

    @abstractmethod
    async def remove_recurring(self, name: str) -> bool:
        """Delete a recurring registration. Returns False when it did not exist."""

    @abstractmethod
    async def list_recurring(self) -> List[RecurringJob]:
        """List all recurring registrations."""

    @abstractmethod
    async def claim_recurring(
        self, name: str, due_at: datetime, next_run_at: datetime
    ) -> bool:
        """
        Advance a recurring registration from ``due_at`` to ``next_run_at``.

        Only one caller can claim a given firing: the update applies only
        while the stored next run still equals ``due_at``.

        Returns:
            True when this call claimed the firing
        """

    async def due_recurring(self, now: datetime) -> List[RecurringJob]:
        """Recurring registrations whose next firing is due."""
        return [r for r in await self.list_recurring() if r.next_run_at <= now]

"""Processor base class and the per-execution job context."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from adsync_jobs import context
from adsync_jobs.context import TenantContext
from adsync_jobs.errors import JobCancelledError
from adsync_jobs.models import Job, JobProgress, JobResult, QueueName
from adsync_jobs.storage.base import JobStore

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Persists job progress, never letting it go backwards."""

    def __init__(self, store: JobStore, job: Job):
        self.store = store
        self.job = job
        self._removed = False

    @property
    def value(self) -> int:
        return self.job.progress.percentage

    @property
    def removed(self) -> bool:
        """Whether the store reported the job gone at the last update."""
        return self._removed

    async def report(self, value: float) -> int:
        """
        Report progress.

        Args:
            value: Percentage in [0, 100]; lower than the current value is
                ignored

        Returns:
            The progress now recorded
        """
        value = max(self.value, min(int(value), 100))
        if value == self.value:
            return value

        self.job.progress = JobProgress(
            total=100,
            completed=value,
            failed=self.job.progress.failed,
            percentage=value,
        )
        if not await self.store.update_progress(
            self.job.queue_name, self.job.id, self.job.progress
        ):
            self._removed = True
        return value


class JobContext:
    """What a processor gets for one execution of one job."""

    def __init__(self, job: Job, store: JobStore):
        self.job = job
        self.store = store
        self.progress = ProgressReporter(store, job)
        self.tenant = TenantContext(
            tenant_id=job.tenant_id,
            user_id=job.payload.triggered_by,
        )

    async def is_cancelled(self) -> bool:
        """A job is cancelled once it has been removed from its queue."""
        if self.progress.removed:
            return True
        return await self.store.get_job(self.job.queue_name, self.job.id) is None

    async def check_cancelled(self) -> None:
        if await self.is_cancelled():
            raise JobCancelledError(self.job.id)


class JobProcessor(ABC):
    """
    Consumer logic of one queue.

    Subclasses implement :meth:`handle`. :meth:`process` runs it with the
    job's tenant as the current tenant context and always clears the
    context afterwards.
    """

    queue: Optional[QueueName] = None

    async def process(self, ctx: JobContext) -> JobResult:
        try:
            return await context.run(ctx.tenant, self.handle, ctx)
        finally:
            context.clear()

    @abstractmethod
    async def handle(self, ctx: JobContext) -> JobResult:
        """Execute the job and return its result."""

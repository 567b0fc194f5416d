"""Queue statistics, job inspection and health verdicts."""

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional, Union

from adsync_jobs.config import JobsConfig
from adsync_jobs.errors import UnknownQueueError
from adsync_jobs.models import (
    STORED_STATUSES,
    CleanupResult,
    Dashboard,
    JobStatus,
    JobView,
    QueueHealth,
    QueueName,
    QueueStats,
)
from adsync_jobs.scheduler import JobScheduler
from adsync_jobs.storage.base import JobStore

logger = logging.getLogger(__name__)

QueueRef = Union[QueueName, str]


def _queue(queue: QueueRef) -> QueueName:
    try:
        return QueueName(queue)
    except ValueError as e:
        raise UnknownQueueError(str(queue)) from e


class JobMonitoringService:
    """
    Read-mostly view over every queue.

    Stats are always derived from the store. The only mutations are
    cancel, retry and cleanup, none of which touch payload content.
    """

    def __init__(
        self,
        store: JobStore,
        scheduler: JobScheduler,
        config: Optional[JobsConfig] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.config = config or JobsConfig()

    async def get_queue_stats(self, queue: QueueRef) -> QueueStats:
        queue = _queue(queue)
        counts = await asyncio.gather(
            *(self.store.count_jobs(queue, status) for status in STORED_STATUSES)
        )
        by_status = dict(zip(STORED_STATUSES, counts))
        paused = await self.store.is_paused(queue)
        waiting = by_status[JobStatus.WAITING]

        return QueueStats(
            queue_name=queue,
            waiting=0 if paused else waiting,
            paused=waiting if paused else 0,
            active=by_status[JobStatus.ACTIVE],
            completed=by_status[JobStatus.COMPLETED],
            failed=by_status[JobStatus.FAILED],
            delayed=by_status[JobStatus.DELAYED],
            total=sum(counts),
        )

    async def get_all_queue_stats(self) -> List[QueueStats]:
        return list(
            await asyncio.gather(*(self.get_queue_stats(queue) for queue in QueueName))
        )

    async def get_queue_jobs(
        self,
        queue: QueueRef,
        status: Optional[JobStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[JobView]:
        """
        List jobs of a queue newest first.

        Args:
            queue: Queue name
            status: Only jobs in this status; all statuses when None
            limit: Page size
            offset: Number of jobs to skip after sorting

        Returns:
            One page of job views
        """
        queue = _queue(queue)
        paused = await self.store.is_paused(queue)

        if status is None:
            statuses = list(STORED_STATUSES)
        elif JobStatus(status) == JobStatus.PAUSED:
            statuses = [JobStatus.WAITING] if paused else []
        elif JobStatus(status) == JobStatus.WAITING and paused:
            statuses = []
        else:
            statuses = [JobStatus(status)]

        if not statuses:
            return []
        jobs = await self.store.list_jobs(queue, statuses, offset=offset, limit=limit)
        return [JobView.from_job(job, paused=paused) for job in jobs]

    async def get_job(self, queue: QueueRef, job_id: str) -> Optional[JobView]:
        queue = _queue(queue)
        job = await self.store.get_job(queue, job_id)
        if job is None:
            return None
        return JobView.from_job(job, paused=await self.store.is_paused(queue))

    async def cancel_job(self, queue: QueueRef, job_id: str) -> bool:
        return await self.scheduler.cancel_job(_queue(queue), job_id)

    async def retry_job(self, queue: QueueRef, job_id: str) -> bool:
        return await self.scheduler.retry_job(_queue(queue), job_id)

    async def get_queue_health(self) -> QueueHealth:
        """
        Compute the health verdict across all queues.

        Only a failure ratio (failed/total) above the configured threshold
        makes the system unhealthy. Many active jobs and a large backlog are
        reported as issues without changing the verdict.
        """
        stats = await self.get_all_queue_stats()
        healthy = True
        issues = []

        for queue_stats in stats:
            name = queue_stats.queue_name.value
            if queue_stats.total > 0:
                ratio = queue_stats.failed / queue_stats.total
                if ratio > self.config.health_failure_ratio:
                    healthy = False
                    issues.append(f"High failure rate in {name}: {ratio * 100:.1f}%")

            if queue_stats.active > self.config.health_max_active:
                issues.append(f"Many active jobs in {name}: {queue_stats.active}")

            if queue_stats.waiting > self.config.health_max_waiting:
                issues.append(f"Large backlog in {name}: {queue_stats.waiting} waiting jobs")

        if issues:
            logger.warning(f"Queue health issues: {'; '.join(issues)}")
        return QueueHealth(healthy=healthy, issues=issues, stats=stats)

    async def clean_old_jobs(self, older_than_hours: float = 24) -> CleanupResult:
        """Remove completed jobs older than the threshold, queue by queue."""
        older_than = self.scheduler.now() - timedelta(hours=older_than_hours)
        result = CleanupResult()

        for queue in QueueName:
            try:
                cleaned = await self.store.clean_jobs(queue, JobStatus.COMPLETED, older_than)
            except Exception as e:
                logger.error(f"Failed to clean queue {queue.value}: {e}", exc_info=True)
                continue
            if cleaned:
                result.cleaned += cleaned
                result.queues.append(queue)
                logger.info(f"Cleaned {cleaned} completed jobs from {queue.value}")

        return result

    async def get_tenant_jobs(self, tenant_id: str, limit: int = 50) -> List[JobView]:
        """The newest jobs of one tenant across every queue."""
        per_queue = await asyncio.gather(
            *(
                self.store.list_jobs(queue, limit=limit, tenant_id=tenant_id)
                for queue in QueueName
            )
        )
        paused = {queue: await self.store.is_paused(queue) for queue in QueueName}

        jobs = [job for jobs in per_queue for job in jobs]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return [JobView.from_job(job, paused=paused[job.queue_name]) for job in jobs[:limit]]

    async def get_dashboard(self) -> Dashboard:
        health = await self.get_queue_health()
        return Dashboard(stats=health.stats, health=health)

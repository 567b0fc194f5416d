"""In-process job store for tests and single-process deployments."""

import asyncio
import itertools
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from adsync_jobs.models import Job, JobProgress, JobStatus, QueueName, RecurringJob
from adsync_jobs.storage.base import JobStore


class MemoryJobStore(JobStore):
    """
    Job store kept in process memory.

    Jobs are copied on the way in and out so callers never share state
    with the store. All mutations run under one lock.
    """

    def __init__(self):
        self._jobs: Dict[Tuple[QueueName, str], Job] = {}
        self._seq: Dict[Tuple[QueueName, str], int] = {}
        self._counter = itertools.count()
        self._paused: Set[QueueName] = set()
        self._recurring: Dict[str, RecurringJob] = {}
        self._lock = asyncio.Lock()

    def _key(self, queue: QueueName, job_id: str) -> Tuple[QueueName, str]:
        return QueueName(queue), job_id

    def _queue_jobs(self, queue: QueueName) -> List[Tuple[Tuple[QueueName, str], Job]]:
        queue = QueueName(queue)
        return [(key, job) for key, job in self._jobs.items() if key[0] == queue]

    async def add_job(self, job: Job) -> Job:
        async with self._lock:
            key = self._key(job.queue_name, job.id)
            self._jobs[key] = job.model_copy(deep=True)
            self._seq[key] = next(self._counter)
        return job

    async def get_job(self, queue: QueueName, job_id: str) -> Optional[Job]:
        job = self._jobs.get(self._key(queue, job_id))
        return job.model_copy(deep=True) if job else None

    async def update_job(self, job: Job) -> bool:
        async with self._lock:
            key = self._key(job.queue_name, job.id)
            if key not in self._jobs:
                return False
            self._jobs[key] = job.model_copy(deep=True)
            return True

    async def update_progress(
        self, queue: QueueName, job_id: str, progress: JobProgress
    ) -> bool:
        async with self._lock:
            job = self._jobs.get(self._key(queue, job_id))
            if job is None:
                return False
            job.progress = progress.model_copy()
            return True

    async def remove_job(self, queue: QueueName, job_id: str) -> bool:
        async with self._lock:
            key = self._key(queue, job_id)
            self._seq.pop(key, None)
            return self._jobs.pop(key, None) is not None

    async def list_jobs(
        self,
        queue: QueueName,
        statuses: Optional[Sequence[JobStatus]] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> List[Job]:
        entries = [
            (key, job)
            for key, job in self._queue_jobs(queue)
            if (statuses is None or job.status in statuses)
            and (tenant_id is None or job.tenant_id == tenant_id)
        ]
        entries.sort(key=lambda e: (e[1].created_at, self._seq[e[0]]), reverse=True)
        jobs = [job.model_copy(deep=True) for _, job in entries]
        end = None if limit is None else offset + limit
        return jobs[offset:end]

    async def count_jobs(self, queue: QueueName, status: JobStatus) -> int:
        return sum(1 for _, job in self._queue_jobs(queue) if job.status == status)

    def _promote(self, queue: QueueName, now: datetime) -> int:
        promoted = 0
        for _, job in self._queue_jobs(queue):
            if job.status == JobStatus.DELAYED and (job.run_at is None or job.run_at <= now):
                job.status = JobStatus.WAITING
                promoted += 1
        return promoted

    async def promote_delayed_jobs(self, queue: QueueName, now: datetime) -> int:
        async with self._lock:
            return self._promote(queue, now)

    async def lease_next_job(self, queue: QueueName, now: datetime) -> Optional[Job]:
        async with self._lock:
            self._promote(queue, now)
            waiting = [
                (key, job)
                for key, job in self._queue_jobs(queue)
                if job.status == JobStatus.WAITING
            ]
            if not waiting:
                return None

            _, job = min(waiting, key=lambda e: (e[1].priority, self._seq[e[0]]))
            job.status = JobStatus.ACTIVE
            job.attempts += 1
            job.processed_at = now
            return job.model_copy(deep=True)

    async def clean_jobs(
        self, queue: QueueName, status: JobStatus, older_than: datetime
    ) -> int:
        async with self._lock:
            stale = [
                key
                for key, job in self._queue_jobs(queue)
                if job.status == status and (job.finished_at or job.created_at) < older_than
            ]
            for key in stale:
                self._jobs.pop(key, None)
                self._seq.pop(key, None)
            return len(stale)

    async def trim_finished_jobs(
        self, queue: QueueName, status: JobStatus, keep: int
    ) -> int:
        async with self._lock:
            finished = [
                (key, job) for key, job in self._queue_jobs(queue) if job.status == status
            ]
            finished.sort(
                key=lambda e: (e[1].finished_at or e[1].created_at, self._seq[e[0]]),
                reverse=True,
            )
            excess = finished[max(keep, 0):]
            for key, _ in excess:
                self._jobs.pop(key, None)
                self._seq.pop(key, None)
            return len(excess)

    async def set_paused(self, queue: QueueName, paused: bool) -> None:
        if paused:
            self._paused.add(QueueName(queue))
        else:
            self._paused.discard(QueueName(queue))

    async def is_paused(self, queue: QueueName) -> bool:
        return QueueName(queue) in self._paused

    async def save_recurring(self, recurring: RecurringJob) -> None:
        self._recurring[recurring.name] = recurring.model_copy(deep=True)

    async def remove_recurring(self, name: str) -> bool:
        return self._recurring.pop(name, None) is not None

    async def list_recurring(self) -> List[RecurringJob]:
        return [r.model_copy(deep=True) for r in self._recurring.values()]

    async def claim_recurring(
        self, name: str, due_at: datetime, next_run_at: datetime
    ) -> bool:
        recurring = self._recurring.get(name)
        if recurring is None or recurring.next_run_at != due_at:
            return False
        recurring.next_run_at = next_run_at
        return True

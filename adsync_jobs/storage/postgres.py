"""PostgreSQL job store built on asyncpg."""

import json
from datetime import datetime
from typing import Any, List, Optional, Sequence

import asyncpg

from adsync_jobs.models import Job, JobProgress, JobStatus, QueueName, RecurringJob
from adsync_jobs.storage.base import JobStore


def _dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json")
    return json.dumps(value)


def _load(value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    return json.loads(value)


class PostgresJobStore(JobStore):
    """
    Job store backed by the ``jobs``, ``job_queue_state`` and
    ``recurring_jobs`` tables (see ``adsync_jobs.ddl``).

    Leasing uses ``FOR UPDATE SKIP LOCKED`` so any number of worker
    processes can poll the same queue.

    Example:
        ```python
        pool = await asyncpg.create_pool(dsn)
        store = PostgresJobStore(pool)
        job = await store.lease_next_job(QueueName.BULK_IMPORT, utcnow())
        ```
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def add_job(self, job: Job) -> Job:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO jobs (
                    id, queue, tenant_id, status, payload, progress,
                    attempts, max_attempts, backoff, delay_ms, priority, run_at,
                    result, failed_reason, repeat_key, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
                """,
                job.id,
                job.queue_name.value,
                job.tenant_id,
                job.status.value,
                _dump(job.payload),
                _dump(job.progress),
                job.attempts,
                job.max_attempts,
                _dump(job.backoff),
                job.delay_ms,
                job.priority,
                job.run_at,
                _dump(job.result),
                job.failed_reason,
                job.repeat_key,
                job.created_at,
            )
        return job

    async def get_job(self, queue: QueueName, job_id: str) -> Optional[Job]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM jobs WHERE queue = $1 AND id = $2",
                QueueName(queue).value,
                job_id,
            )
        return self._row_to_job(row) if row else None

    async def update_job(self, job: Job) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE jobs
                SET status = $3, progress = $4, attempts = $5, run_at = $6,
                    result = $7, failed_reason = $8, processed_at = $9,
                    finished_at = $10, delay_ms = $11
                WHERE queue = $1 AND id = $2
                """,
                job.queue_name.value,
                job.id,
                job.status.value,
                _dump(job.progress),
                job.attempts,
                job.run_at,
                _dump(job.result),
                job.failed_reason,
                job.processed_at,
                job.finished_at,
                job.delay_ms,
            )
        return result != "UPDATE 0"

    async def update_progress(
        self, queue: QueueName, job_id: str, progress: JobProgress
    ) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE jobs SET progress = $3 WHERE queue = $1 AND id = $2",
                QueueName(queue).value,
                job_id,
                _dump(progress),
            )
        return result != "UPDATE 0"

    async def remove_job(self, queue: QueueName, job_id: str) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM jobs WHERE queue = $1 AND id = $2",
                QueueName(queue).value,
                job_id,
            )
        return result != "DELETE 0"

    async def list_jobs(
        self,
        queue: QueueName,
        statuses: Optional[Sequence[JobStatus]] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> List[Job]:
        query = "SELECT * FROM jobs WHERE queue = $1"
        params: List[Any] = [QueueName(queue).value]
        param_idx = 2

        if statuses is not None:
            query += f" AND status = ANY(${param_idx}::text[])"
            params.append([JobStatus(s).value for s in statuses])
            param_idx += 1

        if tenant_id:
            query += f" AND tenant_id = ${param_idx}"
            params.append(tenant_id)
            param_idx += 1

        query += f" ORDER BY created_at DESC, seq DESC OFFSET ${param_idx}"
        params.append(offset)
        param_idx += 1

        if limit is not None:
            query += f" LIMIT ${param_idx}"
            params.append(limit)

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [self._row_to_job(row) for row in rows]

    async def count_jobs(self, queue: QueueName, status: JobStatus) -> int:
        async with self.db_pool.acquire() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM jobs WHERE queue = $1 AND status = $2",
                QueueName(queue).value,
                JobStatus(status).value,
            )
        return count

    async def promote_delayed_jobs(self, queue: QueueName, now: datetime) -> int:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE jobs SET status = $2
                WHERE queue = $1 AND status = $3 AND (run_at IS NULL OR run_at <= $4)
                """,
                QueueName(queue).value,
                JobStatus.WAITING.value,
                JobStatus.DELAYED.value,
                now,
            )
        return int(result.split()[-1])

    async def lease_next_job(self, queue: QueueName, now: datetime) -> Optional[Job]:
        await self.promote_delayed_jobs(queue, now)
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE jobs
                SET status = $2, attempts = attempts + 1, processed_at = $3
                WHERE id = (
                    SELECT id FROM jobs
                    WHERE queue = $1 AND status = $4
                    ORDER BY priority ASC, seq ASC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
                """,
                QueueName(queue).value,
                JobStatus.ACTIVE.value,
                now,
                JobStatus.WAITING.value,
            )
        return self._row_to_job(row) if row else None

    async def clean_jobs(
        self, queue: QueueName, status: JobStatus, older_than: datetime
    ) -> int:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                DELETE FROM jobs
                WHERE queue = $1 AND status = $2
                  AND COALESCE(finished_at, created_at) < $3
                """,
                QueueName(queue).value,
                JobStatus(status).value,
                older_than,
            )
        return int(result.split()[-1])

    async def trim_finished_jobs(
        self, queue: QueueName, status: JobStatus, keep: int
    ) -> int:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                DELETE FROM jobs
                WHERE id IN (
                    SELECT id FROM jobs
                    WHERE queue = $1 AND status = $2
                    ORDER BY COALESCE(finished_at, created_at) DESC, seq DESC
                    OFFSET $3
                )
                """,
                QueueName(queue).value,
                JobStatus(status).value,
                max(keep, 0),
            )
        return int(result.split()[-1])

    async def set_paused(self, queue: QueueName, paused: bool) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO job_queue_state (queue, paused, updated_at)
                VALUES ($1, $2, now())
                ON CONFLICT (queue) DO UPDATE
                SET paused = EXCLUDED.paused, updated_at = now()
                """,
                QueueName(queue).value,
                paused,
            )

    async def is_paused(self, queue: QueueName) -> bool:
        async with self.db_pool.acquire() as conn:
            paused = await conn.fetchval(
                "SELECT paused FROM job_queue_state WHERE queue = $1",
                QueueName(queue).value,
            )
        return bool(paused)

    async def save_recurring(self, recurring: RecurringJob) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO recurring_jobs (
                    name, queue, payload_template, cron, next_run_at
                ) VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (name) DO UPDATE
                SET queue = EXCLUDED.queue,
                    payload_template = EXCLUDED.payload_template,
                    cron = EXCLUDED.cron,
                    next_run_at = EXCLUDED.next_run_at
                """,
                recurring.name,
                recurring.queue_name.value,
                json.dumps(recurring.payload_template, default=str),
                recurring.cron,
                recurring.next_run_at,
            )

    async def remove_recurring(self, name: str) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("DELETE FROM recurring_jobs WHERE name = $1", name)
        return result != "DELETE 0"

    async def list_recurring(self) -> List[RecurringJob]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM recurring_jobs ORDER BY name")
        return [self._row_to_recurring(row) for row in rows]

    async def due_recurring(self, now: datetime) -> List[RecurringJob]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM recurring_jobs WHERE next_run_at <= $1 ORDER BY next_run_at",
                now,
            )
        return [self._row_to_recurring(row) for row in rows]

    async def claim_recurring(
        self, name: str, due_at: datetime, next_run_at: datetime
    ) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE recurring_jobs
                SET next_run_at = $3
                WHERE name = $1 AND next_run_at = $2
                """,
                name,
                due_at,
                next_run_at,
            )
        return result == "UPDATE 1"

    def _row_to_job(self, row: Any) -> Job:
        """Convert database row to Job model."""
        return Job(
            id=row["id"],
            queue_name=row["queue"],
            payload=_load(row["payload"]),
            status=row["status"],
            progress=_load(row["progress"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            backoff=_load(row["backoff"]),
            delay_ms=row["delay_ms"],
            priority=row["priority"],
            run_at=row["run_at"],
            result=_load(row["result"]),
            created_at=row["created_at"],
            processed_at=row["processed_at"],
            finished_at=row["finished_at"],
            failed_reason=row["failed_reason"],
            repeat_key=row["repeat_key"],
        )

    def _row_to_recurring(self, row: Any) -> RecurringJob:
        return RecurringJob(
            name=row["name"],
            queue_name=row["queue"],
            payload_template=_load(row["payload_template"]),
            cron=row["cron"],
            next_run_at=row["next_run_at"],
        )

"""Producer-facing job scheduling and the queue maintenance loop."""

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from croniter import croniter
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ValidationError

from adsync_jobs.errors import JobValidationError
from adsync_jobs.models import (
    DEFAULT_QUEUE_OPTIONS,
    PAYLOAD_TYPES,
    BackoffPolicy,
    Job,
    JobProgress,
    JobResult,
    JobStatus,
    QueueName,
    RecurringJob,
    utcnow,
)
from adsync_jobs.payloads import (
    AggregationType,
    AnalyticsAggregationPayload,
    ApiRetryPayload,
    BulkImportPayload,
    DateRange,
    PlatformSyncPayload,
)
from adsync_jobs.retry import calculate_retry_delay
from adsync_jobs.storage.base import JobStore

logger = logging.getLogger(__name__)

PayloadInput = Union[BaseModel, Dict[str, Any]]


def generate_date_range(aggregation_type: AggregationType, today: date) -> DateRange:
    """The reporting window ending ``today`` for one aggregation granularity."""
    aggregation_type = AggregationType(aggregation_type)
    if aggregation_type == AggregationType.MONTHLY:
        start = today - relativedelta(months=1)
    elif aggregation_type == AggregationType.WEEKLY:
        start = today - timedelta(days=7)
    else:
        start = today - timedelta(days=1)
    return DateRange(start_date=start, end_date=today)


def recurring_analytics_name(aggregation_type: AggregationType, tenant_id: str) -> str:
    return f"analytics-{AggregationType(aggregation_type).value.lower()}-{tenant_id}"


def next_cron_run(cron: str, after: datetime) -> datetime:
    return croniter(cron, after).get_next(datetime)


class JobScheduler:
    """
    Enqueues typed jobs, manages queue pause state and recurring jobs.

    Example:
        ```python
        scheduler = JobScheduler(store)
        job_id = await scheduler.schedule_bulk_import(
            {"tenant_id": "t1", "import_id": "imp-1", "customers": [...]}
        )
        ```
    """

    def __init__(self, store: JobStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def _validate(self, queue: QueueName, payload: PayloadInput) -> BaseModel:
        payload_type = PAYLOAD_TYPES[queue]
        data = payload.model_dump() if isinstance(payload, BaseModel) else payload
        try:
            return payload_type.model_validate(data)
        except ValidationError as e:
            raise JobValidationError(f"Invalid {queue.value} payload: {e}") from e

    async def _enqueue(
        self,
        queue: QueueName,
        payload: PayloadInput,
        *,
        delay_ms: int = 0,
        priority: Optional[int] = None,
        attempts: Optional[int] = None,
        backoff: Optional[BackoffPolicy] = None,
        repeat_key: Optional[str] = None,
    ) -> Job:
        defaults = DEFAULT_QUEUE_OPTIONS[queue]
        now = self._clock()
        delay_ms = max(int(delay_ms), 0)

        job = Job(
            queue_name=queue,
            payload=self._validate(queue, payload),
            status=JobStatus.DELAYED if delay_ms else JobStatus.WAITING,
            max_attempts=attempts if attempts is not None else defaults.attempts,
            backoff=backoff if backoff is not None else defaults.backoff,
            delay_ms=delay_ms,
            priority=priority if priority is not None else defaults.priority,
            run_at=now + timedelta(milliseconds=delay_ms) if delay_ms else None,
            created_at=now,
            repeat_key=repeat_key,
        )
        await self.store.add_job(job)
        return job

    async def schedule_platform_sync(self, payload: PayloadInput, **options: Any) -> str:
        """
        Schedule a tag manager sync.

        Args:
            payload: PlatformSyncPayload or an equivalent dict
            **options: delay_ms, priority, attempts or backoff overrides

        Returns:
            The new job id
        """
        job = await self._enqueue(QueueName.PLATFORM_SYNC, payload, **options)
        sync: PlatformSyncPayload = job.payload
        logger.info(f"Scheduled platform sync job {job.id} for customer {sync.customer_id}")
        return job.id

    async def schedule_bulk_import(self, payload: PayloadInput, **options: Any) -> str:
        job = await self._enqueue(QueueName.BULK_IMPORT, payload, **options)
        bulk: BulkImportPayload = job.payload
        logger.info(f"Scheduled bulk import job {job.id} for {len(bulk.customers)} customers")
        return job.id

    async def schedule_api_retry(self, payload: PayloadInput, **options: Any) -> str:
        """Schedule an API retry, delayed by its retry strategy unless overridden."""
        retry = self._validate(QueueName.API_RETRY, payload)
        options.setdefault(
            "delay_ms", calculate_retry_delay(retry.retry_strategy, retry.retry_count)
        )
        job = await self._enqueue(QueueName.API_RETRY, retry, **options)
        logger.info(
            f"Scheduled API retry job {job.id} for {retry.original_job_type.value} "
            f"(retry {retry.retry_count})"
        )
        return job.id

    async def schedule_analytics_aggregation(
        self, payload: PayloadInput, **options: Any
    ) -> str:
        job = await self._enqueue(QueueName.ANALYTICS_AGGREGATION, payload, **options)
        analytics: AnalyticsAggregationPayload = job.payload
        logger.info(
            f"Scheduled analytics aggregation job {job.id} "
            f"for {analytics.aggregation_type.value}"
        )
        return job.id

    def _materialize(self, recurring: RecurringJob, now: datetime) -> Dict[str, Any]:
        payload = dict(recurring.payload_template)
        is_analytics = recurring.queue_name == QueueName.ANALYTICS_AGGREGATION
        if is_analytics and "aggregation_type" in payload:
            payload["date_range"] = generate_date_range(
                payload["aggregation_type"], now.date()
            ).model_dump()
        return payload

    async def schedule_recurring(
        self,
        queue: QueueName,
        payload_template: Dict[str, Any],
        cron: str,
        name: str,
    ) -> str:
        """
        Register a job to be enqueued at every firing of ``cron``.

        Any registration with the same name is replaced, so re-registering
        after a redeploy never duplicates it.

        Returns:
            The registration name
        """
        queue = QueueName(queue)
        if not croniter.is_valid(cron):
            raise JobValidationError(f"Invalid cron expression {cron!r}")

        now = self._clock()
        recurring = RecurringJob(
            name=name,
            queue_name=queue,
            payload_template=dict(payload_template),
            cron=cron,
            next_run_at=next_cron_run(cron, now),
        )
        self._validate(queue, self._materialize(recurring, now))

        if await self.store.remove_recurring(name):
            logger.info(f"Replaced existing recurring job {name}")
        await self.store.save_recurring(recurring)

        logger.info(f"Scheduled recurring job {name} with pattern {cron}")
        return name

    async def schedule_recurring_analytics(
        self, payload_template: PayloadInput, cron: str
    ) -> str:
        """Recurring aggregation whose date range is computed at each firing."""
        template = (
            payload_template.model_dump(mode="json")
            if isinstance(payload_template, BaseModel)
            else dict(payload_template)
        )
        template.pop("date_range", None)
        if not template.get("aggregation_type") or not template.get("tenant_id"):
            raise JobValidationError(
                "Recurring analytics requires aggregation_type and tenant_id"
            )
        name = recurring_analytics_name(template["aggregation_type"], template["tenant_id"])
        return await self.schedule_recurring(
            QueueName.ANALYTICS_AGGREGATION, template, cron, name
        )

    async def remove_recurring(self, name: str) -> bool:
        removed = await self.store.remove_recurring(name)
        if removed:
            logger.info(f"Removed recurring job {name}")
        return removed

    async def run_due_recurring(self, now: Optional[datetime] = None) -> List[str]:
        """
        Enqueue one job for every due recurring registration.

        Each firing is claimed in the store before enqueueing, so
        schedulers running in several processes fire it once.
        """
        now = now or self._clock()
        job_ids = []
        for recurring in await self.store.due_recurring(now):
            claimed = await self.store.claim_recurring(
                recurring.name, recurring.next_run_at, next_cron_run(recurring.cron, now)
            )
            if not claimed:
                logger.debug(f"Recurring job {recurring.name} already claimed")
                continue
            try:
                job = await self._enqueue(
                    recurring.queue_name,
                    self._materialize(recurring, now),
                    repeat_key=recurring.name,
                )
                job_ids.append(job.id)
                logger.info(f"Enqueued job {job.id} for recurring job {recurring.name}")
            except Exception as e:
                logger.error(
                    f"Failed to enqueue recurring job {recurring.name}: {e}", exc_info=True
                )
        return job_ids

    async def pause_queue(self, queue: QueueName) -> None:
        await self.store.set_paused(QueueName(queue), True)
        logger.info(f"Paused queue {QueueName(queue).value}")

    async def resume_queue(self, queue: QueueName) -> None:
        await self.store.set_paused(QueueName(queue), False)
        logger.info(f"Resumed queue {QueueName(queue).value}")

    async def is_paused(self, queue: QueueName) -> bool:
        return await self.store.is_paused(QueueName(queue))

    async def cancel_job(self, queue: QueueName, job_id: str) -> bool:
        """
        Remove a job that has not finished.

        An active job keeps running and its result is discarded.

        Returns:
            False when the job does not exist or already finished
        """
        try:
            queue = QueueName(queue)
            job = await self.store.get_job(queue, job_id)
            if job is None or job.is_terminal:
                return False
            removed = await self.store.remove_job(queue, job_id)
        except Exception as e:
            logger.error(f"Failed to cancel job {job_id}: {e}", exc_info=True)
            return False

        if removed:
            logger.info(f"Cancelled job {job_id} from queue {queue.value}")
        return removed

    async def retry_job(self, queue: QueueName, job_id: str) -> bool:
        """
        Move a failed job back to waiting with a fresh attempt budget.

        Returns:
            False when the job does not exist or is not failed
        """
        try:
            queue = QueueName(queue)
            job = await self.store.get_job(queue, job_id)
            if job is None or job.status != JobStatus.FAILED:
                return False

            job.status = JobStatus.WAITING
            job.attempts = 0
            job.progress = JobProgress()
            job.result = None
            job.failed_reason = None
            job.finished_at = None
            job.run_at = None
            retried = await self.store.update_job(job)
        except Exception as e:
            logger.error(f"Failed to retry job {job_id}: {e}", exc_info=True)
            return False

        if retried:
            logger.info(f"Retrying job {job_id} from queue {queue.value}")
        return retried

    async def handle_api_retry_result(self, job: Job, result: JobResult) -> Optional[str]:
        """
        Re-enqueue an api-retry job whose result asks for another retry.

        Returns:
            The id of the new job, or None when no retry was scheduled
        """
        if job.queue_name != QueueName.API_RETRY or result.success:
            return None

        data = result.data or {}
        if not data.get("should_retry_again"):
            logger.info(f"API retry job {job.id} will not be retried again")
            return None

        payload: ApiRetryPayload = job.payload
        last_error = result.errors[0].message if result.errors else payload.last_error
        next_payload = payload.model_copy(
            update={
                "retry_count": data.get("next_retry_count", payload.retry_count + 1),
                "last_error": last_error,
            }
        )
        return await self.schedule_api_retry(next_payload)


async def run_scheduler_loop(
    scheduler: JobScheduler,
    loop_interval_seconds: float = 5.0,
    shutdown_event: asyncio.Event = None,
) -> None:
    """
    Run the maintenance loop: promote due delayed jobs and fire recurring jobs.

    Args:
        scheduler: Job scheduler
        loop_interval_seconds: Time to sleep between iterations
        shutdown_event: Optional event to signal shutdown
    """
    logger.info("Starting scheduler loop")

    while True:
        if shutdown_event and shutdown_event.is_set():
            logger.info("Shutdown signal received, exiting scheduler loop")
            break

        try:
            now = scheduler.now()
            for queue in QueueName:
                promoted = await scheduler.store.promote_delayed_jobs(queue, now)
                if promoted:
                    logger.debug(f"Promoted {promoted} delayed jobs in {queue.value}")

            await scheduler.run_due_recurring(now)

        except asyncio.CancelledError:
            logger.info("Scheduler loop cancelled")
            break
        except Exception as e:
            logger.error(f"Error in scheduler loop: {e}", exc_info=True)

        await asyncio.sleep(loop_interval_seconds)

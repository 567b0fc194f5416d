"""Queue workers that lease jobs from the store and run their processors."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set

from adsync_jobs.config import JobsConfig
from adsync_jobs.errors import JobCancelledError
from adsync_jobs.models import (
    Job,
    JobError,
    JobResult,
    JobStatus,
    QueueName,
    QueueOptions,
    utcnow,
)
from adsync_jobs.processors.base import JobContext, JobProcessor
from adsync_jobs.registry import ProcessorRegistry
from adsync_jobs.retry import ErrorKind, calculate_queue_backoff, classify_error
from adsync_jobs.storage.base import JobStore

logger = logging.getLogger(__name__)

ResultHook = Callable[[Job, JobResult], Awaitable[object]]

NON_RETRYABLE_KINDS = (ErrorKind.AUTHENTICATION, ErrorKind.VALIDATION)


class QueueWorker:
    """
    Worker that consumes one queue.

    The worker polls the store for waiting jobs, runs each one in its own
    asyncio task (so each job has its own tenant context) and records the
    outcome. At most ``options.concurrency`` jobs run at once, and nothing is
    leased while the queue is paused.

    Example:
        ```python
        worker = QueueWorker(
            queue=QueueName.BULK_IMPORT,
            store=store,
            processor=BulkImportProcessor(customers, cache),
            options=config.queue_options(QueueName.BULK_IMPORT),
        )

        await worker.start()
        ...
        await worker.stop()
        ```
    """

    def __init__(
        self,
        queue: QueueName,
        store: JobStore,
        processor: JobProcessor,
        options: QueueOptions,
        poll_interval: float = 1.0,
        on_result: Optional[ResultHook] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the worker.

        Args:
            queue: Queue to consume
            store: Job store the queue lives in
            processor: Processor that executes the queue's jobs
            options: Queue options (concurrency and retention)
            poll_interval: Time in seconds between polls of an idle queue
            on_result: Optional hook awaited with every recorded JobResult
            clock: Source of the current time
        """
        self.queue = QueueName(queue)
        self.store = store
        self.processor = processor
        self.options = options
        self.poll_interval = poll_interval
        self.on_result = on_result
        self._clock = clock
        self._running = False
        self._poller: Optional[asyncio.Task] = None
        self._active: Set[asyncio.Task] = set()
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def running(self) -> bool:
        return self._running

    async def _lease(self) -> Optional[Job]:
        if await self.store.is_paused(self.queue):
            return None
        return await self.store.lease_next_job(self.queue, self._clock())

    async def _execute_job(self, job: Job) -> Job:
        """
        Execute a leased job and record its outcome.

        Args:
            job: The job, already marked active by the lease

        Returns:
            The job in its final recorded state
        """
        ctx = JobContext(job, self.store)
        logger.info(
            f"Executing job {job.id} ({self.queue.value}, "
            f"attempt {job.attempts}/{job.max_attempts})"
        )

        try:
            result = await self.processor.process(ctx)
        except JobCancelledError:
            logger.info(f"Job {job.id} was cancelled, discarding its result")
            return job
        except Exception as e:
            logger.error(f"Job {job.id} ({self.queue.value}) failed: {e}", exc_info=True)
            await self._record_failure(job, e)
            return job

        if ctx.progress.removed:
            logger.info(f"Job {job.id} was removed while active, discarding its result")
            return job

        await self._record_result(job, result)
        return job

    async def _record_result(self, job: Job, result: JobResult) -> None:
        now = self._clock()
        job.result = result
        job.finished_at = now

        if result.success:
            job.status = JobStatus.COMPLETED
        else:
            job.status = JobStatus.FAILED
            job.failed_reason = result.errors[0].message if result.errors else "Job failed"
            job.progress = job.progress.model_copy(update={"failed": 1})

        if not await self.store.update_job(job):
            logger.info(f"Job {job.id} was removed while active, discarding its result")
            return

        if result.success:
            logger.info(f"Job {job.id} ({self.queue.value}) completed successfully")
        else:
            logger.warning(f"Job {job.id} ({self.queue.value}) failed: {job.failed_reason}")
        await self._apply_retention(job.status)

        if self.on_result is not None:
            try:
                await self.on_result(job, result)
            except Exception as e:
                logger.error(f"Result hook failed for job {job.id}: {e}", exc_info=True)

    async def _record_failure(self, job: Job, error: Exception) -> None:
        kind = classify_error(error)
        job.failed_reason = str(error)

        if kind not in NON_RETRYABLE_KINDS and job.attempts < job.max_attempts:
            backoff_ms = calculate_queue_backoff(job.backoff, job.attempts)
            job.status = JobStatus.DELAYED
            job.run_at = self._clock() + timedelta(milliseconds=backoff_ms)
            if await self.store.update_job(job):
                logger.info(
                    f"Job {job.id} will retry (attempt {job.attempts}/"
                    f"{job.max_attempts}) after {backoff_ms}ms"
                )
            return

        job.status = JobStatus.FAILED
        job.finished_at = self._clock()
        job.progress = job.progress.model_copy(update={"failed": 1})
        job.result = JobResult(
            success=False,
            errors=[
                JobError(
                    message=str(error),
                    details={"error_type": type(error).__name__, "error_kind": kind.value},
                )
            ],
        )
        if not await self.store.update_job(job):
            return

        if kind in NON_RETRYABLE_KINDS:
            logger.error(f"Job {job.id} failed with a {kind.value} error, not retrying")
        else:
            logger.error(f"Job {job.id} failed after {job.max_attempts} attempts")
        await self._apply_retention(JobStatus.FAILED)

    async def _apply_retention(self, status: JobStatus) -> None:
        keep = (
            self.options.remove_on_complete
            if status == JobStatus.COMPLETED
            else self.options.remove_on_fail
        )
        try:
            trimmed = await self.store.trim_finished_jobs(self.queue, status, keep)
            if trimmed:
                logger.debug(f"Trimmed {trimmed} {status.value} jobs from {self.queue.value}")
        except Exception as e:
            logger.error(f"Failed to trim {self.queue.value} jobs: {e}", exc_info=True)

    async def _run_job(self, job: Job) -> None:
        try:
            await self._execute_job(job)
        except Exception as e:
            logger.error(f"Error recording job {job.id}: {e}", exc_info=True)
        finally:
            self._semaphore.release()

    async def _poll_queue(self) -> None:
        while self._running:
            try:
                await self._semaphore.acquire()
                job = None
                try:
                    job = await self._lease()
                finally:
                    if job is None:
                        self._semaphore.release()

                if job is None:
                    await asyncio.sleep(self.poll_interval)
                    continue

                task = asyncio.create_task(self._run_job(job))
                self._active.add(task)
                task.add_done_callback(self._active.discard)

            except asyncio.CancelledError:
                logger.info(f"Queue poller for {self.queue.value} cancelled")
                break
            except Exception as e:
                logger.error(f"Error polling {self.queue.value} queue: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)

    async def run_once(self) -> Optional[Job]:
        """
        Lease and execute at most one job.

        Returns:
            The executed job, or None when nothing was leased
        """
        job = await self._lease()
        if job is None:
            return None
        return await asyncio.create_task(self._execute_job(job))

    async def start(self) -> None:
        """Start polling the queue."""
        if self._running:
            logger.warning(f"Worker for {self.queue.value} is already running")
            return

        self._running = True
        self._semaphore = asyncio.Semaphore(self.options.concurrency)
        self._poller = asyncio.create_task(self._poll_queue())

        logger.info(
            f"Worker for {self.queue.value} started with "
            f"{self.options.concurrency} concurrent jobs"
        )

    async def stop(self) -> None:
        """Stop polling and wait for the jobs in flight to finish."""
        if not self._running:
            logger.warning(f"Worker for {self.queue.value} is not running")
            return

        self._running = False
        self._poller.cancel()
        await asyncio.gather(self._poller, return_exceptions=True)
        await asyncio.gather(*self._active, return_exceptions=True)

        self._poller = None
        self._active.clear()
        self._semaphore = None

        logger.info(f"Worker for {self.queue.value} stopped")


class WorkerPool:
    """One QueueWorker per registered queue, started and stopped together."""

    def __init__(
        self,
        registry: ProcessorRegistry,
        store: JobStore,
        config: JobsConfig,
        on_result: Optional[ResultHook] = None,
        queues: Optional[Iterable[QueueName]] = None,
    ):
        selected = [QueueName(q) for q in queues] if queues else registry.queues()
        self.workers: Dict[QueueName, QueueWorker] = {
            queue: QueueWorker(
                queue=queue,
                store=store,
                processor=registry.get_processor(queue),
                options=config.queue_options(queue),
                poll_interval=config.poll_interval_seconds,
                on_result=on_result,
            )
            for queue in selected
        }

    async def start(self) -> None:
        for worker in self.workers.values():
            await worker.start()

    async def stop(self) -> None:
        await asyncio.gather(
            *(worker.stop() for worker in self.workers.values() if worker.running)
        )

    async def run_once(self, queue: QueueName) -> Optional[Job]:
        return await self.workers[QueueName(queue)].run_once()

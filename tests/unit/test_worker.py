"""Unit tests for queue workers."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from adsync_jobs import context
from adsync_jobs.config import JobsConfig
from adsync_jobs.errors import AuthenticationError, JobCancelledError, RemoteHttpError
from adsync_jobs.models import JobError, JobResult, JobStatus, QueueName, QueueOptions
from adsync_jobs.processors.base import JobProcessor
from adsync_jobs.registry import ProcessorRegistry
from adsync_jobs.worker import QueueWorker, WorkerPool

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class StubProcessor(JobProcessor):
    """Processor returning a fixed result or raising a fixed error."""

    queue = QueueName.BULK_IMPORT

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result or JobResult(success=True, data={"ok": True})
        self.error = error
        self.delay = delay
        self.seen_tenants = []
        self.running = 0
        self.max_running = 0

    async def handle(self, ctx):
        self.seen_tenants.append(context.get_tenant_id())
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return self.result
        finally:
            self.running -= 1


def make_worker(store, processor, on_result=None, **options):
    return QueueWorker(
        queue=QueueName.BULK_IMPORT,
        store=store,
        processor=processor,
        options=QueueOptions(**options),
        poll_interval=0.01,
        on_result=on_result,
        clock=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_successful_job_completes(store, scheduler, bulk_import_payload):
    processor = StubProcessor()
    job_id = await scheduler.schedule_bulk_import(bulk_import_payload)

    job = await make_worker(store, processor).run_once()

    assert job.id == job_id
    stored = await store.get_job(QueueName.BULK_IMPORT, job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.finished_at == NOW
    assert stored.result.data == {"ok": True}
    assert processor.seen_tenants == ["tenant-123"]


@pytest.mark.asyncio
async def test_unsuccessful_result_fails_job_and_calls_hook(
    store, scheduler, bulk_import_payload
):
    result = JobResult(success=False, errors=[JobError(message="quota exhausted")])
    hook = AsyncMock()
    job_id = await scheduler.schedule_bulk_import(bulk_import_payload)

    await make_worker(store, StubProcessor(result=result), on_result=hook).run_once()

    stored = await store.get_job(QueueName.BULK_IMPORT, job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.failed_reason == "quota exhausted"
    assert stored.progress.failed == 1
    hook.assert_awaited_once()
    assert hook.call_args.args[1] is result


@pytest.mark.asyncio
async def test_hook_error_does_not_break_worker(store, scheduler, bulk_import_payload):
    job_id = await scheduler.schedule_bulk_import(bulk_import_payload)
    hook = AsyncMock(side_effect=RuntimeError("hook down"))

    await make_worker(store, StubProcessor(), on_result=hook).run_once()

    stored = await store.get_job(QueueName.BULK_IMPORT, job_id)
    assert stored.status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_transient_error_delays_with_backoff(store, scheduler, bulk_import_payload):
    """Test that attempt 1 of 3 backs off by the queue's 5000ms base delay."""
    job_id = await scheduler.schedule_bulk_import(bulk_import_payload)
    processor = StubProcessor(error=RemoteHttpError(503, "Service Unavailable"))

    await make_worker(store, processor).run_once()

    stored = await store.get_job(QueueName.BULK_IMPORT, job_id)
    assert stored.status == JobStatus.DELAYED
    assert stored.attempts == 1
    assert stored.run_at == NOW + timedelta(milliseconds=5000)
    assert stored.failed_reason == "HTTP 503: Service Unavailable"


@pytest.mark.asyncio
async def test_authentication_error_fails_immediately(store, scheduler, bulk_import_payload):
    job_id = await scheduler.schedule_bulk_import(bulk_import_payload)
    processor = StubProcessor(error=AuthenticationError("token expired"))

    await make_worker(store, processor).run_once()

    stored = await store.get_job(QueueName.BULK_IMPORT, job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.attempts == 1
    assert stored.result.errors[0].details == {
        "error_type": "AuthenticationError",
        "error_kind": "authentication",
    }


@pytest.mark.asyncio
async def test_attempts_exhausted(store, scheduler, bulk_import_payload):
    job_id = await scheduler.schedule_bulk_import(bulk_import_payload, attempts=1)

    await make_worker(store, StubProcessor(error=RuntimeError("boom"))).run_once()

    stored = await store.get_job(QueueName.BULK_IMPORT, job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.failed_reason == "boom"
    assert stored.finished_at == NOW


@pytest.mark.asyncio
async def test_cancelled_job_result_is_discarded(store, scheduler, bulk_import_payload):
    hook = AsyncMock()
    job_id = await scheduler.schedule_bulk_import(bulk_import_payload)

    class RemovingProcessor(StubProcessor):
        async def handle(self, ctx):
            await store.remove_job(QueueName.BULK_IMPORT, ctx.job.id)
            return JobResult(success=True)

    await make_worker(store, RemovingProcessor(), on_result=hook).run_once()

    assert await store.get_job(QueueName.BULK_IMPORT, job_id) is None
    hook.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancellation_error_is_not_a_failure(store, scheduler, bulk_import_payload):
    job_id = await scheduler.schedule_bulk_import(bulk_import_payload)

    await make_worker(store, StubProcessor(error=JobCancelledError(job_id))).run_once()

    stored = await store.get_job(QueueName.BULK_IMPORT, job_id)
    assert stored.status == JobStatus.ACTIVE
    assert stored.failed_reason is None


@pytest.mark.asyncio
async def test_paused_queue_is_not_leased(store, scheduler, bulk_import_payload):
    await scheduler.schedule_bulk_import(bulk_import_payload)
    await scheduler.pause_queue(QueueName.BULK_IMPORT)

    assert await make_worker(store, StubProcessor()).run_once() is None

    await scheduler.resume_queue(QueueName.BULK_IMPORT)
    assert await make_worker(store, StubProcessor()).run_once() is not None


@pytest.mark.asyncio
async def test_retention_trims_completed_jobs(store, scheduler, bulk_import_payload):
    worker = make_worker(store, StubProcessor(), remove_on_complete=1)
    for _ in range(3):
        await scheduler.schedule_bulk_import(bulk_import_payload)
        await worker.run_once()

    completed = await store.list_jobs(QueueName.BULK_IMPORT, [JobStatus.COMPLETED])
    assert len(completed) == 1


@pytest.mark.asyncio
async def test_start_stop_respects_concurrency(store, scheduler, bulk_import_payload):
    processor = StubProcessor(delay=0.02)
    worker = make_worker(store, processor, concurrency=2)
    for _ in range(5):
        await scheduler.schedule_bulk_import(bulk_import_payload)

    await worker.start()
    assert worker.running is True
    for _ in range(200):
        if await store.count_jobs(QueueName.BULK_IMPORT, JobStatus.COMPLETED) == 5:
            break
        await asyncio.sleep(0.01)
    await worker.stop()

    assert await store.count_jobs(QueueName.BULK_IMPORT, JobStatus.COMPLETED) == 5
    assert processor.max_running == 2
    assert worker.running is False


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_jobs(store, scheduler, bulk_import_payload):
    worker = make_worker(store, StubProcessor(delay=0.05))
    job_id = await scheduler.schedule_bulk_import(bulk_import_payload)

    await worker.start()
    for _ in range(100):
        if await store.count_jobs(QueueName.BULK_IMPORT, JobStatus.ACTIVE):
            break
        await asyncio.sleep(0.005)
    await worker.stop()

    stored = await store.get_job(QueueName.BULK_IMPORT, job_id)
    assert stored.status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_worker_pool(store, scheduler, bulk_import_payload, analytics_payload):
    registry = ProcessorRegistry()
    registry.register(StubProcessor())
    registry.register(StubProcessor(), QueueName.ANALYTICS_AGGREGATION)
    pool = WorkerPool(registry, store, JobsConfig(poll_interval_seconds=0.01))

    assert set(pool.workers) == {QueueName.BULK_IMPORT, QueueName.ANALYTICS_AGGREGATION}
    assert pool.workers[QueueName.BULK_IMPORT].options.concurrency == 1

    job_id = await scheduler.schedule_analytics_aggregation(analytics_payload)
    job = await pool.run_once("analytics-aggregation")
    assert job.id == job_id

    await pool.start()
    assert all(worker.running for worker in pool.workers.values())
    await pool.stop()
    assert not any(worker.running for worker in pool.workers.values())


def test_worker_pool_queue_selection(store):
    registry = ProcessorRegistry()
    registry.register(StubProcessor())
    registry.register(StubProcessor(), QueueName.API_RETRY)

    pool = WorkerPool(registry, store, JobsConfig(), queues=[QueueName.API_RETRY])

    assert list(pool.workers) == [QueueName.API_RETRY]
    assert pool.workers[QueueName.API_RETRY].options.concurrency == 5

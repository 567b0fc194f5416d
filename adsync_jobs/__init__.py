"""Multi-queue async job orchestration with tenant-scoped context and cache."""

__version__ = "0.1.0"

from adsync_jobs.cache import TenantCache
from adsync_jobs.config import JobsConfig
from adsync_jobs.ddl import ALL_DDL, JOBS_TABLE_DDL
from adsync_jobs.errors import (
    AsyncJobsError,
    AuthenticationError,
    JobCancelledError,
    JobNotFoundError,
    JobValidationError,
    RemoteHttpError,
    TenantContextError,
    UnknownQueueError,
)
from adsync_jobs.http_client import WebhookClient
from adsync_jobs.models import Job, JobResult, JobStatus, QueueName
from adsync_jobs.monitoring import JobMonitoringService
from adsync_jobs.registry import ProcessorRegistry
from adsync_jobs.scheduler import JobScheduler, run_scheduler_loop
from adsync_jobs.storage import JobStore, MemoryJobStore, PostgresJobStore
from adsync_jobs.worker import QueueWorker, WorkerPool
from adsync_jobs.worker_main import run_worker

__all__ = [
    "TenantCache",
    "JobsConfig",
    "ALL_DDL",
    "JOBS_TABLE_DDL",
    "AsyncJobsError",
    "AuthenticationError",
    "JobCancelledError",
    "JobNotFoundError",
    "JobValidationError",
    "RemoteHttpError",
    "TenantContextError",
    "UnknownQueueError",
    "WebhookClient",
    "Job",
    "JobResult",
    "JobStatus",
    "QueueName",
    "JobMonitoringService",
    "ProcessorRegistry",
    "JobScheduler",
    "run_scheduler_loop",
    "JobStore",
    "MemoryJobStore",
    "PostgresJobStore",
    "QueueWorker",
    "WorkerPool",
    "run_worker",
]

"""Data models for jobs, queues and their derived statistics."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from adsync_jobs.payloads import (
    AnalyticsAggregationPayload,
    ApiRetryPayload,
    BulkImportPayload,
    JobPayload,
    PlatformSyncPayload,
)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class QueueName(str, Enum):
    """The four logical job queues."""

    PLATFORM_SYNC = "platform-sync"
    BULK_IMPORT = "bulk-import"
    API_RETRY = "api-retry"
    ANALYTICS_AGGREGATION = "analytics-aggregation"


class JobStatus(str, Enum):
    """Job status values.

    ``paused`` is a reporting status only: a waiting job in a paused queue
    is shown as paused but stored as waiting.
    """

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"
    PAUSED = "paused"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)
STORED_STATUSES = (
    JobStatus.WAITING,
    JobStatus.ACTIVE,
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.DELAYED,
)


class JobProgress(BaseModel):
    """Fractional progress of a job."""

    total: int = 100
    completed: int = 0
    failed: int = 0
    percentage: int = 0


class JobError(BaseModel):
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class JobSummary(BaseModel):
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    duration_ms: int = 0


class JobResult(BaseModel):
    """Structured outcome returned by every processor."""

    success: bool
    data: Optional[Dict[str, Any]] = None
    errors: List[JobError] = Field(default_factory=list)
    summary: JobSummary = Field(default_factory=JobSummary)


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class BackoffPolicy(BaseModel):
    """Queue-level backoff applied between automatic attempts."""

    type: BackoffType = BackoffType.EXPONENTIAL
    delay_ms: int = 1000


class QueueOptions(BaseModel):
    """Per-queue defaults applied by the scheduler and honoured by workers."""

    attempts: int = 1
    backoff: Optional[BackoffPolicy] = None
    priority: int = 0
    remove_on_complete: int = 100
    remove_on_fail: int = 50
    concurrency: int = 1


DEFAULT_QUEUE_OPTIONS: Dict[QueueName, QueueOptions] = {
    QueueName.PLATFORM_SYNC: QueueOptions(
        attempts=5,
        backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=3000),
        priority=10,
        remove_on_complete=50,
        remove_on_fail=25,
        concurrency=3,
    ),
    QueueName.BULK_IMPORT: QueueOptions(
        attempts=3,
        backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=5000),
        priority=5,
        remove_on_complete=25,
        remove_on_fail=10,
        concurrency=1,
    ),
    # api-retry runs its own retry loop through the scheduler
    QueueName.API_RETRY: QueueOptions(
        attempts=1,
        backoff=None,
        priority=15,
        remove_on_complete=100,
        remove_on_fail=50,
        concurrency=5,
    ),
    QueueName.ANALYTICS_AGGREGATION: QueueOptions(
        attempts=3,
        backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=10000),
        priority=3,
        remove_on_complete=10,
        remove_on_fail=5,
        concurrency=1,
    ),
}


class Job(BaseModel):
    """A unit of work in one queue."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    queue_name: QueueName
    payload: JobPayload
    status: JobStatus = JobStatus.WAITING
    progress: JobProgress = Field(default_factory=JobProgress)
    attempts: int = 0
    max_attempts: int = 1
    backoff: Optional[BackoffPolicy] = None
    delay_ms: int = 0
    priority: int = 0
    run_at: Optional[datetime] = None
    result: Optional[JobResult] = None
    created_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failed_reason: Optional[str] = None
    repeat_key: Optional[str] = None

    @property
    def tenant_id(self) -> str:
        return self.payload.tenant_id

    @property
    def name(self) -> str:
        return self.queue_name.value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobView(BaseModel):
    """Monitoring projection of a job."""

    id: str
    name: str
    queue: QueueName
    status: JobStatus
    tenant_id: str
    progress: JobProgress
    data: Dict[str, Any]
    result: Optional[JobResult] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failed_reason: Optional[str] = None
    attempts: int
    delay_ms: int
    priority: int

    @classmethod
    def from_job(cls, job: Job, paused: bool = False) -> "JobView":
        status = job.status
        if paused and status == JobStatus.WAITING:
            status = JobStatus.PAUSED
        return cls(
            id=job.id,
            name=job.name,
            queue=job.queue_name,
            status=status,
            tenant_id=job.tenant_id,
            progress=job.progress,
            data=job.payload.model_dump(mode="json"),
            result=job.result,
            created_at=job.created_at,
            processed_at=job.processed_at,
            finished_at=job.finished_at,
            failed_reason=job.failed_reason,
            attempts=job.attempts,
            delay_ms=job.delay_ms,
            priority=job.priority,
        )


class QueueStats(BaseModel):
    """Counts per status for one queue. Always derived, never stored."""

    queue_name: QueueName
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: int = 0
    total: int = 0


class QueueHealth(BaseModel):
    healthy: bool
    issues: List[str] = Field(default_factory=list)
    stats: List[QueueStats] = Field(default_factory=list)


class CleanupResult(BaseModel):
    cleaned: int = 0
    queues: List[QueueName] = Field(default_factory=list)


class Dashboard(BaseModel):
    stats: List[QueueStats]
    health: QueueHealth


class RecurringJob(BaseModel):
    """A cron registration that enqueues a fresh job at every firing."""

    name: str
    queue_name: QueueName
    payload_template: Dict[str, Any]
    cron: str
    next_run_at: datetime


PAYLOAD_TYPES = {
    QueueName.PLATFORM_SYNC: PlatformSyncPayload,
    QueueName.BULK_IMPORT: BulkImportPayload,
    QueueName.API_RETRY: ApiRetryPayload,
    QueueName.ANALYTICS_AGGREGATION: AnalyticsAggregationPayload,
}

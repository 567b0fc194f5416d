"""Queue processors."""

from adsync_jobs.processors.analytics import AnalyticsAggregationProcessor
from adsync_jobs.processors.api_retry import ApiRetryProcessor
from adsync_jobs.processors.base import JobContext, JobProcessor, ProgressReporter
from adsync_jobs.processors.bulk_import import BulkImportProcessor, get_import_results
from adsync_jobs.processors.platform_sync import PlatformSyncProcessor

__all__ = [
    "AnalyticsAggregationProcessor",
    "ApiRetryProcessor",
    "BulkImportProcessor",
    "JobContext",
    "JobProcessor",
    "PlatformSyncProcessor",
    "ProgressReporter",
    "get_import_results",
]

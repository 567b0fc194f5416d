"""Job store implementations."""

from adsync_jobs.storage.base import JobStore
from adsync_jobs.storage.memory import MemoryJobStore
from adsync_jobs.storage.postgres import PostgresJobStore

__all__ = ["JobStore", "MemoryJobStore", "PostgresJobStore"]

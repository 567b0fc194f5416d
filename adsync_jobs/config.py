"""Configuration for the adsync job orchestration subsystem."""

import os
from typing import Dict, Optional

from adsync_jobs.models import DEFAULT_QUEUE_OPTIONS, QueueName, QueueOptions

ENV_PREFIX = "ADSYNC_JOBS_"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    raw = _env(name, str(default))
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = _env(name, str(default))
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from e


def _env_name(queue: QueueName) -> str:
    return queue.value.replace("-", "_").upper()


class JobsConfig:
    """Configuration object for workers, scheduler, cache and monitoring."""

    def __init__(
        self,
        db_dsn: Optional[str] = None,
        queue_concurrency: Optional[Dict[QueueName, int]] = None,
        poll_interval_seconds: float = 1.0,
        scheduler_interval_seconds: float = 5.0,
        cache_default_ttl_seconds: int = 300,
        cache_cleanup_interval_seconds: int = 60,
        cache_global_fallback: bool = False,
        cache_max_entries: int = 10000,
        health_failure_ratio: float = 0.1,
        health_max_active: int = 10,
        health_max_waiting: int = 100,
        http_timeout_seconds: float = 30.0,
        bulk_import_batch_pause_ms: int = 100,
        collaborators_module: Optional[str] = None,
    ):
        self.db_dsn = db_dsn
        self.queue_concurrency = {
            queue: options.concurrency for queue, options in DEFAULT_QUEUE_OPTIONS.items()
        }
        self.queue_concurrency.update(queue_concurrency or {})
        self.poll_interval_seconds = poll_interval_seconds
        self.scheduler_interval_seconds = scheduler_interval_seconds
        self.cache_default_ttl_seconds = cache_default_ttl_seconds
        self.cache_cleanup_interval_seconds = cache_cleanup_interval_seconds
        self.cache_global_fallback = cache_global_fallback
        self.cache_max_entries = cache_max_entries
        self.health_failure_ratio = health_failure_ratio
        self.health_max_active = health_max_active
        self.health_max_waiting = health_max_waiting
        self.http_timeout_seconds = http_timeout_seconds
        self.bulk_import_batch_pause_ms = bulk_import_batch_pause_ms
        self.collaborators_module = collaborators_module

    @classmethod
    def from_env(cls) -> "JobsConfig":
        """Create config from environment variables."""
        db_dsn = _env("DB_DSN")
        if not db_dsn:
            raise ValueError(f"{ENV_PREFIX}DB_DSN environment variable is required")

        queue_concurrency = {}
        for queue in QueueName:
            default = DEFAULT_QUEUE_OPTIONS[queue].concurrency
            concurrency = _env_int(f"{_env_name(queue)}_CONCURRENCY", default)
            if concurrency < 1:
                raise ValueError(
                    f"{ENV_PREFIX}{_env_name(queue)}_CONCURRENCY must be at least 1"
                )
            queue_concurrency[queue] = concurrency

        failure_ratio = _env_float("HEALTH_FAILURE_RATIO", 0.1)
        if not 0 <= failure_ratio <= 1:
            raise ValueError(
                f"{ENV_PREFIX}HEALTH_FAILURE_RATIO must be between 0 and 1"
            )

        global_fallback = _env("CACHE_GLOBAL_FALLBACK", "false").lower() in _TRUE_VALUES

        return cls(
            db_dsn=db_dsn,
            queue_concurrency=queue_concurrency,
            poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", 1.0),
            scheduler_interval_seconds=_env_float("SCHEDULER_INTERVAL_SECONDS", 5.0),
            cache_default_ttl_seconds=_env_int("CACHE_DEFAULT_TTL_SECONDS", 300),
            cache_cleanup_interval_seconds=_env_int(
                "CACHE_CLEANUP_INTERVAL_SECONDS", 60
            ),
            cache_global_fallback=global_fallback,
            cache_max_entries=_env_int("CACHE_MAX_ENTRIES", 10000),
            health_failure_ratio=failure_ratio,
            health_max_active=_env_int("HEALTH_MAX_ACTIVE", 10),
            health_max_waiting=_env_int("HEALTH_MAX_WAITING", 100),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 30.0),
            bulk_import_batch_pause_ms=_env_int("BULK_IMPORT_BATCH_PAUSE_MS", 100),
            collaborators_module=_env("COLLABORATORS_MODULE"),
        )

    def queue_options(self, queue: QueueName) -> QueueOptions:
        """Get effective options for a queue, with configured concurrency."""
        defaults = DEFAULT_QUEUE_OPTIONS[QueueName(queue)]
        return defaults.model_copy(
            update={"concurrency": self.queue_concurrency[QueueName(queue)]}
        )

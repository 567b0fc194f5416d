"""CLI entrypoint and programmatic interface for workers."""

import argparse
import asyncio
import importlib
import inspect
import logging
import os
import signal
import sys
from typing import Dict, List, Optional, Sequence

import asyncpg

from adsync_jobs.cache import TenantCache
from adsync_jobs.collaborators import Collaborators
from adsync_jobs.config import JobsConfig
from adsync_jobs.context import TenantLogFilter
from adsync_jobs.http_client import WebhookClient
from adsync_jobs.models import QueueName
from adsync_jobs.processors import (
    AnalyticsAggregationProcessor,
    ApiRetryProcessor,
    BulkImportProcessor,
    PlatformSyncProcessor,
)
from adsync_jobs.processors.base import JobProcessor
from adsync_jobs.registry import ProcessorRegistry
from adsync_jobs.scheduler import JobScheduler, run_scheduler_loop
from adsync_jobs.storage.postgres import PostgresJobStore
from adsync_jobs.worker import WorkerPool

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [tenant=%(tenant_id)s] %(message)s"


def setup_logging():
    """Setup logging configuration with the tenant of the current job."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format=LOG_FORMAT,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(TenantLogFilter())


async def create_db_pool(config: JobsConfig):
    """Create database connection pool."""
    return await asyncpg.create_pool(config.db_dsn, min_size=2, max_size=10)


async def load_collaborators(config: JobsConfig, db_pool) -> Collaborators:
    """
    Build collaborators from the configured module.

    The module must expose ``build_collaborators(config, db_pool)``
    returning (or resolving to) a Collaborators instance.
    """
    if not config.collaborators_module:
        raise ValueError("ADSYNC_JOBS_COLLABORATORS_MODULE is required to run workers")

    module = importlib.import_module(config.collaborators_module)
    collaborators = module.build_collaborators(config, db_pool)
    if inspect.isawaitable(collaborators):
        collaborators = await collaborators
    logger.info(f"Loaded collaborators from {config.collaborators_module}")
    return collaborators


def build_processors(
    collaborators: Collaborators,
    cache: TenantCache,
    config: JobsConfig,
    webhooks: Optional[WebhookClient] = None,
) -> Dict[QueueName, JobProcessor]:
    """Create the processor of every queue."""
    webhooks = webhooks or WebhookClient(timeout=config.http_timeout_seconds)
    return {
        QueueName.PLATFORM_SYNC: PlatformSyncProcessor(
            collaborators.tag_manager, collaborators.conversions
        ),
        QueueName.BULK_IMPORT: BulkImportProcessor(
            collaborators.customers,
            cache,
            batch_pause_ms=config.bulk_import_batch_pause_ms,
        ),
        QueueName.API_RETRY: ApiRetryProcessor(
            collaborators.ads,
            collaborators.conversions,
            collaborators.customers,
            webhooks,
        ),
        QueueName.ANALYTICS_AGGREGATION: AnalyticsAggregationProcessor(
            collaborators.analytics, collaborators.ads, cache
        ),
    }


async def run_worker(
    queues: Optional[Sequence[QueueName]] = None,
    config: Optional[JobsConfig] = None,
    db_pool=None,
    collaborators: Optional[Collaborators] = None,
    cache: Optional[TenantCache] = None,
    shutdown_event: Optional[asyncio.Event] = None,
):
    """
    Run workers, the scheduler loop and the cache sweep until shutdown.

    This function can be imported and used in your own code to run workers
    with custom collaborators or as part of a larger application.

    Args:
        queues: Queues to consume. If None, all four queues.
        config: JobsConfig instance. If None, will load from environment.
        db_pool: Database connection pool. If None, will create from config.
        collaborators: External clients. If None, loaded from the configured module.
        cache: Tenant cache shared by processors. If None, a new one is created.
        shutdown_event: Optional asyncio.Event for graceful shutdown.

    Example:
        ```python
        from adsync_jobs import JobsConfig, run_worker
        import asyncio

        config = JobsConfig.from_env()
        asyncio.run(run_worker(
            queues=["bulk-import", "api-retry"],
            config=config,
            collaborators=my_collaborators,
        ))
        ```
    """
    if config is None:
        config = JobsConfig.from_env()

    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    if cache is None:
        cache = TenantCache(
            default_ttl=config.cache_default_ttl_seconds,
            global_fallback=config.cache_global_fallback,
            max_entries=config.cache_max_entries,
        )

    db_pool_provided = db_pool is not None
    if db_pool is None:
        db_pool = await create_db_pool(config)

    try:
        if collaborators is None:
            collaborators = await load_collaborators(config, db_pool)

        store = PostgresJobStore(db_pool)
        scheduler = JobScheduler(store)

        registry = ProcessorRegistry()
        for queue, processor in build_processors(collaborators, cache, config).items():
            registry.register(processor, queue)

        pool = WorkerPool(
            registry,
            store,
            config,
            on_result=scheduler.handle_api_retry_result,
            queues=queues,
        )

        cache.start_periodic_cleanup(config.cache_cleanup_interval_seconds)
        await pool.start()
        scheduler_task = asyncio.create_task(
            run_scheduler_loop(
                scheduler,
                loop_interval_seconds=config.scheduler_interval_seconds,
                shutdown_event=shutdown_event,
            )
        )

        try:
            await shutdown_event.wait()
        finally:
            scheduler_task.cancel()
            await asyncio.gather(scheduler_task, return_exceptions=True)
            await pool.stop()
            await cache.stop_periodic_cleanup()
    finally:
        if not db_pool_provided and db_pool:
            await db_pool.close()


def parse_queues(values: Optional[List[str]]) -> Optional[List[QueueName]]:
    if not values:
        return None
    return [QueueName(value) for value in values]


def main():
    """Main entrypoint for workers."""
    setup_logging()

    parser = argparse.ArgumentParser(description="Adsync Jobs Worker")
    parser.add_argument(
        "--queue",
        action="append",
        choices=[queue.value for queue in QueueName],
        help="Queue to process; repeat for several (default: all queues)",
    )

    args = parser.parse_args()

    try:
        config = JobsConfig.from_env()
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    queues = parse_queues(args.queue)

    async def run():
        """Async main function."""
        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received signal {signum}, shutting down...")
            shutdown_event.set()

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, signal_handler, signum)

        try:
            names = ", ".join(q.value for q in queues) if queues else "all queues"
            logger.info(f"Starting workers for {names}...")
            await run_worker(queues=queues, config=config, shutdown_event=shutdown_event)
        except Exception as e:
            logger.error(f"Fatal error in worker: {e}", exc_info=True)
            sys.exit(1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""FastAPI router exposing job monitoring and operations."""

import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from adsync_jobs.errors import UnknownQueueError
from adsync_jobs.models import (
    CleanupResult,
    Dashboard,
    JobStatus,
    JobView,
    QueueHealth,
    QueueStats,
)
from adsync_jobs.monitoring import JobMonitoringService

logger = logging.getLogger(__name__)


def create_monitoring_router(
    service_factory: Callable[[], JobMonitoringService],
) -> APIRouter:
    """
    Create FastAPI router for job monitoring.

    Args:
        service_factory: Callable that returns a JobMonitoringService instance

    Returns:
        APIRouter instance
    """
    router = APIRouter()

    async def get_service() -> JobMonitoringService:
        """Dependency to get JobMonitoringService instance."""
        return service_factory()

    def unknown_queue(e: UnknownQueueError) -> HTTPException:
        return HTTPException(status_code=400, detail=f"Unknown queue: {e.queue_name}")

    @router.get("/jobs/dashboard", response_model=Dashboard)
    async def get_dashboard(service: JobMonitoringService = Depends(get_service)):
        """Stats of every queue and the health verdict."""
        try:
            return await service.get_dashboard()
        except Exception as e:
            logger.exception("Error getting dashboard")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get("/jobs/queues", response_model=List[QueueStats])
    async def get_all_queue_stats(service: JobMonitoringService = Depends(get_service)):
        try:
            return await service.get_all_queue_stats()
        except Exception as e:
            logger.exception("Error getting queue stats")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get("/jobs/queues/{queue}", response_model=QueueStats)
    async def get_queue_stats(
        queue: str,
        service: JobMonitoringService = Depends(get_service),
    ):
        try:
            return await service.get_queue_stats(queue)
        except UnknownQueueError as e:
            raise unknown_queue(e) from e
        except Exception as e:
            logger.exception("Error getting queue stats")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get("/jobs/queues/{queue}/jobs", response_model=List[JobView])
    async def get_queue_jobs(
        queue: str,
        status: Optional[JobStatus] = Query(None),
        limit: int = Query(50, ge=1, le=1000),
        offset: int = Query(0, ge=0),
        service: JobMonitoringService = Depends(get_service),
    ):
        """List jobs of a queue, newest first."""
        try:
            return await service.get_queue_jobs(queue, status=status, limit=limit, offset=offset)
        except UnknownQueueError as e:
            raise unknown_queue(e) from e
        except Exception as e:
            logger.exception("Error listing queue jobs")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get("/jobs/queues/{queue}/jobs/{job_id}", response_model=JobView)
    async def get_job(
        queue: str,
        job_id: str,
        service: JobMonitoringService = Depends(get_service),
    ):
        try:
            job = await service.get_job(queue, job_id)
        except UnknownQueueError as e:
            raise unknown_queue(e) from e
        except Exception as e:
            logger.exception("Error getting job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

        if job is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        return job

    @router.delete("/jobs/queues/{queue}/jobs/{job_id}")
    async def cancel_job(
        queue: str,
        job_id: str,
        service: JobMonitoringService = Depends(get_service),
    ):
        """Cancel a job that has not finished."""
        try:
            cancelled = await service.cancel_job(queue, job_id)
        except UnknownQueueError as e:
            raise unknown_queue(e) from e
        except Exception as e:
            logger.exception("Error cancelling job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

        if not cancelled:
            raise HTTPException(
                status_code=404, detail=f"Job {job_id} not found or already finished"
            )
        return {"success": True, "message": f"Job {job_id} cancelled"}

    @router.post("/jobs/queues/{queue}/jobs/{job_id}/retry")
    async def retry_job(
        queue: str,
        job_id: str,
        service: JobMonitoringService = Depends(get_service),
    ):
        """Move a failed job back to waiting."""
        try:
            retried = await service.retry_job(queue, job_id)
        except UnknownQueueError as e:
            raise unknown_queue(e) from e
        except Exception as e:
            logger.exception("Error retrying job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

        if not retried:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found or not failed")
        return {"success": True, "message": f"Job {job_id} queued for retry"}

    @router.get("/jobs/health", response_model=QueueHealth)
    async def get_health(service: JobMonitoringService = Depends(get_service)):
        try:
            return await service.get_queue_health()
        except Exception as e:
            logger.exception("Error getting queue health")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.post("/jobs/cleanup", response_model=CleanupResult)
    async def clean_old_jobs(
        older_than_hours: float = Query(24, gt=0),
        service: JobMonitoringService = Depends(get_service),
    ):
        """Remove completed jobs older than the given age."""
        try:
            return await service.clean_old_jobs(older_than_hours)
        except Exception as e:
            logger.exception("Error cleaning jobs")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get("/jobs/tenants/{tenant_id}", response_model=List[JobView])
    async def get_tenant_jobs(
        tenant_id: str,
        limit: int = Query(50, ge=1, le=1000),
        service: JobMonitoringService = Depends(get_service),
    ):
        try:
            return await service.get_tenant_jobs(tenant_id, limit=limit)
        except Exception as e:
            logger.exception("Error listing tenant jobs")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    return router

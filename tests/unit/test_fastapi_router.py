"""Unit tests for the monitoring FastAPI router."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from adsync_jobs.errors import UnknownQueueError
from adsync_jobs.fastapi_router import create_monitoring_router
from adsync_jobs.models import (
    CleanupResult,
    Dashboard,
    Job,
    JobStatus,
    JobView,
    QueueHealth,
    QueueName,
    QueueStats,
)
from adsync_jobs.monitoring import JobMonitoringService


@pytest.fixture
def mock_service():
    """Create a mock monitoring service."""
    service = MagicMock(spec=JobMonitoringService)
    service.get_dashboard = AsyncMock()
    service.get_all_queue_stats = AsyncMock(return_value=[])
    service.get_queue_stats = AsyncMock()
    service.get_queue_jobs = AsyncMock(return_value=[])
    service.get_job = AsyncMock(return_value=None)
    service.cancel_job = AsyncMock(return_value=True)
    service.retry_job = AsyncMock(return_value=True)
    service.get_queue_health = AsyncMock()
    service.clean_old_jobs = AsyncMock(return_value=CleanupResult())
    service.get_tenant_jobs = AsyncMock(return_value=[])
    return service


@pytest.fixture
def client(mock_service):
    """Create test client for an app with the router mounted."""
    app = FastAPI()
    app.include_router(create_monitoring_router(lambda: mock_service))
    return TestClient(app)


@pytest.fixture
def job_view(bulk_import_payload):
    job = Job(
        queue_name=QueueName.BULK_IMPORT,
        payload={**bulk_import_payload, "queue": "bulk-import"},
    )
    return JobView.from_job(job)


def test_get_queue_stats(client, mock_service):
    mock_service.get_queue_stats.return_value = QueueStats(
        queue_name=QueueName.BULK_IMPORT, waiting=2, total=2
    )

    response = client.get("/jobs/queues/bulk-import")

    assert response.status_code == 200
    assert response.json()["waiting"] == 2
    mock_service.get_queue_stats.assert_awaited_once_with("bulk-import")


def test_unknown_queue_is_bad_request(client, mock_service):
    mock_service.get_queue_stats.side_effect = UnknownQueueError("email-digest")

    response = client.get("/jobs/queues/email-digest")

    assert response.status_code == 400
    assert response.json()["detail"] == "Unknown queue: email-digest"


def test_unexpected_error_is_internal(client, mock_service):
    mock_service.get_all_queue_stats.side_effect = RuntimeError("db down")

    response = client.get("/jobs/queues")

    assert response.status_code == 500
    assert response.json()["detail"] == "Internal server error"


def test_list_queue_jobs_passes_filters(client, mock_service, job_view):
    mock_service.get_queue_jobs.return_value = [job_view]

    response = client.get(
        "/jobs/queues/bulk-import/jobs", params={"status": "failed", "limit": 10, "offset": 5}
    )

    assert response.status_code == 200
    assert response.json()[0]["id"] == job_view.id
    mock_service.get_queue_jobs.assert_awaited_once_with(
        "bulk-import", status=JobStatus.FAILED, limit=10, offset=5
    )


def test_list_queue_jobs_validates_query(client):
    assert client.get("/jobs/queues/bulk-import/jobs", params={"limit": 0}).status_code == 422
    assert client.get("/jobs/queues/bulk-import/jobs", params={"status": "gone"}).status_code == 422


def test_get_job(client, mock_service, job_view):
    assert client.get("/jobs/queues/bulk-import/jobs/missing").status_code == 404

    mock_service.get_job.return_value = job_view
    response = client.get(f"/jobs/queues/bulk-import/jobs/{job_view.id}")

    assert response.status_code == 200
    assert response.json()["tenant_id"] == "tenant-123"


def test_cancel_job(client, mock_service):
    response = client.delete("/jobs/queues/bulk-import/jobs/job-1")

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Job job-1 cancelled"}

    mock_service.cancel_job.return_value = False
    assert client.delete("/jobs/queues/bulk-import/jobs/job-1").status_code == 404


def test_retry_job(client, mock_service):
    assert client.post("/jobs/queues/api-retry/jobs/job-1/retry").status_code == 200

    mock_service.retry_job.return_value = False
    response = client.post("/jobs/queues/api-retry/jobs/job-1/retry")

    assert response.status_code == 404
    assert response.json()["detail"] == "Job job-1 not found or not failed"


def test_health_and_dashboard(client, mock_service):
    health = QueueHealth(
        healthy=False,
        issues=["High failure rate in bulk-import: 50.0%"],
        stats=[QueueStats(queue_name=QueueName.BULK_IMPORT, failed=1, completed=1, total=2)],
    )
    mock_service.get_queue_health.return_value = health
    mock_service.get_dashboard.return_value = Dashboard(stats=health.stats, health=health)

    assert client.get("/jobs/health").json()["healthy"] is False
    dashboard = client.get("/jobs/dashboard").json()
    assert dashboard["stats"][0]["queue_name"] == "bulk-import"


def test_cleanup(client, mock_service):
    mock_service.clean_old_jobs.return_value = CleanupResult(
        cleaned=3, queues=[QueueName.PLATFORM_SYNC]
    )

    response = client.post("/jobs/cleanup", params={"older_than_hours": 12})

    assert response.json() == {"cleaned": 3, "queues": ["platform-sync"]}
    mock_service.clean_old_jobs.assert_awaited_once_with(12)
    assert client.post("/jobs/cleanup", params={"older_than_hours": 0}).status_code == 422


def test_tenant_jobs(client, mock_service, job_view):
    mock_service.get_tenant_jobs.return_value = [job_view]

    response = client.get("/jobs/tenants/tenant-123", params={"limit": 5})

    assert len(response.json()) == 1
    mock_service.get_tenant_jobs.assert_awaited_once_with("tenant-123", limit=5)

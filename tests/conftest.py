"""Pytest configuration and fixtures."""

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from adsync_jobs.cache import TenantCache
from adsync_jobs.errors import CustomerEmailConflictError
from adsync_jobs.models import Job, QueueName
from adsync_jobs.processors.base import JobContext
from adsync_jobs.scheduler import JobScheduler
from adsync_jobs.storage.memory import MemoryJobStore


class FakeCustomerService:
    """In-memory customer service keyed by lower-cased email."""

    def __init__(self, existing_emails: Optional[List[str]] = None):
        self.customers: Dict[str, Dict[str, Any]] = {}
        for email in existing_emails or []:
            self.customers[email.lower()] = {"id": str(uuid4()), "email": email}
        self.created: List[Dict[str, Any]] = []
        self.updated: List[Dict[str, Any]] = []

    async def find_by_email(self, tenant_id: str, email: str) -> Optional[Dict[str, Any]]:
        return self.customers.get(email.lower())

    async def create(self, tenant_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        email = data["email"].lower()
        if email in self.customers:
            raise CustomerEmailConflictError(data["email"])
        customer = {**data, "id": str(uuid4()), "tenant_id": tenant_id}
        self.customers[email] = customer
        self.created.append(customer)
        return customer

    async def update(
        self, tenant_id: str, customer_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        self.updated.append({"id": customer_id, **data})
        return {"id": customer_id, **data}

    async def find_all(self, tenant_id: str, **filters: Any) -> List[Dict[str, Any]]:
        return list(self.customers.values())

    async def bulk_create(
        self, tenant_id: str, records: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        return [await self.create(tenant_id, record) for record in records]


@pytest.fixture
def sample_tenant_id():
    """Sample tenant ID for testing."""
    return "tenant-123"


@pytest.fixture
def store():
    """Fresh in-memory job store."""
    return MemoryJobStore()


@pytest.fixture
def scheduler(store):
    """Scheduler over the in-memory store."""
    return JobScheduler(store)


@pytest.fixture
def cache():
    """Tenant cache with default settings."""
    return TenantCache()


@pytest.fixture
def customers():
    """Fake customer service without existing customers."""
    return FakeCustomerService()


@pytest.fixture
def platform_sync_payload(sample_tenant_id):
    """CREATE platform sync payload."""
    return {
        "tenant_id": sample_tenant_id,
        "triggered_by": "user-1",
        "customer_id": "cust-1",
        "ads_account_id": "ads-1",
        "conversion_action_id": "conv-1",
        "container_id": "gtm-1",
        "sync_type": "CREATE",
    }


@pytest.fixture
def bulk_import_payload(sample_tenant_id):
    """Bulk import payload with three valid customers."""
    return {
        "tenant_id": sample_tenant_id,
        "import_id": "import-1",
        "customers": [
            {"email": f"user{i}@example.com", "first_name": f"User{i}"} for i in range(3)
        ],
    }


@pytest.fixture
def api_retry_payload(sample_tenant_id):
    """Ads API retry payload at its third retry."""
    return {
        "tenant_id": sample_tenant_id,
        "original_job_type": "google-ads-api",
        "original_job_data": {
            "operation": "get_campaigns",
            "arguments": {"ads_customer_id": "123"},
        },
        "retry_count": 2,
        "retry_strategy": {
            "exponential_backoff": True,
            "base_delay_ms": 1000,
            "backoff_multiplier": 2,
            "max_delay_ms": 30000,
        },
    }


@pytest.fixture
def analytics_payload(sample_tenant_id):
    """Daily analytics aggregation payload."""
    return {
        "tenant_id": sample_tenant_id,
        "aggregation_type": "DAILY",
        "date_range": {"start_date": "2024-05-01", "end_date": "2024-05-02"},
        "metrics": ["clicks", "impressions"],
        "dimensions": ["campaign.name"],
    }


@pytest.fixture
def leased_context(store):
    """Async factory: add a job to the store, lease it and wrap it in a JobContext."""

    async def factory(queue: QueueName, payload: Dict[str, Any], **fields: Any) -> JobContext:
        job = Job(queue_name=queue, payload={**payload, "queue": queue.value}, **fields)
        await store.add_job(job)
        leased = await store.lease_next_job(queue, job.created_at)
        return JobContext(leased, store)

    return factory


@pytest.fixture
def tag_manager():
    """Mock tag manager client."""
    client = MagicMock()
    client.has_credentials = AsyncMock(return_value=True)
    client.get_tag = AsyncMock(return_value={"parameter": []})
    client.create_tag = AsyncMock(return_value={"tag_id": "tag-1"})
    client.update_tag = AsyncMock(return_value={})
    client.delete_tag = AsyncMock(return_value=None)
    client.create_trigger = AsyncMock(return_value={"trigger_id": "trg-1"})
    return client


@pytest.fixture
def conversions():
    """Mock conversion actions client."""
    client = MagicMock()
    client.get_tag_snippets = AsyncMock(
        return_value={"conversion_id": "AW-123", "conversion_label": "abcDEF"}
    )
    client.get_conversion_actions = AsyncMock(return_value=[])
    client.create_conversion_action = AsyncMock(return_value={})
    client.update_conversion_action = AsyncMock(return_value={})
    client.link_with_tag_manager = AsyncMock(return_value={})
    return client


@pytest.fixture
def ads():
    """Mock ad-platform client."""
    client = MagicMock()
    client.get_customer_accounts = AsyncMock(return_value=[])
    client.get_campaigns = AsyncMock(return_value=[{"id": "c1"}])
    client.create_campaign = AsyncMock(return_value={})
    client.update_campaign = AsyncMock(return_value={})
    client.execute_query = AsyncMock(return_value=[])
    return client


@pytest.fixture
def webhooks():
    """Mock webhook sender."""
    client = MagicMock()
    client.request = AsyncMock(return_value={"status_code": 200, "headers": {}, "data": {}})
    return client


@pytest.fixture
def make_customers():
    """Factory for fake customer services seeded with existing emails."""
    return FakeCustomerService

"""Interfaces of the external services the processors call.

Implementations live outside this package. ``worker_main`` loads them from
the module named by ``ADSYNC_JOBS_COLLABORATORS_MODULE``, which must expose
``build_collaborators(config, db_pool) -> Collaborators``.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol


class TagManagerClient(Protocol):
    """Tag manager workspace operations for one tenant's container."""

    async def has_credentials(self, tenant_id: str, customer_id: str) -> bool: ...

    async def get_tag(self, tenant_id: str, container_id: str, tag_id: str) -> Dict[str, Any]: ...

    async def create_tag(
        self, tenant_id: str, container_id: str, tag: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def update_tag(
        self, tenant_id: str, container_id: str, tag_id: str, tag: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def delete_tag(self, tenant_id: str, container_id: str, tag_id: str) -> None: ...

    async def create_trigger(
        self, tenant_id: str, container_id: str, trigger: Dict[str, Any]
    ) -> Dict[str, Any]: ...


class ConversionActionsClient(Protocol):
    """Ad-platform conversion action operations."""

    async def get_tag_snippets(
        self, tenant_id: str, ads_account_id: str, conversion_action_id: str
    ) -> Dict[str, Any]: ...

    async def get_conversion_actions(self, tenant_id: str, **kwargs: Any) -> Any: ...

    async def create_conversion_action(self, tenant_id: str, **kwargs: Any) -> Any: ...

    async def update_conversion_action(self, tenant_id: str, **kwargs: Any) -> Any: ...

    async def link_with_tag_manager(self, tenant_id: str, **kwargs: Any) -> Any: ...


class AdsPlatformClient(Protocol):
    """Ad-platform account and campaign operations plus the query executor."""

    async def get_customer_accounts(self, tenant_id: str, **kwargs: Any) -> Any: ...

    async def get_campaigns(self, tenant_id: str, **kwargs: Any) -> Any: ...

    async def create_campaign(self, tenant_id: str, **kwargs: Any) -> Any: ...

    async def update_campaign(self, tenant_id: str, **kwargs: Any) -> Any: ...

    async def execute_query(
        self, tenant_id: str, ads_customer_id: str, query: str
    ) -> List[Dict[str, Any]]: ...


class CustomerService(Protocol):
    """Tenant customer records."""

    async def find_by_email(self, tenant_id: str, email: str) -> Optional[Dict[str, Any]]: ...

    async def create(self, tenant_id: str, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update(
        self, tenant_id: str, customer_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def find_all(self, tenant_id: str, **filters: Any) -> List[Dict[str, Any]]: ...

    async def bulk_create(
        self, tenant_id: str, records: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]: ...


class AnalyticsRepository(Protocol):
    """Tenant lookups and durable storage for analytics aggregations."""

    async def find_customer_ids(
        self, tenant_id: str, customer_ids: Optional[List[str]] = None
    ) -> List[str]: ...

    async def find_ads_accounts(
        self,
        tenant_id: str,
        customer_ids: List[str],
        ads_account_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]: ...

    async def save_aggregation(self, record: Dict[str, Any]) -> None: ...


class WebhookSender(Protocol):
    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]: ...


@dataclass
class Collaborators:
    """Everything the four processors need from the outside world."""

    ads: AdsPlatformClient
    conversions: ConversionActionsClient
    tag_manager: TagManagerClient
    customers: CustomerService
    analytics: AnalyticsRepository

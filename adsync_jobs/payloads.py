"""Typed job payloads, one variant per queue."""

from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class BasePayload(BaseModel):
    """Fields shared by every payload variant."""

    tenant_id: str = Field(min_length=1, pattern=r"^[^:]+$")
    triggered_by: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=5, ge=0)


# -- platform-sync --------------------------------------------------------


class SyncType(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class TriggerCondition(BaseModel):
    """One ``[variable, operator, value]`` trigger filter."""

    variable: str
    operator: str = "equals"
    value: str


class SyncChanges(BaseModel):
    tag_name: Optional[str] = None
    custom_parameters: Dict[str, Any] = Field(default_factory=dict)
    trigger_conditions: List[TriggerCondition] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.tag_name or self.custom_parameters or self.trigger_conditions)


class PlatformSyncPayload(BasePayload):
    queue: Literal["platform-sync"] = "platform-sync"
    customer_id: str
    ads_account_id: str
    conversion_action_id: str
    container_id: str
    sync_type: SyncType
    changes: SyncChanges = Field(default_factory=SyncChanges)

    @property
    def tag_id(self) -> Optional[str]:
        tag_id = self.metadata.get("tag_id")
        return str(tag_id) if tag_id else None

    @model_validator(mode="after")
    def _check_preconditions(self) -> "PlatformSyncPayload":
        if self.sync_type in (SyncType.UPDATE, SyncType.DELETE) and not self.tag_id:
            raise ValueError(
                f"{self.sync_type.value} sync requires metadata.tag_id of the existing tag"
            )
        if self.sync_type == SyncType.UPDATE and self.changes.is_empty():
            raise ValueError("UPDATE sync requires at least one change")
        return self


# -- bulk-import ----------------------------------------------------------


class CustomerRecord(BaseModel):
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class ImportSettings(BaseModel):
    skip_duplicates: bool = True
    update_existing: bool = False
    validate_emails: bool = True
    batch_size: int = Field(default=50, ge=1)


class BulkImportPayload(BasePayload):
    queue: Literal["bulk-import"] = "bulk-import"
    import_id: str = Field(min_length=1)
    customers: List[CustomerRecord]
    import_settings: ImportSettings = Field(default_factory=ImportSettings)


# -- api-retry ------------------------------------------------------------


class RetryStrategy(BaseModel):
    """Delay policy attached to api-retry payloads."""

    exponential_backoff: bool = True
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)


class RetryTarget(str, Enum):
    """Surface an api-retry job replays its call against."""

    ADS_API = "google-ads-api"
    TAG_MANAGER_API = "gtm-api"
    CUSTOMER_API = "customer-api"
    EXTERNAL_WEBHOOK = "external-webhook"
    HTTP = "http"


class AdsOperation(str, Enum):
    GET_CUSTOMER_ACCOUNTS = "get_customer_accounts"
    GET_CAMPAIGNS = "get_campaigns"
    CREATE_CAMPAIGN = "create_campaign"
    UPDATE_CAMPAIGN = "update_campaign"
    EXECUTE_QUERY = "execute_query"


class ConversionOperation(str, Enum):
    GET_CONVERSION_ACTIONS = "get_conversion_actions"
    CREATE_CONVERSION_ACTION = "create_conversion_action"
    UPDATE_CONVERSION_ACTION = "update_conversion_action"
    LINK_WITH_TAG_MANAGER = "link_with_tag_manager"


class CustomerOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    FIND_ALL = "find_all"
    BULK_CREATE = "bulk_create"


OPERATIONS_BY_TARGET = {
    RetryTarget.ADS_API: AdsOperation,
    RetryTarget.TAG_MANAGER_API: ConversionOperation,
    RetryTarget.CUSTOMER_API: CustomerOperation,
}


class ApiRetryPayload(BasePayload):
    queue: Literal["api-retry"] = "api-retry"
    original_job_type: RetryTarget
    original_job_data: Dict[str, Any] = Field(default_factory=dict)
    api_endpoint: Optional[str] = None
    http_method: str = "GET"
    request_payload: Optional[Any] = None
    last_error: Optional[str] = None
    retry_strategy: RetryStrategy = Field(default_factory=RetryStrategy)

    @model_validator(mode="after")
    def _check_operation(self) -> "ApiRetryPayload":
        self.http_method = self.http_method.upper()
        http_targets = (RetryTarget.EXTERNAL_WEBHOOK, RetryTarget.HTTP)
        if self.original_job_type in http_targets and not self.api_endpoint:
            raise ValueError(
                f"{self.original_job_type.value} retry requires api_endpoint"
            )
        operations = OPERATIONS_BY_TARGET.get(self.original_job_type)
        if operations is not None:
            operation = self.original_job_data.get("operation")
            allowed = [op.value for op in operations]
            if operation not in allowed:
                raise ValueError(
                    f"Unknown {self.original_job_type.value} operation {operation!r}, "
                    f"expected one of {allowed}"
                )
        return self

    @property
    def operation(self) -> Optional[str]:
        return self.original_job_data.get("operation")


# -- analytics-aggregation ------------------------------------------------


class AggregationType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class DateRange(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class AnalyticsAggregationPayload(BasePayload):
    queue: Literal["analytics-aggregation"] = "analytics-aggregation"
    aggregation_type: AggregationType
    date_range: DateRange
    metrics: List[str] = Field(min_length=1)
    dimensions: List[str] = Field(default_factory=list)
    customer_ids: Optional[List[str]] = None
    ads_account_ids: Optional[List[str]] = None
    campaign_ids: Optional[List[str]] = None
    filters: Dict[str, Any] = Field(default_factory=dict)


JobPayload = Annotated[
    Union[
        PlatformSyncPayload,
        BulkImportPayload,
        ApiRetryPayload,
        AnalyticsAggregationPayload,
    ],
    Field(discriminator="queue"),
]

"""Periodic aggregation of ad-platform metrics per tenant."""

import logging
from typing import Any, Dict, List

from adsync_jobs.cache import TenantCache
from adsync_jobs.collaborators import AdsPlatformClient, AnalyticsRepository
from adsync_jobs.models import JobResult, JobSummary, QueueName, utcnow
from adsync_jobs.payloads import AggregationType, AnalyticsAggregationPayload
from adsync_jobs.processors.base import JobContext, JobProcessor

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = {
    AggregationType.DAILY: 3600,
    AggregationType.WEEKLY: 21600,
    AggregationType.MONTHLY: 86400,
}


def analytics_cache_key(payload: AnalyticsAggregationPayload) -> str:
    return (
        f"analytics:{payload.aggregation_type.value.lower()}:{payload.tenant_id}:"
        f"{payload.date_range.start_date.isoformat()}:{payload.date_range.end_date.isoformat()}"
    )


def build_query(payload: AnalyticsAggregationPayload) -> str:
    """Build the campaign query for one ads account."""
    fields = [f"metrics.{metric}" for metric in payload.metrics]
    fields.extend(payload.dimensions)

    query = f"SELECT {', '.join(fields)} FROM campaign"
    query += (
        f' WHERE segments.date BETWEEN "{payload.date_range.start_date.isoformat()}"'
        f' AND "{payload.date_range.end_date.isoformat()}"'
    )

    if payload.campaign_ids:
        campaigns = " OR ".join(f"campaign.id = {cid}" for cid in payload.campaign_ids)
        query += f" AND ({campaigns})"

    for key, value in payload.filters.items():
        query += f' AND {key} = "{value}"'

    return query + " ORDER BY segments.date"


def merge_rows(aggregate: Dict[str, Any], rows: List[Dict[str, Any]]) -> None:
    """Fold query rows into running metric stats and dimension frequency tables."""
    aggregate["total_records"] += len(rows)
    metrics = aggregate["metrics"]
    dimensions = aggregate["dimensions"]

    for row in rows:
        for name, raw in (row.get("metrics") or {}).items():
            try:
                value = float(raw)
            except (TypeError, ValueError):
                value = 0.0
            stats = metrics.setdefault(
                name, {"total": 0.0, "count": 0, "min": None, "max": None, "average": 0.0}
            )
            stats["total"] += value
            stats["count"] += 1
            stats["min"] = value if stats["min"] is None else min(stats["min"], value)
            stats["max"] = value if stats["max"] is None else max(stats["max"], value)

        for name, value in row.items():
            if name == "metrics" or value is None:
                continue
            table = dimensions.setdefault(name, {})
            table[str(value)] = table.get(str(value), 0) + 1


def finalize(aggregate: Dict[str, Any]) -> None:
    """Derive averages and sort dimension tables by descending frequency."""
    for stats in aggregate["metrics"].values():
        if stats["count"]:
            stats["average"] = stats["total"] / stats["count"]
        stats["min"] = stats["min"] or 0
        stats["max"] = stats["max"] or 0

    aggregate["dimensions"] = {
        name: dict(sorted(table.items(), key=lambda item: item[1], reverse=True))
        for name, table in aggregate["dimensions"].items()
    }


class AnalyticsAggregationProcessor(JobProcessor):
    """
    Aggregates metrics across a tenant's ads accounts for a date range.

    The result is cached with a granularity-dependent TTL and upserted to
    durable storage. A failing account is logged and skipped.
    """

    queue = QueueName.ANALYTICS_AGGREGATION

    def __init__(
        self,
        repository: AnalyticsRepository,
        ads: AdsPlatformClient,
        cache: TenantCache,
    ):
        self.repository = repository
        self.ads = ads
        self.cache = cache

    async def handle(self, ctx: JobContext) -> JobResult:
        payload: AnalyticsAggregationPayload = ctx.job.payload
        started = utcnow()
        logger.info(
            f"Processing analytics aggregation job {ctx.job.id} "
            f"({payload.aggregation_type.value}) for tenant {payload.tenant_id}"
        )

        await ctx.progress.report(5)
        aggregate = await self._aggregate(ctx, payload)
        await ctx.progress.report(90)

        await self._store(payload, aggregate)
        await ctx.progress.report(100)

        logger.info(f"Analytics aggregation job {ctx.job.id} completed successfully")
        return JobResult(
            success=True,
            data=aggregate,
            summary=JobSummary(
                total_processed=aggregate["total_records"],
                successful=1,
                failed=0,
                duration_ms=int((utcnow() - started).total_seconds() * 1000),
            ),
        )

    async def _aggregate(
        self, ctx: JobContext, payload: AnalyticsAggregationPayload
    ) -> Dict[str, Any]:
        await ctx.progress.report(10)

        customer_ids = await self.repository.find_customer_ids(
            payload.tenant_id, payload.customer_ids or None
        )
        accounts = await self.repository.find_ads_accounts(
            payload.tenant_id, customer_ids, payload.ads_account_ids or None
        )
        await ctx.progress.report(20)

        aggregate: Dict[str, Any] = {
            "aggregation_type": payload.aggregation_type.value,
            "date_range": payload.date_range.model_dump(mode="json"),
            "metrics": {},
            "dimensions": {},
            "total_records": 0,
            "processed_customers": len(customer_ids),
            "processed_ads_accounts": len(accounts),
            "failed_ads_accounts": [],
            "generated_at": utcnow().isoformat(),
        }

        query = build_query(payload)
        for index, account in enumerate(accounts):
            await ctx.progress.report(20 + index / len(accounts) * 60)
            # a row missing either id is a repository error, not an account failure
            record_id, platform_id = account["id"], str(account["account_id"])
            try:
                rows = await self.ads.execute_query(payload.tenant_id, platform_id, query)
                merge_rows(aggregate, rows)
            except Exception as e:
                logger.warning(
                    f"Failed to aggregate data for account {record_id} ({platform_id}): {e}"
                )
                aggregate["failed_ads_accounts"].append(record_id)

        await ctx.progress.report(85)
        finalize(aggregate)
        return aggregate

    async def _store(
        self, payload: AnalyticsAggregationPayload, aggregate: Dict[str, Any]
    ) -> None:
        await self.cache.set(
            analytics_cache_key(payload),
            aggregate,
            ttl=CACHE_TTL_SECONDS[payload.aggregation_type],
            tenant_id=payload.tenant_id,
        )
        await self.repository.save_aggregation(
            {
                "tenant_id": payload.tenant_id,
                "aggregation_type": payload.aggregation_type.value,
                "date_range_start": payload.date_range.start_date,
                "date_range_end": payload.date_range.end_date,
                "metrics": payload.metrics,
                "dimensions": payload.dimensions,
                "total_records": aggregate["total_records"],
                "processed_customers": aggregate["processed_customers"],
                "processed_ads_accounts": aggregate["processed_ads_accounts"],
                "data": aggregate,
            }
        )

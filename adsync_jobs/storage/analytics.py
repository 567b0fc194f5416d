"""PostgreSQL analytics repository built on asyncpg."""

import json
from typing import Any, Dict, List, Optional

import asyncpg


class PostgresAnalyticsStore:
    """
    Tenant lookups and aggregation persistence for the analytics processor.

    Reads the application's ``customers`` and ``ads_accounts`` tables and
    upserts into ``analytics_aggregations`` (see ``adsync_jobs.ddl``).
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def find_customer_ids(
        self, tenant_id: str, customer_ids: Optional[List[str]] = None
    ) -> List[str]:
        """Given customer ids of the tenant, or all of its active customers."""
        async with self.db_pool.acquire() as conn:
            if customer_ids:
                rows = await conn.fetch(
                    """
                    SELECT id FROM customers
                    WHERE tenant_id = $1 AND id = ANY($2::text[])
                    ORDER BY id
                    """,
                    tenant_id,
                    customer_ids,
                )
            else:
                rows = await conn.fetch(
                    """
                    SELECT id FROM customers
                    WHERE tenant_id = $1 AND status = 'ACTIVE'
                    ORDER BY id
                    """,
                    tenant_id,
                )
        return [str(row["id"]) for row in rows]

    async def find_ads_accounts(
        self,
        tenant_id: str,
        customer_ids: List[str],
        ads_account_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        query = """
            SELECT id, customer_id, account_id, account_name FROM ads_accounts
            WHERE tenant_id = $1 AND customer_id = ANY($2::text[])
        """
        params: List[Any] = [tenant_id, customer_ids]
        if ads_account_ids:
            query += " AND id = ANY($3::text[])"
            params.append(ads_account_ids)
        query += " ORDER BY id"

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [dict(row) for row in rows]

    async def save_aggregation(self, record: Dict[str, Any]) -> None:
        """Insert or replace the aggregation of one (tenant, type, range)."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO analytics_aggregations (
                    tenant_id, aggregation_type, date_range_start, date_range_end,
                    metrics, dimensions, total_records, processed_customers,
                    processed_ads_accounts, generated_at, data
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, now(), $10)
                ON CONFLICT (tenant_id, aggregation_type, date_range_start, date_range_end)
                DO UPDATE SET
                    metrics = EXCLUDED.metrics,
                    dimensions = EXCLUDED.dimensions,
                    total_records = EXCLUDED.total_records,
                    processed_customers = EXCLUDED.processed_customers,
                    processed_ads_accounts = EXCLUDED.processed_ads_accounts,
                    generated_at = EXCLUDED.generated_at,
                    data = EXCLUDED.data
                """,
                record["tenant_id"],
                record["aggregation_type"],
                record["date_range_start"],
                record["date_range_end"],
                json.dumps(record["metrics"]),
                json.dumps(record["dimensions"]),
                record["total_records"],
                record["processed_customers"],
                record["processed_ads_accounts"],
                json.dumps(record["data"], default=str),
            )

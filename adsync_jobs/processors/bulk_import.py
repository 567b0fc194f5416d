"""Batched customer import."""

import asyncio
import logging
import math
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from adsync_jobs.cache import TenantCache
from adsync_jobs.collaborators import CustomerService
from adsync_jobs.errors import CustomerEmailConflictError
from adsync_jobs.models import JobResult, JobSummary, QueueName, utcnow
from adsync_jobs.payloads import BulkImportPayload, CustomerRecord, ImportSettings
from adsync_jobs.processors.base import JobContext, JobProcessor

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

IMPORT_RESULTS_TTL_SECONDS = 86400


def import_results_key(import_id: str) -> str:
    return f"import:{import_id}:results"


async def get_import_results(
    cache: TenantCache, tenant_id: str, import_id: str
) -> Optional[Dict[str, List[Dict[str, Any]]]]:
    """Read the outcome lists of a finished import, if still cached."""
    return await cache.get(import_results_key(import_id), tenant_id=tenant_id)


def _update_fields(record: CustomerRecord) -> Dict[str, Any]:
    """Only the fields the import actually carries a value for."""
    fields = record.model_dump(exclude={"email"})
    return {key: value for key, value in fields.items() if value}


class BulkImportProcessor(JobProcessor):
    """
    Imports customer records in fixed-size batches.

    Each record is skipped, updated or created depending on the import
    settings. A failing record is recorded and never aborts its batch. The
    outcome lists are cached for 24 hours under ``import:<id>:results``.
    """

    queue = QueueName.BULK_IMPORT

    def __init__(
        self,
        customers: CustomerService,
        cache: TenantCache,
        batch_pause_ms: int = 100,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.customers = customers
        self.cache = cache
        self.batch_pause_ms = batch_pause_ms
        self._sleep = sleep

    async def handle(self, ctx: JobContext) -> JobResult:
        payload: BulkImportPayload = ctx.job.payload
        settings = payload.import_settings
        started = utcnow()
        total = len(payload.customers)
        batch_size = settings.batch_size
        total_batches = math.ceil(total / batch_size) if total else 0

        logger.info(
            f"Processing bulk import job {ctx.job.id} ({total} records) "
            f"for tenant {payload.tenant_id}"
        )

        results: Dict[str, List[Dict[str, Any]]] = {
            "successful": [],
            "failed": [],
            "skipped": [],
            "duplicates": [],
        }

        await ctx.progress.report(5)

        for start in range(0, total, batch_size):
            await ctx.check_cancelled()

            batch = payload.customers[start:start + batch_size]
            logger.info(
                f"Processing batch {start // batch_size + 1}/{total_batches} "
                f"with {len(batch)} customers"
            )
            await self._process_batch(payload.tenant_id, batch, settings, results)

            done = start + len(batch)
            await ctx.progress.report(min(95, done / total * 90 + 5))

            if done < total and self.batch_pause_ms:
                await self._sleep(self.batch_pause_ms / 1000)

        await self.cache.set(
            import_results_key(payload.import_id),
            results,
            ttl=IMPORT_RESULTS_TTL_SECONDS,
            tenant_id=payload.tenant_id,
        )

        await ctx.progress.report(100)
        logger.info(
            f"Bulk import job {ctx.job.id} completed. "
            f"Successful: {len(results['successful'])}, Failed: {len(results['failed'])}, "
            f"Skipped: {len(results['skipped'])}, Duplicates: {len(results['duplicates'])}"
        )

        return JobResult(
            success=True,
            data={
                "import_id": payload.import_id,
                "counts": {name: len(items) for name, items in results.items()},
            },
            summary=JobSummary(
                total_processed=total,
                successful=len(results["successful"]),
                failed=len(results["failed"]),
                duration_ms=int((utcnow() - started).total_seconds() * 1000),
            ),
        )

    async def _process_batch(
        self,
        tenant_id: str,
        batch: List[CustomerRecord],
        settings: ImportSettings,
        results: Dict[str, List[Dict[str, Any]]],
    ) -> None:
        for record in batch:
            data = record.model_dump(mode="json")
            try:
                if settings.validate_emails and not EMAIL_RE.match(record.email):
                    results["failed"].append(
                        {"email": record.email, "error": "Invalid email format", "data": data}
                    )
                    continue

                if settings.skip_duplicates or settings.update_existing:
                    existing = await self._find_existing(tenant_id, record.email)
                    if existing is not None:
                        if settings.update_existing:
                            updated = await self.customers.update(
                                tenant_id, str(existing["id"]), _update_fields(record)
                            )
                            results["successful"].append(
                                {"action": "updated", "customer": updated, "data": data}
                            )
                        else:
                            results["skipped"].append(
                                {
                                    "email": record.email,
                                    "reason": "Duplicate email",
                                    "existing_customer_id": existing.get("id"),
                                    "data": data,
                                }
                            )
                        continue

                created = await self.customers.create(
                    tenant_id, {**data, "status": "ACTIVE"}
                )
                results["successful"].append(
                    {"action": "created", "customer": created, "data": data}
                )

            except CustomerEmailConflictError as e:
                results["duplicates"].append(
                    {"email": record.email, "error": str(e), "data": data}
                )
            except Exception as e:
                logger.warning(f"Failed to import customer {record.email}: {e}")
                results["failed"].append(
                    {"email": record.email, "error": str(e), "data": data}
                )

    async def _find_existing(self, tenant_id: str, email: str) -> Optional[Dict[str, Any]]:
        try:
            customer = await self.customers.find_by_email(tenant_id, email)
        except Exception as e:
            logger.warning(f"Could not check for existing customer with email {email}: {e}")
            return None

        if customer and str(customer.get("email", "")).lower() == email.lower():
            return customer
        return None

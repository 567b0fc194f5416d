"""Replay of failed external API calls."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from adsync_jobs import __version__
from adsync_jobs.collaborators import (
    AdsPlatformClient,
    ConversionActionsClient,
    CustomerService,
    WebhookSender,
)
from adsync_jobs.errors import JobCancelledError
from adsync_jobs.models import JobError, JobResult, JobSummary, QueueName, utcnow
from adsync_jobs.payloads import (
    AdsOperation,
    ApiRetryPayload,
    ConversionOperation,
    CustomerOperation,
    RetryTarget,
)
from adsync_jobs.processors.base import JobContext, JobProcessor
from adsync_jobs.retry import calculate_retry_delay, classify_error, should_retry_again

logger = logging.getLogger(__name__)

USER_AGENT = f"adsync-jobs/{__version__}"
BODY_METHODS = ("POST", "PUT", "PATCH")
DEFAULT_TIMEOUT_SECONDS = 30.0

Call = Callable[[Any, str, Dict[str, Any]], Awaitable[Any]]

# One entry per operation of each target; tests assert the tables are complete
ADS_CALLS: Dict[AdsOperation, Call] = {
    AdsOperation.GET_CUSTOMER_ACCOUNTS: lambda c, t, a: c.get_customer_accounts(t, **a),
    AdsOperation.GET_CAMPAIGNS: lambda c, t, a: c.get_campaigns(t, **a),
    AdsOperation.CREATE_CAMPAIGN: lambda c, t, a: c.create_campaign(t, **a),
    AdsOperation.UPDATE_CAMPAIGN: lambda c, t, a: c.update_campaign(t, **a),
    AdsOperation.EXECUTE_QUERY: lambda c, t, a: c.execute_query(
        t, a["ads_customer_id"], a["query"]
    ),
}

CONVERSION_CALLS: Dict[ConversionOperation, Call] = {
    ConversionOperation.GET_CONVERSION_ACTIONS: lambda c, t, a: c.get_conversion_actions(
        t, **a
    ),
    ConversionOperation.CREATE_CONVERSION_ACTION: lambda c, t, a: c.create_conversion_action(
        t, **a
    ),
    ConversionOperation.UPDATE_CONVERSION_ACTION: lambda c, t, a: c.update_conversion_action(
        t, **a
    ),
    ConversionOperation.LINK_WITH_TAG_MANAGER: lambda c, t, a: c.link_with_tag_manager(
        t, **a
    ),
}

CUSTOMER_CALLS: Dict[CustomerOperation, Call] = {
    CustomerOperation.CREATE: lambda s, t, a: s.create(t, a["data"]),
    CustomerOperation.UPDATE: lambda s, t, a: s.update(t, a["customer_id"], a["data"]),
    CustomerOperation.FIND_ALL: lambda s, t, a: s.find_all(t, **a.get("filters", {})),
    CustomerOperation.BULK_CREATE: lambda s, t, a: s.bulk_create(t, a["records"]),
}


class ApiRetryProcessor(JobProcessor):
    """
    Replays one failed call after a strategy-defined delay.

    Never raises for a failed replay: the result reports whether the
    scheduler should enqueue another retry and with which retry count.
    """

    queue = QueueName.API_RETRY

    def __init__(
        self,
        ads: AdsPlatformClient,
        conversions: ConversionActionsClient,
        customers: CustomerService,
        webhooks: WebhookSender,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.ads = ads
        self.conversions = conversions
        self.customers = customers
        self.webhooks = webhooks
        self._sleep = sleep

    async def handle(self, ctx: JobContext) -> JobResult:
        payload: ApiRetryPayload = ctx.job.payload
        started = utcnow()
        logger.info(
            f"Processing API retry job {ctx.job.id} for {payload.original_job_type.value} "
            f"(attempt {payload.retry_count}/{payload.max_retries})"
        )

        try:
            await ctx.progress.report(10)

            delay_ms = calculate_retry_delay(payload.retry_strategy, payload.retry_count)
            if delay_ms > 0:
                logger.info(f"Waiting {delay_ms}ms before retry attempt")
                await self._sleep(delay_ms / 1000)
            await ctx.check_cancelled()

            await ctx.progress.report(30)
            data = await self._dispatch(ctx, payload)
            await ctx.progress.report(100)

        except JobCancelledError:
            raise
        except Exception as e:
            logger.error(f"API retry job {ctx.job.id} failed: {e}", exc_info=True)
            retry_again = should_retry_again(e, payload.retry_count, payload.max_retries)
            details = {
                "should_retry_again": retry_again,
                "next_retry_count": payload.retry_count + 1,
                "error_kind": classify_error(e).value,
            }
            error_details = dict(details, error_type=type(e).__name__)
            for attr in ("status_code", "code"):
                if getattr(e, attr, None) is not None:
                    error_details[attr] = getattr(e, attr)
            return JobResult(
                success=False,
                data=details,
                errors=[JobError(message=str(e), details=error_details)],
                summary=JobSummary(
                    total_processed=1,
                    successful=0,
                    failed=1,
                    duration_ms=int((utcnow() - started).total_seconds() * 1000),
                ),
            )

        logger.info(
            f"API retry job {ctx.job.id} completed successfully after "
            f"{payload.retry_count} retries"
        )
        return JobResult(
            success=True,
            data={"response": data},
            summary=JobSummary(
                total_processed=1,
                successful=1,
                failed=0,
                duration_ms=int((utcnow() - started).total_seconds() * 1000),
            ),
        )

    async def _dispatch(self, ctx: JobContext, payload: ApiRetryPayload) -> Any:
        await ctx.progress.report(40)
        target = payload.original_job_type
        arguments = payload.original_job_data.get("arguments", {})

        if target == RetryTarget.ADS_API:
            call = ADS_CALLS[AdsOperation(payload.operation)]
            return await call(self.ads, payload.tenant_id, arguments)
        if target == RetryTarget.TAG_MANAGER_API:
            call = CONVERSION_CALLS[ConversionOperation(payload.operation)]
            return await call(self.conversions, payload.tenant_id, arguments)
        if target == RetryTarget.CUSTOMER_API:
            call = CUSTOMER_CALLS[CustomerOperation(payload.operation)]
            return await call(self.customers, payload.tenant_id, arguments)
        if target == RetryTarget.EXTERNAL_WEBHOOK:
            return await self._replay_webhook(ctx, payload)
        return await self._replay_http(ctx, payload)

    def _body(self, payload: ApiRetryPayload) -> Any:
        if payload.request_payload is not None and payload.http_method in BODY_METHODS:
            return payload.request_payload
        return None

    async def _replay_webhook(self, ctx: JobContext, payload: ApiRetryPayload) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        await ctx.progress.report(70)
        return await self.webhooks.request(
            payload.http_method,
            payload.api_endpoint,
            json_body=self._body(payload),
            headers=headers,
            timeout=DEFAULT_TIMEOUT_SECONDS,
        )

    async def _replay_http(self, ctx: JobContext, payload: ApiRetryPayload) -> Dict[str, Any]:
        original = payload.original_job_data
        headers = {"Content-Type": "application/json", **original.get("headers", {})}
        await ctx.progress.report(70)
        return await self.webhooks.request(
            payload.http_method,
            payload.api_endpoint,
            json_body=self._body(payload),
            headers=headers,
            params=original.get("params"),
            timeout=original.get("timeout", DEFAULT_TIMEOUT_SECONDS),
        )

"""Tag manager synchronisation of ad-platform conversion actions."""

import logging
from typing import Any, Dict, List

from adsync_jobs.collaborators import ConversionActionsClient, TagManagerClient
from adsync_jobs.errors import AuthenticationError, JobValidationError
from adsync_jobs.models import JobResult, JobSummary, QueueName, utcnow
from adsync_jobs.payloads import PlatformSyncPayload, SyncType, TriggerCondition
from adsync_jobs.processors.base import JobContext, JobProcessor

logger = logging.getLogger(__name__)

CONVERSION_TAG_TYPE = "awct"


def _param(key: str, value: Any) -> Dict[str, str]:
    return {"type": "TEMPLATE", "key": key, "value": str(value)}


def build_trigger(tag_id: str, conditions: List[TriggerCondition]) -> Dict[str, Any]:
    """Page-view trigger firing when every condition matches."""
    return {
        "name": f"Trigger for Tag {tag_id}",
        "type": "PAGE_VIEW",
        "filter": [
            {
                "type": condition.variable.lower().replace(" ", "_"),
                "parameter": [
                    _param("operator", condition.operator),
                    _param("arg0", condition.value),
                ],
            }
            for condition in conditions
        ],
    }


class PlatformSyncProcessor(JobProcessor):
    """
    Creates, updates or deletes the conversion tracking tag of a
    conversion action in the tenant's tag manager container.

    Failures propagate so the queue retries the job with its backoff.
    """

    queue = QueueName.PLATFORM_SYNC

    def __init__(
        self,
        tag_manager: TagManagerClient,
        conversions: ConversionActionsClient,
    ):
        self.tag_manager = tag_manager
        self.conversions = conversions

    async def handle(self, ctx: JobContext) -> JobResult:
        payload: PlatformSyncPayload = ctx.job.payload
        started = utcnow()
        logger.info(
            f"Processing platform sync job {ctx.job.id} ({payload.sync_type.value}) "
            f"for customer {payload.customer_id}"
        )

        await ctx.progress.report(10)
        if not await self.tag_manager.has_credentials(payload.tenant_id, payload.customer_id):
            raise AuthenticationError(
                f"No valid tag manager credentials for customer {payload.customer_id}"
            )
        await ctx.progress.report(20)

        if payload.sync_type == SyncType.CREATE:
            data = await self._create_tag(ctx, payload)
        elif payload.sync_type == SyncType.UPDATE:
            data = await self._update_tag(ctx, payload)
        else:
            data = await self._delete_tag(ctx, payload)

        await ctx.progress.report(100)
        logger.info(f"Platform sync job {ctx.job.id} completed successfully")

        return JobResult(
            success=True,
            data=data,
            summary=JobSummary(
                total_processed=1,
                successful=1,
                failed=0,
                duration_ms=int((utcnow() - started).total_seconds() * 1000),
            ),
        )

    def _require_tag_id(self, payload: PlatformSyncPayload) -> str:
        if not payload.tag_id:
            raise JobValidationError(
                f"Tag id not found in job metadata for {payload.sync_type.value} operation"
            )
        return payload.tag_id

    async def _create_tag(
        self, ctx: JobContext, payload: PlatformSyncPayload
    ) -> Dict[str, Any]:
        await ctx.progress.report(30)

        snippets = await self.conversions.get_tag_snippets(
            payload.tenant_id, payload.ads_account_id, payload.conversion_action_id
        )
        await ctx.progress.report(50)

        conversion_id = snippets.get("conversion_id")
        conversion_label = snippets.get("conversion_label")
        if not conversion_id or not conversion_label:
            raise JobValidationError(
                "Unable to extract conversion id and label from tag snippets"
            )

        changes = payload.changes
        tag_name = changes.tag_name or (
            f"Ads Conversion - {payload.conversion_action_id}"
        )
        parameters = [
            _param("conversionId", conversion_id),
            _param("conversionLabel", conversion_label),
            _param("enableNewCustomerReporting", "false"),
            _param("enableEnhancedConversion", "false"),
        ]
        parameters.extend(_param(k, v) for k, v in changes.custom_parameters.items())
        await ctx.progress.report(70)

        created = await self.tag_manager.create_tag(
            payload.tenant_id,
            payload.container_id,
            {"name": tag_name, "type": CONVERSION_TAG_TYPE, "parameter": parameters},
        )
        tag_id = str(created["tag_id"])
        await ctx.progress.report(85)

        trigger_id = None
        if changes.trigger_conditions:
            trigger = await self.tag_manager.create_trigger(
                payload.tenant_id,
                payload.container_id,
                build_trigger(tag_id, changes.trigger_conditions),
            )
            trigger_id = str(trigger["trigger_id"])
            await self.tag_manager.update_tag(
                payload.tenant_id,
                payload.container_id,
                tag_id,
                {"firingTriggerId": [trigger_id]},
            )
            logger.info(f"Created trigger {trigger_id} for tag {tag_id}")

        return {
            "tag_id": tag_id,
            "tag_name": tag_name,
            "trigger_id": trigger_id,
            "conversion_id": conversion_id,
            "conversion_label": conversion_label,
            "container_id": payload.container_id,
        }

    async def _update_tag(
        self, ctx: JobContext, payload: PlatformSyncPayload
    ) -> Dict[str, Any]:
        await ctx.progress.report(30)
        tag_id = self._require_tag_id(payload)
        await ctx.progress.report(50)

        changes = payload.changes
        update: Dict[str, Any] = {}
        if changes.tag_name:
            update["name"] = changes.tag_name

        if changes.custom_parameters:
            existing = await self.tag_manager.get_tag(
                payload.tenant_id, payload.container_id, tag_id
            )
            parameters = [dict(p) for p in existing.get("parameter", [])]
            by_key = {p.get("key"): p for p in parameters}
            for key, value in changes.custom_parameters.items():
                if key in by_key:
                    by_key[key]["value"] = str(value)
                else:
                    parameters.append(_param(key, value))
            update["parameter"] = parameters

        if changes.trigger_conditions:
            trigger = await self.tag_manager.create_trigger(
                payload.tenant_id,
                payload.container_id,
                build_trigger(tag_id, changes.trigger_conditions),
            )
            update["firingTriggerId"] = [str(trigger["trigger_id"])]
        await ctx.progress.report(70)

        await self.tag_manager.update_tag(
            payload.tenant_id, payload.container_id, tag_id, update
        )
        await ctx.progress.report(90)

        return {
            "tag_id": tag_id,
            "updated_fields": sorted(update),
            "container_id": payload.container_id,
        }

    async def _delete_tag(
        self, ctx: JobContext, payload: PlatformSyncPayload
    ) -> Dict[str, Any]:
        await ctx.progress.report(30)
        tag_id = self._require_tag_id(payload)
        await ctx.progress.report(60)

        await self.tag_manager.delete_tag(payload.tenant_id, payload.container_id, tag_id)
        await ctx.progress.report(90)

        return {"tag_id": tag_id, "deleted": True, "container_id": payload.container_id}

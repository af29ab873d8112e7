"""
Webhook Ingestion — הסדר הקבוע לכל משלוח:

    store raw event → idempotency → process → ledger (בכשלון)

endpoint קורא ל-ingest אחרי אימות ופענוח, ומחזיר לפלטפורמה תשובת הצלחה
גם כשהעיבוד נכשל — הכשלון כבר רשום ב-retry ledger.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utcnow
from app.core.logging import clear_event_context, get_logger, set_event_context
from app.db.models.meeting import MeetingPlatform
from app.domain.processors.base import InboundEvent, ProcessResult
from app.domain.processors.dependencies import ProcessorDependencies
from app.domain.processors.registry import get_processor
from app.domain.services.idempotency_service import IdempotencyService
from app.domain.services.raw_event_service import RawEventService
from app.domain.services.webhook_retry_service import WebhookRetryService

logger = get_logger(__name__)


@dataclass
class IngestionOutcome:
    raw_event_id: int
    duplicate: bool = False
    result: ProcessResult | None = None
    error: str | None = None
    failure_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"rawEventId": self.raw_event_id}
        if self.duplicate:
            data["duplicate"] = True
        if self.result is not None:
            data.update(self.result.to_dict())
        if self.error is not None:
            data["error"] = "Internal processing error"
            data["failureId"] = self.failure_id
        return data


class WebhookIngestionService:
    def __init__(self, db: AsyncSession, deps: ProcessorDependencies, clock: Clock = utcnow):
        self.db = db
        self.deps = deps
        self._clock = clock
        self.raw_events = RawEventService(db, clock=clock)
        self.idempotency = IdempotencyService(db, clock=clock)
        self.retries = WebhookRetryService(db, alert_notifier=deps.alert_notifier, clock=clock)

    async def ingest(
        self,
        platform: MeetingPlatform,
        event_type: str,
        external_event_id: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> IngestionOutcome:
        raw_event = await self.raw_events.store_raw_event(
            platform, event_type, external_event_id, payload, metadata
        )
        raw_event_id = raw_event.id
        set_event_context(platform=platform.value, event_type=event_type, raw_event_id=raw_event_id)
        try:
            return await self._process(platform, event_type, external_event_id, payload, raw_event_id)
        finally:
            clear_event_context()

    async def _process(
        self,
        platform: MeetingPlatform,
        event_type: str,
        external_event_id: str,
        payload: dict[str, Any],
        raw_event_id: int,
    ) -> IngestionOutcome:
        if not await self.idempotency.acquire_event_lock(external_event_id, platform):
            await self.raw_events.mark_processed(raw_event_id)
            return IngestionOutcome(raw_event_id=raw_event_id, duplicate=True)

        event = InboundEvent(
            platform=platform,
            event_type=event_type,
            payload=payload,
            external_event_id=external_event_id,
            raw_event_id=raw_event_id,
        )
        try:
            result = await get_processor(platform, self.db, self.deps, clock=self._clock).process(event)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(
                "Webhook processing failed, recording for retry",
                extra_data={"error": error, "error_type": e.__class__.__name__},
                exc_info=True,
            )
            await self.db.rollback()
            await self.raw_events.mark_failed(raw_event_id, error)
            failure = await self.retries.record_webhook_failure(
                platform, event_type, payload, error, raw_event_id=raw_event_id
            )
            return IngestionOutcome(raw_event_id=raw_event_id, error=error, failure_id=failure.id)

        await self.raw_events.mark_processed(raw_event_id, result.meeting_id)
        logger.info(
            "Webhook processed",
            extra_data={"action": result.action.value, "meeting_id": result.meeting_id, "reason": result.reason},
        )
        return IngestionOutcome(raw_event_id=raw_event_id, result=result)

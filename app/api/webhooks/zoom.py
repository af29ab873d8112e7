"""
Zoom Webhook Handler

מקבל אירועי Zoom (meeting.ended / recording.completed /
recording.transcript_completed), מאמת חתימה ומעביר ל-ingestion.
כשלון עיבוד לא מוחזר ל-Zoom — נרשם ב-retry ledger ו-Zoom מקבל 200.
"""
from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.processors import get_processor_dependencies
from app.api.dependencies.webhook_auth import verify_zoom_signature_header
from app.core.config import settings
from app.core.exceptions import InvalidEventPayloadError
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.meeting import MeetingPlatform
from app.domain.events import ZoomEventType, parse_platform_payload
from app.domain.processors.dependencies import ProcessorDependencies
from app.domain.services.ingestion_service import WebhookIngestionService
from app.domain.services.platforms.zoom import build_url_validation_response

logger = get_logger(__name__)

router = APIRouter()

# אירועים שדורשים object.uuid: בלעדיו אין מפתח dedup ואין שיחה
_MEETING_EVENTS = {
    ZoomEventType.MEETING_ENDED,
    ZoomEventType.RECORDING_COMPLETED,
    ZoomEventType.TRANSCRIPT_COMPLETED,
}


def _decode_body(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidEventPayloadError(MeetingPlatform.ZOOM.value, "Invalid JSON body") from e
    if not isinstance(payload, dict):
        raise InvalidEventPayloadError(MeetingPlatform.ZOOM.value, "Webhook payload must be a JSON object")
    return payload


@router.post(
    "/zoom",
    summary="Zoom Webhook",
    description="קליטת אירועי Zoom — אימות x-zm-signature, url_validation ו-ingestion.",
    tags=["Webhooks"],
)
async def zoom_webhook(
    request: Request,
    raw_body: bytes = Depends(verify_zoom_signature_header),
    db: AsyncSession = Depends(get_db),
    deps: ProcessorDependencies = Depends(get_processor_dependencies),
) -> dict:
    payload = _decode_body(raw_body)
    webhook = parse_platform_payload(MeetingPlatform.ZOOM, payload)

    if webhook.event == ZoomEventType.URL_VALIDATION:
        plain_token = webhook.payload.plain_token
        if not plain_token:
            raise InvalidEventPayloadError(MeetingPlatform.ZOOM.value, "Missing plainToken")
        logger.info("Zoom endpoint URL validation")
        return build_url_validation_response(plain_token, settings.ZOOM_WEBHOOK_SECRET_TOKEN)

    if webhook.event in _MEETING_EVENTS and not (webhook.meeting and webhook.meeting.uuid):
        raise InvalidEventPayloadError(
            MeetingPlatform.ZOOM.value,
            "Missing payload.object.uuid",
            details={"event": webhook.event},
        )

    try:
        outcome = await WebhookIngestionService(db, deps).ingest(
            MeetingPlatform.ZOOM,
            webhook.event,
            webhook.event_id,
            payload,
            metadata={
                "event_ts": webhook.event_ts,
                "request_timestamp": request.headers.get("x-zm-request-timestamp"),
                "user_agent": request.headers.get("user-agent"),
            },
        )
    except Exception as e:
        # גם כשל בשמירת ה-raw event לא מוחזר ל-Zoom, אחרת Zoom ישבית את ה-endpoint
        logger.error(
            "Zoom webhook ingestion crashed",
            extra_data={"event": webhook.event, "error": str(e)},
            exc_info=True,
        )
        return {"received": True, "error": "Internal processing error"}

    return {"received": True, **outcome.to_dict()}

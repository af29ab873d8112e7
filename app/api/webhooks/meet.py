"""
Google Meet Webhook Handler — Pub/Sub push של Workspace Events.

ה-JWT ב-Authorization נבדק מול מפתחות Google לפני פענוח ההודעה.
"""
from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.processors import get_processor_dependencies
from app.api.dependencies.webhook_auth import verify_pubsub_token
from app.core.exceptions import InvalidEventPayloadError
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.meeting import MeetingPlatform
from app.domain.events import parse_platform_payload
from app.domain.processors.dependencies import ProcessorDependencies
from app.domain.services.ingestion_service import WebhookIngestionService

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/meet",
    summary="Meet Endpoint Verification",
    description="הד challenge לאימות ה-endpoint.",
    tags=["Webhooks"],
)
async def meet_challenge(challenge: str | None = Query(None)):
    if not challenge:
        return JSONResponse(status_code=400, content={"error": "Missing challenge"})
    return PlainTextResponse(challenge)


@router.post(
    "/meet",
    summary="Meet Webhook",
    description="קליטת הודעת Pub/Sub push — אימות JWT, פענוח ו-ingestion.",
    tags=["Webhooks"],
)
async def meet_webhook(
    request: Request,
    claims: dict = Depends(verify_pubsub_token),
    db: AsyncSession = Depends(get_db),
    deps: ProcessorDependencies = Depends(get_processor_dependencies),
) -> dict:
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidEventPayloadError(MeetingPlatform.GOOGLE_MEET.value, "Invalid JSON body") from e

    envelope = parse_platform_payload(MeetingPlatform.GOOGLE_MEET, payload)
    event = envelope.decode_event()

    try:
        outcome = await WebhookIngestionService(db, deps).ingest(
            MeetingPlatform.GOOGLE_MEET,
            event.stored_event_type,
            envelope.event_id(event),
            payload,
            metadata={
                "message_id": envelope.message.message_id,
                "subscription": envelope.subscription,
                "token_email": claims.get("email"),
            },
        )
    except Exception as e:
        logger.error(
            "Meet webhook ingestion crashed",
            extra_data={"event_type": event.event_type, "error": str(e)},
            exc_info=True,
        )
        return {"received": True, "error": "Internal processing error"}

    return {"received": True, **outcome.to_dict()}

"""
Microsoft Teams Webhook Handler — Graph change notifications.

- validationToken (GET/POST) — הד כ-text/plain לאישור ה-subscription.
- POST עם value[] — כל התראה נבדקת מול clientState ונקלטת בנפרד.
"""
from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.processors import get_processor_dependencies
from app.api.dependencies.webhook_auth import verify_teams_client_state
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
    "/teams",
    summary="Teams Subscription Validation",
    description="הד validationToken בזמן יצירת subscription ב-Graph.",
    tags=["Webhooks"],
)
async def teams_validation(validation_token: str | None = Query(None, alias="validationToken")):
    if not validation_token:
        return JSONResponse(status_code=400, content={"error": "Missing validationToken"})
    logger.info("Teams subscription validation (GET)")
    return PlainTextResponse(validation_token)


@router.post(
    "/teams",
    summary="Teams Webhook",
    description="קליטת change notifications של Graph — 202 עם תוצאה לכל התראה.",
    tags=["Webhooks"],
)
async def teams_webhook(
    request: Request,
    validation_token: str | None = Query(None, alias="validationToken"),
    db: AsyncSession = Depends(get_db),
    deps: ProcessorDependencies = Depends(get_processor_dependencies),
):
    # Graph שולח את בקשת האימות גם כ-POST
    if validation_token:
        logger.info("Teams subscription validation (POST)")
        return PlainTextResponse(validation_token)

    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidEventPayloadError(MeetingPlatform.MICROSOFT_TEAMS.value, "Invalid JSON body") from e

    batch = parse_platform_payload(MeetingPlatform.MICROSOFT_TEAMS, payload)

    # אימות כל ההתראות לפני קליטה: התראה אחת עם clientState שגוי דוחה את כל הבקשה
    for notification in batch.value:
        verify_teams_client_state(notification)

    ingestion = WebhookIngestionService(db, deps)
    results = []
    for notification in batch.value:
        try:
            outcome = await ingestion.ingest(
                MeetingPlatform.MICROSOFT_TEAMS,
                notification.event_type,
                notification.event_id,
                notification.to_payload(),
                metadata={
                    "subscription_id": notification.subscription_id,
                    "change_type": notification.change_type,
                    "tenant_id": notification.tenant_id,
                },
            )
            results.append(outcome.to_dict())
        except Exception as e:
            logger.error(
                "Teams notification ingestion crashed",
                extra_data={"resource": notification.resource, "error": str(e)},
                exc_info=True,
            )
            results.append({"error": "Internal processing error"})

    return JSONResponse(status_code=202, content={"received": True, "results": results})

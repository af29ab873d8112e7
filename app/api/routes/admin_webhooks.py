"""
Admin Webhook Endpoints — ניהול ה-retry ledger ללא גישה ישירה ל-DB.

1. סטטוס circuit breakers (Zoom / Graph / Meet / Anthropic)
2. רשומות ledger לפי סטטוס
3. dead letters פתוחים ו-retry ידני
4. מטריקות
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.api.dependencies.processors import get_processor_dependencies
from app.core.circuit_breaker import (
    ANTHROPIC_SERVICE,
    GRAPH_SERVICE,
    MEET_SERVICE,
    ZOOM_SERVICE,
    CircuitBreaker,
    get_service_circuit_breaker,
)
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.webhook_failure import WebhookFailureStatus
from app.domain.processors.dependencies import ProcessorDependencies
from app.domain.services.webhook_retry_service import WebhookRetryService

logger = get_logger(__name__)

router = APIRouter()


# ─── Pydantic models ────────────────────────────────────────────────────────

class CircuitBreakerStatusResponse(BaseModel):
    """סטטוס של circuit breaker בודד"""
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    success_count: int
    half_open_calls: int
    retry_after_seconds: float = Field(
        description="שניות עד שניסיון חוזר אפשרי (0 אם לא פתוח)"
    )


class WebhookFailureResponse(BaseModel):
    """רשומת ledger בודדת"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    platform: str
    event_type: str
    status: str
    attempts: int
    raw_event_id: int | None
    last_error: str | None
    next_retry_at: datetime | None
    created_at: datetime | None
    resolved_at: datetime | None


class DeadLetterResponse(BaseModel):
    """dead letter פתוח"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_failure_id: int
    platform: str
    event_type: str
    total_attempts: int
    final_error: str | None
    failure_history: list
    alert_sent: bool
    created_at: datetime | None


class DeadLetterRetryRequest(BaseModel):
    resolution_notes: Optional[str] = Field(default=None, max_length=1000)


class DeadLetterRetryResponse(BaseModel):
    """תשובה ל-retry של dead letter"""
    dead_letter_id: int
    new_failure_id: int
    status: str
    next_retry_at: datetime | None


def _enum_value(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


# ─── 1. Circuit Breakers ────────────────────────────────────────────────────

def _cb_to_response(cb: CircuitBreaker) -> CircuitBreakerStatusResponse:
    """המרת circuit breaker למודל תשובה"""
    return CircuitBreakerStatusResponse(
        service=cb.service_name,
        state=cb.state.value,
        failure_count=cb._state.failure_count,
        success_count=cb._state.success_count,
        half_open_calls=cb._state.half_open_calls,
        retry_after_seconds=round(cb.get_retry_after(), 1),
    )


@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="סטטוס circuit breakers",
    description="המצב הנוכחי של ה-circuit breakers של Zoom, Graph, Meet ו-Anthropic.",
    responses={
        401: {"description": "חסר מפתח API"},
        403: {"description": "מפתח API שגוי"},
    },
)
async def get_circuit_breaker_status(
    _: None = Depends(require_admin_api_key),
) -> list[CircuitBreakerStatusResponse]:
    breakers = [
        get_service_circuit_breaker(name)
        for name in (ZOOM_SERVICE, GRAPH_SERVICE, MEET_SERVICE, ANTHROPIC_SERVICE)
    ]
    return [_cb_to_response(cb) for cb in breakers]


# ─── 2. Ledger ──────────────────────────────────────────────────────────────

@router.get(
    "/failures",
    response_model=list[WebhookFailureResponse],
    summary="רשומות retry ledger",
    description="שליפת רשומות ledger עם סינון לפי סטטוס. ברירת מחדל: pending.",
    responses={
        400: {"description": "סטטוס לא תקין"},
        401: {"description": "חסר מפתח API"},
        403: {"description": "מפתח API שגוי"},
    },
)
async def list_webhook_failures(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    failure_status: Optional[str] = Query(
        default="pending",
        alias="status",
        description="pending, in_progress, succeeded, dead_letter",
    ),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[WebhookFailureResponse]:
    status_filter = None
    if failure_status:
        valid_statuses = {s.value for s in WebhookFailureStatus}
        if failure_status not in valid_statuses:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"סטטוס לא תקין. אפשרויות: {', '.join(sorted(valid_statuses))}",
            )
        status_filter = WebhookFailureStatus(failure_status)

    failures = await WebhookRetryService(db).list_failures(status=status_filter, limit=limit)
    return [
        WebhookFailureResponse(
            id=f.id,
            platform=_enum_value(f.platform),
            event_type=f.event_type,
            status=_enum_value(f.status),
            attempts=f.attempts,
            raw_event_id=f.raw_event_id,
            last_error=f.last_error,
            next_retry_at=f.next_retry_at,
            created_at=f.created_at,
            resolved_at=f.resolved_at,
        )
        for f in failures
    ]


# ─── 3. Dead letters ────────────────────────────────────────────────────────

@router.get(
    "/dead-letters",
    response_model=list[DeadLetterResponse],
    summary="dead letters פתוחים",
    responses={
        401: {"description": "חסר מפתח API"},
        403: {"description": "מפתח API שגוי"},
    },
)
async def list_dead_letters(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[DeadLetterResponse]:
    dead_letters = await WebhookRetryService(db).get_unresolved_dead_letters(limit=limit)
    return [
        DeadLetterResponse(
            id=d.id,
            original_failure_id=d.original_failure_id,
            platform=_enum_value(d.platform),
            event_type=d.event_type,
            total_attempts=d.total_attempts,
            final_error=d.final_error,
            failure_history=d.failure_history or [],
            alert_sent=d.alert_sent,
            created_at=d.created_at,
        )
        for d in dead_letters
    ]


@router.post(
    "/dead-letters/{dead_letter_id}/retry",
    response_model=DeadLetterRetryResponse,
    summary="retry ידני ל-dead letter",
    description="יוצר רשומת ledger חדשה (attempts=0) שתיאסף בריצת ה-cron הבאה ומסמן את ה-dead letter כ-resolved.",
    responses={
        401: {"description": "חסר מפתח API"},
        403: {"description": "מפתח API שגוי"},
        404: {"description": "dead letter לא נמצא"},
        409: {"description": "dead letter כבר טופל"},
    },
)
async def retry_dead_letter(
    dead_letter_id: int,
    body: DeadLetterRetryRequest | None = None,
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    deps: ProcessorDependencies = Depends(get_processor_dependencies),
) -> DeadLetterRetryResponse:
    service = WebhookRetryService(db, alert_notifier=deps.alert_notifier)
    failure = await service.retry_dead_letter(
        dead_letter_id,
        resolution_notes=body.resolution_notes if body else None,
    )
    logger.info(
        "retry ידני ל-dead letter",
        extra_data={"dead_letter_id": dead_letter_id, "failure_id": failure.id},
    )
    return DeadLetterRetryResponse(
        dead_letter_id=dead_letter_id,
        new_failure_id=failure.id,
        status=_enum_value(failure.status),
        next_retry_at=failure.next_retry_at,
    )


# ─── 4. Metrics ─────────────────────────────────────────────────────────────

@router.get(
    "/metrics",
    summary="מטריקות retry ledger",
    responses={
        401: {"description": "חסר מפתח API"},
        403: {"description": "מפתח API שגוי"},
    },
)
async def get_ledger_metrics(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> dict:
    metrics = await WebhookRetryService(db).get_webhook_metrics()
    return metrics.to_dict()

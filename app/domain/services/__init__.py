"""
Domain Services
"""
from app.domain.services.idempotency_service import IdempotencyService
from app.domain.services.raw_event_service import RawEventService
from app.domain.services.webhook_retry_service import WebhookRetryService
from app.domain.services.meeting_service import MeetingService

__all__ = [
    "IdempotencyService",
    "RawEventService",
    "WebhookRetryService",
    "MeetingService",
]

"""
Database Models
"""
from app.db.models.meeting import Meeting, MeetingPlatform, MeetingStatus
from app.db.models.transcript import Transcript
from app.db.models.draft import Draft
from app.db.models.raw_event import RawEvent, RawEventStatus
from app.db.models.idempotency_lock import IdempotencyLock
from app.db.models.webhook_failure import WebhookFailure, WebhookFailureStatus
from app.db.models.dead_letter import DeadLetter

__all__ = [
    "Meeting",
    "MeetingPlatform",
    "MeetingStatus",
    "Transcript",
    "Draft",
    "RawEvent",
    "RawEventStatus",
    "IdempotencyLock",
    "WebhookFailure",
    "WebhookFailureStatus",
    "DeadLetter",
]

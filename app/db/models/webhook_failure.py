"""
Webhook Failure Model — רשומת retry ledger.

מעברים חוקיים בלבד:
    pending → in_progress → succeeded | pending (attempts+1) | dead_letter
succeeded ו-dead_letter סופיים. attempts לא יורד לעולם.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, Text, Index
from sqlalchemy.types import JSON

from app.core.clock import utcnow
from app.db.database import Base
from app.db.models.meeting import MeetingPlatform


class WebhookFailureStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    DEAD_LETTER = "dead_letter"


class WebhookFailure(Base):
    __tablename__ = "webhook_failures"

    id = Column(Integer, primary_key=True, index=True)
    platform = Column(SQLEnum(MeetingPlatform), nullable=False)
    event_type = Column(String(150), nullable=False)
    # עותק של ה-payload: replay לא תלוי ב-raw_events
    payload = Column(JSON, nullable=False)
    # sha256 על platform + event_type + payload קנוני: מיזוג כשלונות חוזרים
    fingerprint = Column(String(64), nullable=False)
    raw_event_id = Column(Integer, ForeignKey("raw_events.id"), nullable=True)

    attempts = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime, nullable=True)
    status = Column(SQLEnum(WebhookFailureStatus), nullable=False, default=WebhookFailureStatus.PENDING)
    last_error = Column(Text, nullable=True)
    # [{"attempt", "error", "timestamp"}]
    failure_history = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    resolved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_webhook_failures_status_next_retry", "status", "next_retry_at"),
        Index("ix_webhook_failures_fingerprint", "fingerprint"),
    )

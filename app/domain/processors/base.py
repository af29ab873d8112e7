"""
בסיס ל-platform processors.

processor מקבל InboundEvent (platform, event_type, payload גולמי) ומחזיר
ProcessResult. מצבים צפויים (סוג אירוע לא מוכר, תמלול שעוד לא מוכן)
מוחזרים כ-skipped; כשלונות אמיתיים זורקים. processor לא מנסה שוב ולא
כותב ל-retry ledger — זה תפקיד ה-endpoint וה-cron.
"""
from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utcnow
from app.core.logging import get_logger
from app.db.models.meeting import Meeting, MeetingPlatform, MeetingStatus
from app.db.models.webhook_failure import WebhookFailure
from app.domain.processors.dependencies import ProcessorDependencies
from app.domain.services.meeting_service import MeetingService
from app.domain.services.vtt_parser import ParsedTranscript

logger = get_logger(__name__)


class ProcessAction(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    GENERATED_DRAFT = "generated_draft"


@dataclass
class ProcessResult:
    action: ProcessAction
    meeting_id: int | None = None
    reason: str | None = None

    @classmethod
    def skipped(cls, reason: str, meeting_id: int | None = None) -> "ProcessResult":
        return cls(action=ProcessAction.SKIPPED, meeting_id=meeting_id, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "meetingId": self.meeting_id, "reason": self.reason}


@dataclass
class InboundEvent:
    """אירוע לעיבוד — מה-webhook או משחזור רשומת ledger"""
    platform: MeetingPlatform
    event_type: str
    payload: dict[str, Any]
    external_event_id: str | None = None
    raw_event_id: int | None = None

    @classmethod
    def from_failure(cls, failure: WebhookFailure) -> "InboundEvent":
        return cls(
            platform=failure.platform,
            event_type=failure.event_type,
            payload=dict(failure.payload),
            raw_event_id=failure.raw_event_id,
        )


class BaseEventProcessor(ABC):
    platform: MeetingPlatform

    def __init__(self, db: AsyncSession, deps: ProcessorDependencies, clock: Clock = utcnow):
        self.db = db
        self.deps = deps
        self.meetings = MeetingService(db, clock=clock)

    @abstractmethod
    async def process(self, event: InboundEvent) -> ProcessResult:
        ...

    def _unsupported(self, event: InboundEvent) -> ProcessResult:
        logger.info(
            "Event type not processed, stored only",
            extra_data={"platform": self.platform.value, "event_type": event.event_type},
        )
        return ProcessResult.skipped("unsupported_event_type")

    async def _store_transcript_and_draft(
        self,
        meeting: Meeting,
        parsed: ParsedTranscript,
        *,
        source: str,
        vtt_content: str | None,
        created: bool,
    ) -> ProcessResult:
        """
        שמירת תמלול (meeting → ready) ויצירת טיוטה (meeting → completed).

        כשלון ביצירת הטיוטה מסמן את השיחה failed וזורק הלאה.
        """
        transcript = await self.meetings.store_transcript(
            meeting, parsed, source=source, vtt_content=vtt_content
        )
        await self.meetings.set_progress(meeting, MeetingStatus.READY, "transcript_stored", 60)

        try:
            _, draft_created = await self.meetings.generate_draft(
                meeting, transcript, self.deps.draft_generator
            )
        except Exception as e:
            await self.meetings.set_progress(
                meeting, MeetingStatus.FAILED, "draft_generation", 60, error_message=str(e)[:1000]
            )
            raise

        await self.meetings.set_progress(meeting, MeetingStatus.COMPLETED, "draft_generated", 100)

        if draft_created:
            action = ProcessAction.GENERATED_DRAFT
        else:
            action = ProcessAction.CREATED if created else ProcessAction.UPDATED
        return ProcessResult(action=action, meeting_id=meeting.id)

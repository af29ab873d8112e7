"""
Meeting Service — שמירת שיחות, תמלולים וטיוטות.

upsert לפי (platform, platform_meeting_id): שני אירועים שונים של אותה
שיחה יכולים להגיע במקביל (meeting.ended + recording.completed), לכן
ה-INSERT נעשה ב-savepoint ו-IntegrityError מתורגם לעדכון של השורה הקיימת.
"""
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utcnow
from app.core.logging import get_logger
from app.db.models.draft import Draft
from app.db.models.meeting import Meeting, MeetingPlatform, MeetingStatus
from app.db.models.transcript import Transcript
from app.domain.services.platforms.draft_generator import DraftContext, DraftGenerator
from app.domain.services.vtt_parser import ParsedTranscript

logger = get_logger(__name__)


@dataclass
class MeetingUpsert:
    meeting: Meeting
    created: bool


class MeetingService:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self._clock = clock

    async def get_meeting(self, meeting_id: int) -> Meeting | None:
        result = await self.db.execute(select(Meeting).where(Meeting.id == meeting_id))
        return result.scalar_one_or_none()

    async def find_meeting(self, platform: MeetingPlatform, platform_meeting_id: str) -> Meeting | None:
        result = await self.db.execute(
            select(Meeting).where(
                Meeting.platform == platform,
                Meeting.platform_meeting_id == platform_meeting_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_meeting(
        self,
        platform: MeetingPlatform,
        platform_meeting_id: str,
        **fields: Any,
    ) -> MeetingUpsert:
        """
        יצירה או עדכון של שיחה. שדות עם ערך None לא דורסים ערך קיים.
        """
        values = {k: v for k, v in fields.items() if v is not None}
        meeting = await self.find_meeting(platform, platform_meeting_id)
        created = False

        if meeting is None:
            now = self._clock()
            meeting = Meeting(
                platform=platform,
                platform_meeting_id=platform_meeting_id,
                created_at=now,
                updated_at=now,
                **values,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(meeting)
                created = True
            except IntegrityError:
                # שיחה נוצרה במקביל ע"י אירוע אחר
                meeting = await self.find_meeting(platform, platform_meeting_id)
                if meeting is None:
                    raise

        if not created:
            for key, value in values.items():
                setattr(meeting, key, value)
            meeting.updated_at = self._clock()

        await self.db.commit()
        await self.db.refresh(meeting)

        logger.info(
            "Meeting created" if created else "Meeting updated",
            extra_data={
                "meeting_id": meeting.id,
                "platform": platform.value,
                "platform_meeting_id": platform_meeting_id,
            },
        )
        return MeetingUpsert(meeting=meeting, created=created)

    async def set_progress(
        self,
        meeting: Meeting,
        status: MeetingStatus,
        step: str,
        progress: int,
        error_message: str | None = None,
    ) -> None:
        meeting.status = status
        meeting.processing_step = step
        meeting.processing_progress = progress
        meeting.error_message = error_message
        meeting.updated_at = self._clock()
        await self.db.commit()

    async def get_transcript(self, meeting_id: int) -> Transcript | None:
        result = await self.db.execute(select(Transcript).where(Transcript.meeting_id == meeting_id))
        return result.scalar_one_or_none()

    async def store_transcript(
        self,
        meeting: Meeting,
        parsed: ParsedTranscript,
        *,
        source: str,
        vtt_content: str | None = None,
    ) -> Transcript:
        """תמלול אחד לכל שיחה — עיבוד חוזר דורס את התוכן"""
        transcript = await self.get_transcript(meeting.id)
        now = self._clock()
        values = {
            "platform": meeting.platform,
            "source": source,
            "content": parsed.full_text,
            "vtt_content": vtt_content,
            "speaker_segments": [segment.to_dict() for segment in parsed.segments],
            "word_count": parsed.word_count,
            "status": "ready",
            "updated_at": now,
        }
        if transcript is None:
            transcript = Transcript(meeting_id=meeting.id, created_at=now, **values)
            self.db.add(transcript)
        else:
            for key, value in values.items():
                setattr(transcript, key, value)
        await self.db.commit()
        await self.db.refresh(transcript)

        logger.info(
            "Transcript stored",
            extra_data={
                "meeting_id": meeting.id,
                "transcript_id": transcript.id,
                "word_count": parsed.word_count,
                "segments": len(parsed.segments),
            },
        )
        return transcript

    async def get_draft(self, meeting_id: int) -> Draft | None:
        result = await self.db.execute(
            select(Draft).where(Draft.meeting_id == meeting_id).order_by(Draft.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def generate_draft(
        self,
        meeting: Meeting,
        transcript: Transcript,
        generator: DraftGenerator,
    ) -> tuple[Draft, bool]:
        """
        טיוטה אחת לכל שיחה. אם כבר קיימת (עיבוד חוזר של אותו אירוע)
        מחזירים אותה בלי לקרוא שוב למודל. מחזיר (draft, created).
        """
        existing = await self.get_draft(meeting.id)
        if existing is not None:
            return existing, False

        context = DraftContext(
            meeting_topic=meeting.topic,
            meeting_date=(meeting.start_time or meeting.created_at or self._clock()).strftime("%A, %B %d, %Y"),
            host_name=meeting.host_email.split("@")[0] or "Host",
            transcript=transcript.content,
        )
        generated = await generator.generate(context)

        draft = Draft(
            meeting_id=meeting.id,
            transcript_id=transcript.id,
            subject=generated.subject,
            body=generated.body,
            model=generated.model,
            status="generated",
            created_at=self._clock(),
        )
        self.db.add(draft)
        await self.db.commit()
        await self.db.refresh(draft)

        logger.info(
            "Draft stored",
            extra_data={"meeting_id": meeting.id, "draft_id": draft.id, "model": generated.model},
        )
        return draft, True

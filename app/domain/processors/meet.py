"""
Google Meet event processor (Workspace Events דרך Pub/Sub push).

conference.ended ו-transcript.fileGenerated מטופלים באותו מסלול: upsert של
השיחה, ואז תמלול מה-transcript הראשון במצב FILE_GENERATED. אם עוד אין
תמלול מוכן — השיחה נשארת pending ומחכים ל-fileGenerated.
"""
from __future__ import annotations

from datetime import datetime

from app.core.clock import to_naive_utc
from app.core.exceptions import ExternalServiceException, InvalidEventPayloadError
from app.core.logging import get_logger
from app.db.models.meeting import MeetingPlatform, MeetingStatus
from app.domain.events import MEET_EVENT_TYPE_NAMES, MeetEventType, MeetWorkspaceEvent, parse_platform_payload
from app.domain.processors.base import BaseEventProcessor, InboundEvent, ProcessAction, ProcessResult
from app.domain.services.platforms.meet import conference_record_id, entries_to_vtt, participant_display_name
from app.domain.services.vtt_parser import parse_vtt

logger = get_logger(__name__)

DEFAULT_TOPIC = "Google Meet"
TRANSCRIPT_READY_STATE = "FILE_GENERATED"

_PROCESSED_EVENT_TYPES = {
    MEET_EVENT_TYPE_NAMES[MeetEventType.CONFERENCE_ENDED],
    MEET_EVENT_TYPE_NAMES[MeetEventType.TRANSCRIPT_FILE_GENERATED],
}


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


class MeetEventProcessor(BaseEventProcessor):
    platform = MeetingPlatform.GOOGLE_MEET

    async def process(self, event: InboundEvent) -> ProcessResult:
        envelope = parse_platform_payload(self.platform, event.payload)
        if event.event_type not in _PROCESSED_EVENT_TYPES:
            return self._unsupported(event)
        return await self._handle_conference(envelope.decode_event(), event)

    async def _handle_conference(self, meet_event: MeetWorkspaceEvent, event: InboundEvent) -> ProcessResult:
        record = meet_event.conference_record
        record_name = record.record_name if record else None
        if not record_name:
            raise InvalidEventPayloadError(self.platform.value, "Workspace event is missing conferenceRecord")

        meet_meeting_id = f"meet-{conference_record_id(record_name)}"
        topic = DEFAULT_TOPIC
        start_time = to_naive_utc(record.start_time)
        end_time = to_naive_utc(record.end_time)
        if record.space and record.space.meeting_code:
            topic = f"Meet: {record.space.meeting_code}"

        try:
            details = await self.deps.meet_client.get_conference_record(record_name)
        except ExternalServiceException as e:
            logger.warning(
                "Could not fetch conference details",
                extra_data={"conference_record": record_name, "error": e.message},
            )
            details = {}
        meeting_code = (details.get("space") or {}).get("meetingCode")
        if meeting_code:
            topic = f"Meet: {meeting_code}"
        start_time = _parse_iso(details.get("startTime")) or start_time
        end_time = _parse_iso(details.get("endTime")) or end_time

        upsert = await self.meetings.upsert_meeting(
            self.platform,
            meet_meeting_id,
            topic=topic,
            start_time=start_time,
            end_time=end_time,
        )
        meeting = upsert.meeting
        action = ProcessAction.CREATED if upsert.created else ProcessAction.UPDATED

        transcripts = await self.deps.meet_client.list_transcripts(record_name)
        ready = next((t for t in transcripts if t.get("state") == TRANSCRIPT_READY_STATE), None)
        if ready is None:
            await self.meetings.set_progress(meeting, MeetingStatus.PENDING, "transcript_pending", 10)
            logger.info(
                "Meet transcript not ready yet",
                extra_data={"meeting_id": meeting.id, "conference_record": record_name},
            )
            return ProcessResult(action=action, meeting_id=meeting.id, reason="transcript_not_ready")

        await self.meetings.set_progress(meeting, MeetingStatus.PROCESSING, "transcript_download", 20)
        entries = await self.deps.meet_client.list_transcript_entries(ready["name"])
        if not entries:
            await self.meetings.set_progress(meeting, MeetingStatus.PENDING, "transcript_pending", 10)
            return ProcessResult(action=action, meeting_id=meeting.id, reason="transcript_not_ready")

        participants = await self.deps.meet_client.list_participants(record_name)
        names = {p.get("name", ""): participant_display_name(p) for p in participants}
        vtt_content = entries_to_vtt(entries, names)
        parsed = parse_vtt(vtt_content)
        await self.meetings.set_progress(meeting, MeetingStatus.PROCESSING, "transcript_parsed", 40)

        return await self._store_transcript_and_draft(
            meeting, parsed, source="meet_entries", vtt_content=vtt_content, created=upsert.created
        )

"""
Zoom event processor.

- meeting.ended: upsert של מטא-דאטה
- recording.completed: upsert (pending) ושליחת עבודת תמלול ל-worker אם יש
  קובץ TRANSCRIPT מוכן
- recording.transcript_completed: הורדה + פענוח + שמירה + טיוטה בתוך הבקשה
- zoom.transcript_job: replay מה-ledger של עבודת worker שנכשלה, רץ בתוך ה-cron
"""
from __future__ import annotations

from typing import Any

from app.core.clock import to_naive_utc
from app.core.exceptions import InvalidEventPayloadError, TranscriptUnavailableError
from app.core.logging import get_logger
from app.db.models.meeting import Meeting, MeetingPlatform, MeetingStatus
from app.domain.events import ZoomEventType, ZoomMeetingObject, ZoomWebhookEvent, parse_platform_payload
from app.domain.processors.base import BaseEventProcessor, InboundEvent, ProcessAction, ProcessResult
from app.domain.processors.dependencies import ZoomTranscriptJob
from app.domain.services.vtt_parser import parse_vtt

logger = get_logger(__name__)


def _meeting_fields(obj: ZoomMeetingObject) -> dict[str, Any]:
    return {
        "host_email": obj.host_email,
        "topic": obj.topic,
        "start_time": to_naive_utc(obj.start_time),
        "end_time": to_naive_utc(obj.end_time),
        "duration": obj.duration,
    }


class ZoomEventProcessor(BaseEventProcessor):
    platform = MeetingPlatform.ZOOM

    async def process(self, event: InboundEvent) -> ProcessResult:
        if event.event_type == ZoomEventType.TRANSCRIPT_JOB and event.external_event_id is None:
            return await self._replay_transcript_job(event)

        webhook = parse_platform_payload(self.platform, event.payload)
        handlers = {
            ZoomEventType.MEETING_ENDED: self._handle_meeting_ended,
            ZoomEventType.RECORDING_COMPLETED: self._handle_recording_completed,
            ZoomEventType.TRANSCRIPT_COMPLETED: self._handle_transcript_completed,
        }
        handler = handlers.get(event.event_type)
        if handler is None:
            return self._unsupported(event)
        return await handler(webhook, event)

    def _require_meeting(self, webhook: ZoomWebhookEvent) -> ZoomMeetingObject:
        obj = webhook.meeting
        if obj is None or not obj.uuid:
            raise InvalidEventPayloadError(self.platform.value, f"{webhook.event} payload is missing object.uuid")
        return obj

    async def _handle_meeting_ended(self, webhook: ZoomWebhookEvent, event: InboundEvent) -> ProcessResult:
        obj = self._require_meeting(webhook)
        upsert = await self.meetings.upsert_meeting(self.platform, obj.uuid, **_meeting_fields(obj))
        return ProcessResult(
            action=ProcessAction.CREATED if upsert.created else ProcessAction.UPDATED,
            meeting_id=upsert.meeting.id,
        )

    async def _handle_recording_completed(self, webhook: ZoomWebhookEvent, event: InboundEvent) -> ProcessResult:
        obj = self._require_meeting(webhook)
        transcript_file = obj.completed_file("TRANSCRIPT")
        video_file = obj.completed_file("MP4")

        upsert = await self.meetings.upsert_meeting(
            self.platform,
            obj.uuid,
            **_meeting_fields(obj),
            transcript_download_url=transcript_file.download_url if transcript_file else None,
            recording_download_url=video_file.download_url if video_file else None,
            status=MeetingStatus.PENDING,
        )
        meeting = upsert.meeting
        action = ProcessAction.CREATED if upsert.created else ProcessAction.UPDATED

        if transcript_file is None or not transcript_file.download_url:
            logger.info(
                "Recording has no transcript yet, meeting left pending",
                extra_data={"meeting_id": meeting.id, "zoom_uuid": obj.uuid},
            )
            return ProcessResult(action=action, meeting_id=meeting.id, reason="no_transcript")

        if not webhook.download_token:
            logger.warning(
                "Transcript available but no download_token, worker will use OAuth token",
                extra_data={"meeting_id": meeting.id, "zoom_uuid": obj.uuid},
            )

        self.deps.transcript_jobs.dispatch(ZoomTranscriptJob(
            meeting_id=meeting.id,
            download_url=transcript_file.download_url,
            download_token=webhook.download_token,
            raw_event_id=event.raw_event_id,
        ))
        return ProcessResult(action=action, meeting_id=meeting.id, reason="transcript_job_dispatched")

    async def _handle_transcript_completed(self, webhook: ZoomWebhookEvent, event: InboundEvent) -> ProcessResult:
        obj = self._require_meeting(webhook)
        transcript_file = obj.completed_file("TRANSCRIPT")
        download_url = transcript_file.download_url if transcript_file else None
        if download_url is None and not obj.recording_files:
            download_url = await self.deps.zoom_client.find_transcript_download_url(obj.uuid)

        if not download_url:
            logger.warning(
                "transcript_completed without transcript file, skipping",
                extra_data={"zoom_uuid": obj.uuid, "raw_event_id": event.raw_event_id},
            )
            return ProcessResult.skipped("no_transcript_file")

        upsert = await self.meetings.upsert_meeting(
            self.platform,
            obj.uuid,
            **_meeting_fields(obj),
            transcript_download_url=download_url,
            status=MeetingStatus.PENDING,
        )
        return await self._fetch_and_store(
            upsert.meeting, download_url, webhook.download_token, created=upsert.created
        )

    async def _replay_transcript_job(self, event: InboundEvent) -> ProcessResult:
        try:
            job = ZoomTranscriptJob.from_payload(event.payload)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidEventPayloadError(
                self.platform.value, f"Invalid transcript job payload: {e}"
            ) from e
        return await self.run_transcript_job(job)

    async def run_transcript_job(self, job: ZoomTranscriptJob) -> ProcessResult:
        """עבודת ה-worker שנשלחה מ-recording.completed"""
        meeting = await self.meetings.get_meeting(job.meeting_id)
        if meeting is None:
            return ProcessResult.skipped("meeting_not_found")
        return await self._fetch_and_store(meeting, job.download_url, job.download_token, created=False)

    async def _fetch_and_store(
        self,
        meeting: Meeting,
        download_url: str,
        download_token: str | None,
        *,
        created: bool,
    ) -> ProcessResult:
        await self.meetings.set_progress(meeting, MeetingStatus.PROCESSING, "transcript_download", 20)

        vtt_content = await self.deps.zoom_client.download_transcript(download_url, download_token)
        if not vtt_content.strip():
            raise TranscriptUnavailableError(self.platform.value, meeting.platform_meeting_id)

        parsed = parse_vtt(vtt_content)
        await self.meetings.set_progress(meeting, MeetingStatus.PROCESSING, "transcript_parsed", 40)

        return await self._store_transcript_and_draft(
            meeting, parsed, source="zoom", vtt_content=vtt_content, created=created
        )

"""
Microsoft Teams event processor (Graph change notifications).

callTranscript → הורדת VTT מ-Graph, שמירה ויצירת טיוטה.
callRecording → מתועד בלבד.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from app.core.clock import to_naive_utc
from app.core.config import settings
from app.core.exceptions import ExternalServiceException, InvalidEventPayloadError, TranscriptUnavailableError
from app.core.logging import get_logger
from app.db.models.meeting import MeetingPlatform, MeetingStatus
from app.domain.events import TeamsChangeNotification, TeamsEventType, parse_platform_payload
from app.domain.processors.base import BaseEventProcessor, InboundEvent, ProcessResult
from app.domain.services.platforms.graph import parse_resource_path
from app.domain.services.vtt_parser import parse_vtt

logger = get_logger(__name__)

DEFAULT_TOPIC = "Teams Meeting"


def _parse_graph_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


class TeamsEventProcessor(BaseEventProcessor):
    platform = MeetingPlatform.MICROSOFT_TEAMS

    async def process(self, event: InboundEvent) -> ProcessResult:
        batch = parse_platform_payload(self.platform, event.payload)
        if not batch.value:
            raise InvalidEventPayloadError(self.platform.value, "Notification batch is empty")
        notification = batch.value[0]

        if event.event_type == TeamsEventType.TRANSCRIPT_CREATED:
            return await self._handle_transcript_created(notification, event)
        if event.event_type == TeamsEventType.RECORDING_CREATED:
            logger.info(
                "Teams recording notification stored, not processed",
                extra_data={"resource": notification.resource, "raw_event_id": event.raw_event_id},
            )
            return ProcessResult.skipped("recording_not_processed")
        return self._unsupported(event)

    async def _meeting_details(self, user_id: str, meeting_id: str) -> dict[str, Any]:
        """פרטי שיחה הם תוספת — כשלון של Graph כאן לא עוצר את העיבוד"""
        try:
            return await self.deps.graph_client.get_online_meeting(user_id, meeting_id)
        except ExternalServiceException as e:
            logger.warning(
                "Could not fetch Teams meeting details",
                extra_data={"meeting_id": meeting_id, "error": e.message},
            )
            return {}

    async def _handle_transcript_created(
        self, notification: TeamsChangeNotification, event: InboundEvent
    ) -> ProcessResult:
        path = parse_resource_path(notification.resource)
        if not path.is_complete:
            raise InvalidEventPayloadError(
                self.platform.value,
                "Could not parse transcript resource path",
                details={"resource": notification.resource},
            )

        tenant_id = notification.tenant_id or settings.MICROSOFT_TEAMS_TENANT_ID or "unknown"
        teams_meeting_id = f"teams-{tenant_id}-{path.meeting_id}"

        details = await self._meeting_details(path.user_id, path.meeting_id)
        organizer = ((details.get("participants") or {}).get("organizer") or {})
        upsert = await self.meetings.upsert_meeting(
            self.platform,
            teams_meeting_id,
            topic=details.get("subject") or DEFAULT_TOPIC,
            host_email=organizer.get("upn") or f"user-{path.user_id}@teams.microsoft.com",
            start_time=_parse_graph_datetime(details.get("startDateTime")),
            end_time=_parse_graph_datetime(details.get("endDateTime")),
            status=MeetingStatus.PROCESSING,
        )
        meeting = upsert.meeting
        await self.meetings.set_progress(meeting, MeetingStatus.PROCESSING, "transcript_download", 20)

        vtt_content = await self.deps.graph_client.get_transcript_content(
            path.user_id, path.meeting_id, path.transcript_id
        )
        if not vtt_content.strip():
            raise TranscriptUnavailableError(self.platform.value, teams_meeting_id)

        parsed = parse_vtt(vtt_content)
        await self.meetings.set_progress(meeting, MeetingStatus.PROCESSING, "transcript_parsed", 40)

        return await self._store_transcript_and_draft(
            meeting, parsed, source="teams", vtt_content=vtt_content, created=upsert.created
        )

"""
מודלים טיפוסיים ל-payloads של webhooks לפי פלטפורמה.

ה-payload נשמר ב-raw_events וב-ledger כפי שהתקבל (dict). בכל עיבוד —
ראשון או replay מה-cron — הוא מפוענח מחדש למודל של הפלטפורמה דרך
parse_platform_payload, שבוחר את המודל לפי תגית ה-platform.
"""
from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from app.core.exceptions import InvalidEventPayloadError
from app.db.models.meeting import MeetingPlatform


# ---------------------------------------------------------------------------
# Zoom
# ---------------------------------------------------------------------------

class ZoomEventType:
    URL_VALIDATION = "endpoint.url_validation"
    MEETING_ENDED = "meeting.ended"
    RECORDING_COMPLETED = "recording.completed"
    TRANSCRIPT_COMPLETED = "recording.transcript_completed"
    # רשומת ledger של עבודת תמלול שנכשלה ב-worker (לא אירוע של Zoom)
    TRANSCRIPT_JOB = "zoom.transcript_job"


class ZoomRecordingFile(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    file_type: Optional[str] = None
    file_extension: Optional[str] = None
    recording_type: Optional[str] = None
    status: Optional[str] = None
    download_url: Optional[str] = None


class ZoomMeetingObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    uuid: Optional[str] = None
    id: Optional[Union[int, str]] = None
    host_id: Optional[str] = None
    host_email: Optional[str] = None
    topic: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    recording_files: list[ZoomRecordingFile] = Field(default_factory=list)

    def completed_file(self, file_type: str) -> Optional[ZoomRecordingFile]:
        for recording_file in self.recording_files:
            if recording_file.file_type == file_type and recording_file.status == "completed":
                return recording_file
        return None


class ZoomEventBody(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    account_id: Optional[str] = None
    object_: Optional[ZoomMeetingObject] = Field(default=None, alias="object")
    plain_token: Optional[str] = Field(default=None, alias="plainToken")


class ZoomWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    platform: Literal["zoom"] = "zoom"
    event: str
    event_ts: Optional[int] = None
    payload: ZoomEventBody = Field(default_factory=ZoomEventBody)
    download_token: Optional[str] = None

    @property
    def meeting(self) -> Optional[ZoomMeetingObject]:
        return self.payload.object_

    @property
    def event_id(self) -> str:
        """מפתח dedup: {event}-{uuid}-{event_ts}"""
        uuid = self.meeting.uuid if self.meeting else None
        return f"{self.event}-{uuid}-{self.event_ts}"


# ---------------------------------------------------------------------------
# Microsoft Teams (Graph change notifications)
# ---------------------------------------------------------------------------

class TeamsEventType:
    TRANSCRIPT_CREATED = "teams.transcript.created"
    RECORDING_CREATED = "teams.recording.created"
    NOTIFICATION = "teams.notification"


TEAMS_TRANSCRIPT_ODATA_TYPE = "#microsoft.graph.callTranscript"
TEAMS_RECORDING_ODATA_TYPE = "#microsoft.graph.callRecording"


class TeamsResourceData(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    odata_type: Optional[str] = Field(default=None, alias="@odata.type")
    odata_id: Optional[str] = Field(default=None, alias="@odata.id")
    id: Optional[str] = None


class TeamsChangeNotification(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
    client_state: Optional[str] = Field(default=None, alias="clientState")
    change_type: Optional[str] = Field(default=None, alias="changeType")
    resource: str
    resource_data: Optional[TeamsResourceData] = Field(default=None, alias="resourceData")
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    subscription_expiration: Optional[str] = Field(default=None, alias="subscriptionExpirationDateTime")

    @property
    def event_type(self) -> str:
        odata_type = self.resource_data.odata_type if self.resource_data else None
        if odata_type == TEAMS_TRANSCRIPT_ODATA_TYPE:
            return TeamsEventType.TRANSCRIPT_CREATED
        if odata_type == TEAMS_RECORDING_ODATA_TYPE:
            return TeamsEventType.RECORDING_CREATED
        return TeamsEventType.NOTIFICATION

    @property
    def event_id(self) -> str:
        return f"{self.subscription_id}-{self.change_type}-{self.resource}"

    def to_payload(self) -> dict[str, Any]:
        """batch בן פריט אחד — הצורה שנשמרת ב-raw_events וב-ledger"""
        return {"value": [self.model_dump(by_alias=True, exclude_none=True)]}


class TeamsNotificationBatch(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    platform: Literal["microsoft_teams"] = "microsoft_teams"
    value: list[TeamsChangeNotification] = Field(default_factory=list)
    validation_tokens: Optional[list[str]] = Field(default=None, alias="validationTokens")


# ---------------------------------------------------------------------------
# Google Meet (Pub/Sub push + Workspace Events)
# ---------------------------------------------------------------------------

class MeetEventType:
    CONFERENCE_ENDED = "google.workspace.meet.conference.v2.ended"
    TRANSCRIPT_FILE_GENERATED = "google.workspace.meet.transcript.v2.fileGenerated"


# שמות מקוצרים שנשמרים כ-event_type
MEET_EVENT_TYPE_NAMES = {
    MeetEventType.CONFERENCE_ENDED: "meet.conference.ended",
    MeetEventType.TRANSCRIPT_FILE_GENERATED: "meet.transcript.fileGenerated",
}


class MeetSpace(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    meeting_code: Optional[str] = Field(default=None, alias="meetingCode")
    meeting_uri: Optional[str] = Field(default=None, alias="meetingUri")


class MeetConferenceRecord(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    conference_record_name: Optional[str] = Field(default=None, alias="conferenceRecordName")
    space: Optional[MeetSpace] = None
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")

    @property
    def record_name(self) -> Optional[str]:
        return self.name or self.conference_record_name


class MeetTranscriptRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None


class MeetWorkspaceEvent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    event_type: str = Field(alias="eventType")
    event_time: Optional[str] = Field(default=None, alias="eventTime")
    conference_record: Optional[MeetConferenceRecord] = Field(default=None, alias="conferenceRecord")
    transcript: Optional[MeetTranscriptRef] = None

    @property
    def stored_event_type(self) -> str:
        return MEET_EVENT_TYPE_NAMES.get(self.event_type, self.event_type)


class PubSubMessage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    data: str
    message_id: Optional[str] = Field(default=None, alias="messageId")
    publish_time: Optional[str] = Field(default=None, alias="publishTime")
    attributes: dict[str, str] = Field(default_factory=dict)


class PubSubPushEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    platform: Literal["google_meet"] = "google_meet"
    message: PubSubMessage
    subscription: Optional[str] = None

    def decode_event(self) -> MeetWorkspaceEvent:
        """message.data הוא JSON ב-base64"""
        try:
            decoded = base64.b64decode(self.message.data, validate=False).decode("utf-8")
            return MeetWorkspaceEvent.model_validate(json.loads(decoded))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            raise InvalidEventPayloadError(
                MeetingPlatform.GOOGLE_MEET.value,
                "Pub/Sub message data is not a valid Workspace event",
                details={"error": str(e)},
            ) from e

    def event_id(self, event: MeetWorkspaceEvent) -> str:
        record = event.conference_record.record_name if event.conference_record else None
        return f"{event.stored_event_type}-{record}-{self.message.message_id}"


# ---------------------------------------------------------------------------
# Tagged union
# ---------------------------------------------------------------------------

PlatformPayload = Annotated[
    Union[ZoomWebhookEvent, TeamsNotificationBatch, PubSubPushEnvelope],
    Field(discriminator="platform"),
]

_platform_payload_adapter: TypeAdapter[PlatformPayload] = TypeAdapter(PlatformPayload)


def parse_platform_payload(platform: MeetingPlatform, payload: dict[str, Any]) -> PlatformPayload:
    """
    פענוח payload גולמי למודל של הפלטפורמה.

    זורק InvalidEventPayloadError אם ה-payload לא תואם את המבנה.
    """
    if not isinstance(payload, dict):
        raise InvalidEventPayloadError(platform.value, "Webhook payload must be a JSON object")
    try:
        return _platform_payload_adapter.validate_python({**payload, "platform": platform.value})
    except ValidationError as e:
        raise InvalidEventPayloadError(
            platform.value,
            "Webhook payload does not match the platform schema",
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e

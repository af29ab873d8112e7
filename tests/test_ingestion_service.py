"""
Tests for WebhookIngestionService — raw event → idempotency → process → ledger
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.db.models.meeting import Meeting, MeetingPlatform, MeetingStatus
from app.db.models.raw_event import RawEvent, RawEventStatus
from app.db.models.webhook_failure import WebhookFailure, WebhookFailureStatus
from app.domain.events import TeamsEventType
from app.domain.services.ingestion_service import WebhookIngestionService

from tests.conftest import FailingTeamsGraphClient, teams_notification, zoom_recording_payload

ZOOM_EVENT_ID = "recording.completed-meeting-uuid-1==-1760000000000"


async def _raw_events(db_session) -> list[RawEvent]:
    rows = (await db_session.execute(select(RawEvent).order_by(RawEvent.id))).scalars().all()
    for row in rows:
        await db_session.refresh(row)
    return list(rows)


class TestIngest:
    @pytest.mark.unit
    async def test_success_marks_raw_event_processed(self, db_session, fake_deps, clock):
        service = WebhookIngestionService(db_session, fake_deps, clock=clock)

        outcome = await service.ingest(
            MeetingPlatform.ZOOM,
            "recording.completed",
            ZOOM_EVENT_ID,
            zoom_recording_payload(),
            metadata={"user_agent": "Zoom Marketplace/1.0"},
        )

        assert outcome.duplicate is False
        assert outcome.error is None
        data = outcome.to_dict()
        assert data["action"] == "created"
        assert data["reason"] == "transcript_job_dispatched"

        [raw] = await _raw_events(db_session)
        assert raw.id == outcome.raw_event_id
        assert raw.status == RawEventStatus.PROCESSED
        assert raw.processed_at == clock.now
        assert raw.meeting_id == outcome.result.meeting_id
        assert raw.event_metadata == {"user_agent": "Zoom Marketplace/1.0"}
        assert raw.payload == zoom_recording_payload()

    @pytest.mark.unit
    async def test_duplicate_is_acknowledged_and_still_stored(self, db_session, fake_deps, clock):
        service = WebhookIngestionService(db_session, fake_deps, clock=clock)
        payload = zoom_recording_payload()

        await service.ingest(MeetingPlatform.ZOOM, "recording.completed", ZOOM_EVENT_ID, payload)
        second = await service.ingest(MeetingPlatform.ZOOM, "recording.completed", ZOOM_EVENT_ID, payload)

        assert second.duplicate is True
        assert second.to_dict() == {"rawEventId": second.raw_event_id, "duplicate": True}
        assert len(fake_deps.transcript_jobs.jobs) == 1
        meetings = (await db_session.execute(select(func.count()).select_from(Meeting))).scalar_one()
        assert meetings == 1
        raws = await _raw_events(db_session)
        assert len(raws) == 2
        assert all(raw.status == RawEventStatus.PROCESSED for raw in raws)

    @pytest.mark.unit
    async def test_processing_error_is_recorded_for_retry(self, db_session, fake_deps, clock):
        fake_deps.graph_client = FailingTeamsGraphClient()
        service = WebhookIngestionService(db_session, fake_deps, clock=clock)
        payload = {"value": [teams_notification()]}

        outcome = await service.ingest(
            MeetingPlatform.MICROSOFT_TEAMS, TeamsEventType.TRANSCRIPT_CREATED, "sub-1-created-x", payload
        )

        assert outcome.error == "No valid token"
        data = outcome.to_dict()
        assert data["error"] == "Internal processing error"
        assert data["failureId"] == outcome.failure_id

        failure = (await db_session.execute(select(WebhookFailure))).scalar_one()
        assert failure.id == outcome.failure_id
        assert failure.status == WebhookFailureStatus.PENDING
        assert failure.attempts == 0
        assert failure.next_retry_at == clock.now + timedelta(seconds=60)
        assert failure.raw_event_id == outcome.raw_event_id
        assert failure.payload == payload
        assert failure.event_type == TeamsEventType.TRANSCRIPT_CREATED

        [raw] = await _raw_events(db_session)
        assert raw.status == RawEventStatus.FAILED
        assert raw.error_message == "No valid token"

    @pytest.mark.unit
    async def test_failed_event_is_not_reprocessed_on_redelivery(self, db_session, fake_deps, clock):
        """הכפול נחסם גם אחרי כשלון — ה-ledger אחראי על ה-replay"""
        fake_deps.graph_client = FailingTeamsGraphClient()
        service = WebhookIngestionService(db_session, fake_deps, clock=clock)
        payload = {"value": [teams_notification()]}

        await service.ingest(MeetingPlatform.MICROSOFT_TEAMS, TeamsEventType.TRANSCRIPT_CREATED, "evt", payload)
        again = await service.ingest(MeetingPlatform.MICROSOFT_TEAMS, TeamsEventType.TRANSCRIPT_CREATED, "evt", payload)

        assert again.duplicate is True
        failures = (await db_session.execute(select(func.count()).select_from(WebhookFailure))).scalar_one()
        assert failures == 1

    @pytest.mark.unit
    async def test_unknown_event_type_is_processed_without_meeting(self, db_session, fake_deps, clock):
        service = WebhookIngestionService(db_session, fake_deps, clock=clock)

        outcome = await service.ingest(
            MeetingPlatform.ZOOM,
            "meeting.participant_joined",
            "evt-joined",
            zoom_recording_payload(event="meeting.participant_joined"),
        )

        assert outcome.result.reason == "unsupported_event_type"
        [raw] = await _raw_events(db_session)
        assert raw.status == RawEventStatus.PROCESSED
        assert raw.meeting_id is None

    @pytest.mark.unit
    async def test_draft_failure_leaves_meeting_failed_and_ledger_entry(self, db_session, fake_deps, clock):
        fake_deps.draft_generator.error = RuntimeError("model overloaded")
        service = WebhookIngestionService(db_session, fake_deps, clock=clock)

        outcome = await service.ingest(
            MeetingPlatform.ZOOM,
            "recording.transcript_completed",
            "evt-transcript",
            zoom_recording_payload(event="recording.transcript_completed"),
        )

        assert outcome.failure_id is not None
        meeting = (await db_session.execute(select(Meeting))).scalar_one()
        await db_session.refresh(meeting)
        assert meeting.status == MeetingStatus.FAILED

"""
Tests for RawEventService — שמירת כל משלוח לפני עיבוד ועדכוני סטטוס
"""
import pytest

from app.db.models.meeting import MeetingPlatform
from app.db.models.raw_event import RawEventStatus
from app.domain.services.raw_event_service import RawEventService

from tests.conftest import zoom_recording_payload


class TestRawEventService:
    @pytest.mark.unit
    async def test_store_keeps_payload_and_metadata(self, db_session, clock):
        service = RawEventService(db_session, clock=clock)
        payload = zoom_recording_payload()

        raw_event = await service.store_raw_event(
            MeetingPlatform.ZOOM, "recording.completed", "evt-1", payload, {"event_ts": 1}
        )

        stored = await service.get_raw_event(raw_event.id)
        assert stored.payload == payload
        assert stored.event_metadata == {"event_ts": 1}
        assert stored.status == RawEventStatus.PENDING
        assert stored.received_at == clock.now

    @pytest.mark.unit
    async def test_each_delivery_gets_its_own_row(self, db_session):
        service = RawEventService(db_session)

        first = await service.store_raw_event(MeetingPlatform.ZOOM, "meeting.ended", "evt-1", {})
        second = await service.store_raw_event(MeetingPlatform.ZOOM, "meeting.ended", "evt-1", {})

        assert first.id != second.id

    @pytest.mark.unit
    async def test_mark_processed(self, db_session, clock):
        service = RawEventService(db_session, clock=clock)
        raw_event = await service.store_raw_event(MeetingPlatform.ZOOM, "meeting.ended", "evt-1", {})

        await service.mark_processed(raw_event.id)

        stored = await service.get_raw_event(raw_event.id)
        await db_session.refresh(stored)
        assert stored.status == RawEventStatus.PROCESSED
        assert stored.processed_at == clock.now
        assert stored.error_message is None

    @pytest.mark.unit
    async def test_mark_failed_truncates_error(self, db_session):
        service = RawEventService(db_session)
        raw_event = await service.store_raw_event(MeetingPlatform.MICROSOFT_TEAMS, "teams.notification", None, {})

        await service.mark_failed(raw_event.id, "x" * 5000)

        stored = await service.get_raw_event(raw_event.id)
        await db_session.refresh(stored)
        assert stored.status == RawEventStatus.FAILED
        assert len(stored.error_message) == 2000

    @pytest.mark.unit
    async def test_unknown_id(self, db_session):
        assert await RawEventService(db_session).get_raw_event(999) is None

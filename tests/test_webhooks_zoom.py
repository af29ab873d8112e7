"""
Tests for the Zoom webhook endpoint
"""
import hashlib
import hmac
import json
import time

import pytest
from sqlalchemy import func, select

from app.db.models.meeting import Meeting, MeetingStatus
from app.db.models.raw_event import RawEvent
from app.db.models.webhook_failure import WebhookFailure

from tests.conftest import ZOOM_SECRET, zoom_headers, zoom_recording_payload

URL = "/api/webhooks/zoom"


async def _post(test_client, payload, **header_kwargs):
    body = json.dumps(payload).encode()
    return await test_client.post(URL, content=body, headers=zoom_headers(body, **header_kwargs))


async def _count(db_session, model) -> int:
    return (await db_session.execute(select(func.count()).select_from(model))).scalar_one()


class TestZoomSignature:
    @pytest.mark.integration
    async def test_missing_signature_is_rejected(self, test_client, db_session):
        response = await test_client.post(URL, json=zoom_recording_payload())

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "ERR_2001"
        assert await _count(db_session, RawEvent) == 0

    @pytest.mark.integration
    async def test_wrong_secret_is_rejected(self, test_client, db_session):
        response = await _post(test_client, zoom_recording_payload(), secret="not-the-secret")

        assert response.status_code == 401
        assert await _count(db_session, RawEvent) == 0

    @pytest.mark.integration
    async def test_stale_timestamp_is_rejected(self, test_client):
        response = await _post(test_client, zoom_recording_payload(), timestamp=str(int(time.time()) - 3600))

        assert response.status_code == 401

    @pytest.mark.integration
    async def test_tampered_body_is_rejected(self, test_client):
        body = json.dumps(zoom_recording_payload()).encode()
        headers = zoom_headers(body)

        response = await test_client.post(URL, content=body.replace(b"Discovery", b"Tampered"), headers=headers)

        assert response.status_code == 401


class TestZoomUrlValidation:
    @pytest.mark.integration
    async def test_returns_encrypted_token(self, test_client, db_session):
        payload = {"event": "endpoint.url_validation", "payload": {"plainToken": "abc123"}}

        response = await _post(test_client, payload)

        assert response.status_code == 200
        expected = hmac.new(ZOOM_SECRET.encode(), b"abc123", hashlib.sha256).hexdigest()
        assert response.json() == {"plainToken": "abc123", "encryptedToken": expected}
        assert await _count(db_session, RawEvent) == 0

    @pytest.mark.integration
    async def test_missing_plain_token(self, test_client):
        response = await _post(test_client, {"event": "endpoint.url_validation", "payload": {}})

        assert response.status_code == 400


class TestZoomIngestion:
    @pytest.mark.integration
    async def test_recording_completed_creates_pending_meeting(self, test_client, db_session, fake_deps):
        response = await _post(test_client, zoom_recording_payload())

        assert response.status_code == 200
        data = response.json()
        assert data["received"] is True
        assert data["action"] == "created"
        assert data["reason"] == "transcript_job_dispatched"

        meeting = (await db_session.execute(select(Meeting))).scalar_one()
        await db_session.refresh(meeting)
        assert meeting.id == data["meetingId"]
        assert meeting.status == MeetingStatus.PENDING
        assert len(fake_deps.transcript_jobs.jobs) == 1

        raw = (await db_session.execute(select(RawEvent))).scalar_one()
        assert raw.external_event_id == "recording.completed-meeting-uuid-1==-1760000000000"
        assert raw.event_metadata["event_ts"] == 1760000000000

    @pytest.mark.integration
    async def test_duplicate_delivery_is_acknowledged(self, test_client, db_session, fake_deps):
        await _post(test_client, zoom_recording_payload())

        response = await _post(test_client, zoom_recording_payload())

        assert response.status_code == 200
        assert response.json()["received"] is True
        assert response.json()["duplicate"] is True
        assert await _count(db_session, Meeting) == 1
        assert await _count(db_session, RawEvent) == 2
        assert len(fake_deps.transcript_jobs.jobs) == 1

    @pytest.mark.integration
    async def test_new_event_ts_is_a_new_event(self, test_client, db_session, fake_deps):
        await _post(test_client, zoom_recording_payload())

        response = await _post(test_client, zoom_recording_payload(event_ts=1760000000999))

        assert "duplicate" not in response.json()
        assert await _count(db_session, Meeting) == 1
        assert len(fake_deps.transcript_jobs.jobs) == 2

    @pytest.mark.integration
    async def test_processing_failure_still_returns_200(self, test_client, db_session, fake_deps):
        fake_deps.zoom_client.error = RuntimeError("connection reset")

        response = await _post(test_client, zoom_recording_payload(event="recording.transcript_completed"))

        assert response.status_code == 200
        data = response.json()
        assert data["received"] is True
        assert data["error"] == "Internal processing error"
        failure = (await db_session.execute(select(WebhookFailure))).scalar_one()
        assert failure.id == data["failureId"]
        assert failure.last_error == "connection reset"

    @pytest.mark.integration
    async def test_missing_uuid_is_bad_request(self, test_client, db_session):
        response = await _post(test_client, zoom_recording_payload(uuid=""))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_2004"
        assert await _count(db_session, WebhookFailure) == 0

    @pytest.mark.integration
    async def test_invalid_json_is_bad_request(self, test_client):
        body = b"{not json"

        response = await test_client.post(URL, content=body, headers=zoom_headers(body))

        assert response.status_code == 400

    @pytest.mark.integration
    async def test_signed_non_utf8_body_is_bad_request(self, test_client, db_session):
        body = b'{"event":"meeting.ended","payload":"\xff\xfe"}'

        response = await test_client.post(URL, content=body, headers=zoom_headers(body))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_2004"
        assert await _count(db_session, RawEvent) == 0

    @pytest.mark.integration
    async def test_unhandled_event_is_stored_and_acknowledged(self, test_client, db_session):
        response = await _post(test_client, zoom_recording_payload(event="meeting.started"))

        assert response.status_code == 200
        assert response.json()["reason"] == "unsupported_event_type"
        assert await _count(db_session, RawEvent) == 1
        assert await _count(db_session, Meeting) == 0

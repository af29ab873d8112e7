"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, SQLite in memory)
- Fake platform clients injected through ProcessorDependencies
- Test client with dependency overrides
- Payload factories per platform
"""
# משתני סביבה לפני ייבוא app: Settings דורש CRON_SECRET כש-DEBUG=False
import os
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("ZOOM_WEBHOOK_SECRET_TOKEN", "test-zoom-secret")
os.environ.setdefault("MICROSOFT_TEAMS_WEBHOOK_SECRET", "test-teams-client-state")
os.environ.setdefault("GOOGLE_PUBSUB_AUDIENCE", "https://test/api/webhooks/meet")
os.environ.setdefault("WEBHOOK_RATE_LIMIT_MAX_REQUESTS", "100000")
os.environ.setdefault("SLACK_WEBHOOK_URL", "")

import base64
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import app.db.models  # noqa: F401  רישום כל הטבלאות ב-metadata
from app.core.circuit_breaker import CircuitBreaker
from app.core.exceptions import TokenUnavailableError
from app.db.database import Base, get_db
from app.domain.processors.dependencies import ProcessorDependencies, ZoomTranscriptJob
from app.domain.services.platforms.draft_generator import DraftContext, GeneratedDraft
from app.domain.services.platforms.zoom import compute_zoom_signature
from app.main import app
from app.api.dependencies.processors import get_processor_dependencies


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ZOOM_SECRET = os.environ["ZOOM_WEBHOOK_SECRET_TOKEN"]
TEAMS_CLIENT_STATE = os.environ["MICROSOFT_TEAMS_WEBHOOK_SECRET"]
CRON_SECRET = os.environ["CRON_SECRET"]
ADMIN_API_KEY = os.environ["ADMIN_API_KEY"]

SAMPLE_VTT = """WEBVTT

1
00:00:01.000 --> 00:00:04.000
Alice: Thanks everyone for joining today.

2
00:00:04.500 --> 00:00:06.000
Alice: Let's review the proposal.

3
00:00:08.000 --> 00:00:10.000
Bob: Sounds good, I will send pricing tomorrow.
"""


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


# ============================================================================
# Fake platform clients
# ============================================================================

class FakeZoomClient:
    def __init__(self, vtt: str = SAMPLE_VTT):
        self.vtt = vtt
        self.error: Exception | None = None
        self.found_url: str | None = None
        self.downloads: list[tuple[str, str | None]] = []

    async def download_transcript(self, download_url: str, download_token: str | None = None) -> str:
        self.downloads.append((download_url, download_token))
        if self.error is not None:
            raise self.error
        return self.vtt

    async def find_transcript_download_url(self, meeting_uuid: str) -> str | None:
        return self.found_url


class FakeGraphClient:
    def __init__(self, vtt: str = SAMPLE_VTT):
        self.vtt = vtt
        self.error: Exception | None = None
        self.meeting_details: dict[str, Any] = {
            "subject": "Quarterly review",
            "startDateTime": "2026-10-01T10:00:00Z",
            "endDateTime": "2026-10-01T11:00:00Z",
            "participants": {"organizer": {"upn": "host@contoso.com"}},
        }
        self.transcript_requests: list[tuple[str, str, str]] = []

    async def get_online_meeting(self, user_id: str, meeting_id: str) -> dict[str, Any]:
        return self.meeting_details

    async def get_transcript_content(self, user_id: str, meeting_id: str, transcript_id: str) -> str:
        self.transcript_requests.append((user_id, meeting_id, transcript_id))
        if self.error is not None:
            raise self.error
        return self.vtt


class FakeMeetClient:
    def __init__(self):
        self.record: dict[str, Any] = {
            "name": "conferenceRecords/rec-1",
            "space": {"meetingCode": "abc-defg-hij"},
            "startTime": "2026-10-01T10:00:00Z",
            "endTime": "2026-10-01T10:30:00Z",
        }
        self.transcripts: list[dict[str, Any]] = [
            {"name": "conferenceRecords/rec-1/transcripts/t-1", "state": "FILE_GENERATED"}
        ]
        self.entries: list[dict[str, Any]] = [
            {
                "participant": "conferenceRecords/rec-1/participants/p-1",
                "text": "Welcome to the demo.",
                "startTime": "2026-10-01T10:00:01Z",
                "endTime": "2026-10-01T10:00:04Z",
            },
            {
                "participant": "conferenceRecords/rec-1/participants/p-2",
                "text": "Happy to be here.",
                "startTime": "2026-10-01T10:00:06Z",
                "endTime": "2026-10-01T10:00:08Z",
            },
        ]
        self.participants: list[dict[str, Any]] = [
            {"name": "conferenceRecords/rec-1/participants/p-1", "signedinUser": {"displayName": "Dana"}},
            {"name": "conferenceRecords/rec-1/participants/p-2", "anonymousUser": {"displayName": "Eli"}},
        ]

    async def get_conference_record(self, record_name: str) -> dict[str, Any]:
        return self.record

    async def list_transcripts(self, record_name: str) -> list[dict[str, Any]]:
        return self.transcripts

    async def list_transcript_entries(self, transcript_name: str) -> list[dict[str, Any]]:
        return self.entries

    async def list_participants(self, record_name: str) -> list[dict[str, Any]]:
        return self.participants


class FakeDraftGenerator:
    def __init__(self):
        self.contexts: list[DraftContext] = []
        self.error: Exception | None = None

    async def generate(self, context: DraftContext) -> GeneratedDraft:
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return GeneratedDraft(
            subject=f"Follow-up: {context.meeting_topic}",
            body="Thanks for the meeting.",
            model="test-model",
            input_tokens=10,
            output_tokens=5,
        )


class FakeTranscriptJobs:
    def __init__(self):
        self.jobs: list[ZoomTranscriptJob] = []

    def dispatch(self, job: ZoomTranscriptJob) -> None:
        self.jobs.append(job)


class FakeAlertNotifier:
    def __init__(self, result: bool = True):
        self.result = result
        self.error: Exception | None = None
        self.alerts: list[int] = []

    async def send_dead_letter_alert(self, dead_letter) -> bool:
        self.alerts.append(dead_letter.id)
        if self.error is not None:
            raise self.error
        return self.result


class FailingTeamsGraphClient(FakeGraphClient):
    """Graph בלי credentials — כל הורדה נכשלת כמו בסביבה לא מוגדרת"""

    async def get_transcript_content(self, user_id: str, meeting_id: str, transcript_id: str) -> str:
        raise TokenUnavailableError("microsoft_teams", "client credentials not configured")


@pytest.fixture
def fake_deps() -> ProcessorDependencies:
    return ProcessorDependencies(
        zoom_client=FakeZoomClient(),
        graph_client=FakeGraphClient(),
        meet_client=FakeMeetClient(),
        draft_generator=FakeDraftGenerator(),
        transcript_jobs=FakeTranscriptJobs(),
        alert_notifier=FakeAlertNotifier(),
    )


@dataclass
class FixedClock:
    """שעון שניתן לקדם ידנית"""
    now: datetime = field(default_factory=lambda: datetime(2026, 10, 19, 12, 0, 0))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, fake_deps: ProcessorDependencies):
    """Create test client with database and processor dependency overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_processor_dependencies] = lambda: fake_deps

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Payload factories
# ============================================================================

def zoom_recording_payload(
    event: str = "recording.completed",
    uuid: str = "meeting-uuid-1==",
    event_ts: int = 1760000000000,
    with_transcript: bool = True,
    download_token: str | None = "dl-token",
) -> dict[str, Any]:
    files = [
        {
            "id": "file-mp4",
            "file_type": "MP4",
            "status": "completed",
            "download_url": "https://zoom.us/rec/download/video.mp4",
        }
    ]
    if with_transcript:
        files.append({
            "id": "file-vtt",
            "file_type": "TRANSCRIPT",
            "file_extension": "VTT",
            "status": "completed",
            "download_url": "https://zoom.us/rec/download/transcript.vtt",
        })
    payload: dict[str, Any] = {
        "event": event,
        "event_ts": event_ts,
        "payload": {
            "account_id": "acc-1",
            "object": {
                "uuid": uuid,
                "id": 123456789,
                "host_email": "host@example.com",
                "topic": "Discovery call",
                "start_time": "2026-10-01T10:00:00Z",
                "duration": 30,
                "recording_files": files,
            },
        },
    }
    if download_token:
        payload["download_token"] = download_token
    return payload


def zoom_headers(body: bytes, secret: str = ZOOM_SECRET, timestamp: str | None = None) -> dict[str, str]:
    timestamp = timestamp or str(int(time.time()))
    return {
        "content-type": "application/json",
        "x-zm-request-timestamp": timestamp,
        "x-zm-signature": compute_zoom_signature(secret, timestamp, body),
    }


def teams_notification(
    client_state: str = TEAMS_CLIENT_STATE,
    odata_type: str = "#microsoft.graph.callTranscript",
    meeting_id: str = "MSo1N2Y5",
    transcript_id: str = "tr-1",
) -> dict[str, Any]:
    resource = f"users/user-1/onlineMeetings('{meeting_id}')/transcripts('{transcript_id}')"
    return {
        "subscriptionId": "sub-1",
        "clientState": client_state,
        "changeType": "created",
        "resource": resource,
        "resourceData": {"@odata.type": odata_type, "@odata.id": resource, "id": transcript_id},
        "tenantId": "tenant-1",
    }


def meet_envelope(
    event_type: str = "google.workspace.meet.transcript.v2.fileGenerated",
    record_name: str = "conferenceRecords/rec-1",
    message_id: str = "msg-1",
) -> dict[str, Any]:
    event = {
        "eventType": event_type,
        "eventTime": "2026-10-01T10:31:00Z",
        "conferenceRecord": {"name": record_name},
    }
    data = base64.b64encode(json.dumps(event).encode()).decode()
    return {
        "message": {"data": data, "messageId": message_id, "publishTime": "2026-10-01T10:31:01Z"},
        "subscription": "projects/p/subscriptions/meet-events",
    }

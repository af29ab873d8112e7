"""
ProcessorDependencies — כל הלקוחות החיצוניים שה-processors צריכים.

נבנה פעם אחת ע"י נקודת הכניסה (startup של FastAPI / משימת Celery) ומועבר
ל-processors. בבדיקות מחליפים אותו ב-fakes דרך dependency_overrides.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Protocol

from app.core.circuit_breaker import (
    ANTHROPIC_SERVICE,
    GRAPH_SERVICE,
    MEET_SERVICE,
    ZOOM_SERVICE,
    get_service_circuit_breaker,
)
from app.core.logging import get_logger
from app.domain.services.platforms.draft_generator import AnthropicDraftGenerator, DraftGenerator
from app.domain.services.platforms.graph import GraphClient
from app.domain.services.platforms.meet import MeetClient
from app.domain.services.platforms.slack import SlackAlertNotifier
from app.domain.services.platforms.token_provider import (
    create_graph_token_provider,
    create_meet_token_provider,
    create_zoom_token_provider,
)
from app.domain.services.platforms.zoom import ZoomClient

logger = get_logger(__name__)


@dataclass
class ZoomTranscriptJob:
    """עבודת הורדת תמלול Zoom שנשלחת ל-worker"""
    meeting_id: int
    download_url: str
    download_token: str | None = None
    raw_event_id: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ZoomTranscriptJob":
        return cls(
            meeting_id=int(payload["meeting_id"]),
            download_url=payload["download_url"],
            download_token=payload.get("download_token"),
            raw_event_id=payload.get("raw_event_id"),
        )


class TranscriptJobDispatcher(Protocol):
    def dispatch(self, job: ZoomTranscriptJob) -> None:
        ...


class CeleryTranscriptJobDispatcher:
    """שליחת ZoomTranscriptJob לתור של Celery"""

    def dispatch(self, job: ZoomTranscriptJob) -> None:
        from app.workers.tasks import process_transcript_job

        process_transcript_job.delay(
            meeting_id=job.meeting_id,
            download_url=job.download_url,
            download_token=job.download_token,
            raw_event_id=job.raw_event_id,
        )
        logger.info(
            "Transcript job dispatched",
            extra_data={"meeting_id": job.meeting_id, "raw_event_id": job.raw_event_id},
        )


@dataclass
class ProcessorDependencies:
    zoom_client: ZoomClient
    graph_client: GraphClient
    meet_client: MeetClient
    draft_generator: DraftGenerator
    transcript_jobs: TranscriptJobDispatcher
    alert_notifier: SlackAlertNotifier


def build_processor_dependencies() -> ProcessorDependencies:
    """בניית הלקוחות האמיתיים מתוך settings"""
    return ProcessorDependencies(
        zoom_client=ZoomClient(
            get_service_circuit_breaker(ZOOM_SERVICE),
            token_provider=create_zoom_token_provider(),
        ),
        graph_client=GraphClient(
            get_service_circuit_breaker(GRAPH_SERVICE),
            token_provider=create_graph_token_provider(),
        ),
        meet_client=MeetClient(
            get_service_circuit_breaker(MEET_SERVICE),
            token_provider=create_meet_token_provider(),
        ),
        draft_generator=AnthropicDraftGenerator(get_service_circuit_breaker(ANTHROPIC_SERVICE)),
        transcript_jobs=CeleryTranscriptJobDispatcher(),
        alert_notifier=SlackAlertNotifier(),
    )

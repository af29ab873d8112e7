"""
ניתוב אירוע ל-processor לפי תגית הפלטפורמה.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utcnow
from app.core.exceptions import UnsupportedPlatformError
from app.db.models.meeting import MeetingPlatform
from app.domain.processors.base import BaseEventProcessor
from app.domain.processors.dependencies import ProcessorDependencies
from app.domain.processors.meet import MeetEventProcessor
from app.domain.processors.teams import TeamsEventProcessor
from app.domain.processors.zoom import ZoomEventProcessor

PROCESSORS: dict[MeetingPlatform, type[BaseEventProcessor]] = {
    MeetingPlatform.ZOOM: ZoomEventProcessor,
    MeetingPlatform.MICROSOFT_TEAMS: TeamsEventProcessor,
    MeetingPlatform.GOOGLE_MEET: MeetEventProcessor,
}


def get_processor(
    platform: MeetingPlatform | str,
    db: AsyncSession,
    deps: ProcessorDependencies,
    clock: Clock = utcnow,
) -> BaseEventProcessor:
    try:
        processor_class = PROCESSORS[MeetingPlatform(platform)]
    except (ValueError, KeyError):
        raise UnsupportedPlatformError(str(platform))
    return processor_class(db, deps, clock=clock)

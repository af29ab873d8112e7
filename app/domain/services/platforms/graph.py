"""
Microsoft Graph — פרטי online meeting ותוכן תמלול ב-VTT (טוקן app-only).
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from app.core.circuit_breaker import GRAPH_SERVICE
from app.core.exceptions import GraphAPIError
from app.core.logging import get_logger
from app.domain.services.platforms.http_client import PlatformAPIClient

logger = get_logger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

_USER_PATTERN = re.compile(r"users/([^/]+)")
_MEETING_PATTERN = re.compile(r"onlineMeetings(?:\('([^']+)'\)|/([^/]+))")
_TRANSCRIPT_PATTERN = re.compile(r"transcripts(?:\('([^']+)'\)|/([^/]+))")


@dataclass
class GraphResourcePath:
    user_id: str | None = None
    meeting_id: str | None = None
    transcript_id: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.user_id and self.meeting_id and self.transcript_id)


def parse_resource_path(resource: str) -> GraphResourcePath:
    """
    users/{id}/onlineMeetings('{id}')/transcripts('{id}')
    וגם הצורה עם '/' במקום סוגריים.
    """
    path = GraphResourcePath()
    if match := _USER_PATTERN.search(resource):
        path.user_id = match.group(1)
    if match := _MEETING_PATTERN.search(resource):
        path.meeting_id = match.group(1) or match.group(2)
    if match := _TRANSCRIPT_PATTERN.search(resource):
        path.transcript_id = match.group(1) or match.group(2)
    return path


class GraphClient(PlatformAPIClient):
    service_name = GRAPH_SERVICE
    error_class = GraphAPIError

    async def get_online_meeting(self, user_id: str, meeting_id: str) -> dict[str, Any]:
        return await self._get_json(
            f"{GRAPH_BASE_URL}/users/{user_id}/onlineMeetings/{meeting_id}",
            operation="get_online_meeting",
        )

    async def get_transcript_content(self, user_id: str, meeting_id: str, transcript_id: str) -> str:
        content = await self._get_text(
            f"{GRAPH_BASE_URL}/users/{user_id}/onlineMeetings/{meeting_id}"
            f"/transcripts/{transcript_id}/content",
            operation="get_transcript_content",
            params={"$format": "text/vtt"},
            headers={"Accept": "text/vtt"},
        )
        logger.info(
            "Teams transcript downloaded",
            extra_data={"meeting_id": meeting_id, "content_length": len(content)},
        )
        return content

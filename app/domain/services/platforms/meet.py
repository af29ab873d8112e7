"""
Google Meet REST API (v2) — conference records, תמלולים ומשתתפים.

רשומות התמלול (entries) מומרות ל-VTT כדי לעבור באותו parser של Zoom/Teams.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from app.core.circuit_breaker import MEET_SERVICE
from app.core.exceptions import MeetAPIError
from app.core.logging import get_logger
from app.domain.services.platforms.http_client import PlatformAPIClient

logger = get_logger(__name__)

MEET_API_BASE_URL = "https://meet.googleapis.com/v2"
CONFERENCE_RECORD_PREFIX = "conferenceRecords/"


def conference_record_id(record_name: str) -> str:
    return record_name.removeprefix(CONFERENCE_RECORD_PREFIX)


def participant_display_name(participant: dict[str, Any]) -> str:
    for kind in ("signedinUser", "anonymousUser", "phoneUser"):
        name = (participant.get(kind) or {}).get("displayName")
        if name:
            return name
    return "Unknown"


def _format_vtt_time(iso_time: str) -> str:
    moment = datetime.fromisoformat(iso_time.replace("Z", "+00:00"))
    return f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}.{moment.microsecond // 1000:03d}"


def entries_to_vtt(entries: list[dict[str, Any]], participant_names: dict[str, str]) -> str:
    lines = ["WEBVTT", ""]
    for index, entry in enumerate(entries, start=1):
        speaker = participant_names.get(entry.get("participant", ""), "Unknown")
        lines.append(str(index))
        lines.append(f"{_format_vtt_time(entry['startTime'])} --> {_format_vtt_time(entry['endTime'])}")
        lines.append(f"{speaker}: {entry.get('text', '')}")
        lines.append("")
    return "\n".join(lines)


class MeetClient(PlatformAPIClient):
    service_name = MEET_SERVICE
    error_class = MeetAPIError

    async def _list_all(self, path: str, key: str, operation: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            params = {"pageToken": page_token} if page_token else None
            data = await self._get_json(f"{MEET_API_BASE_URL}/{path}", operation=operation, params=params)
            items.extend(data.get(key) or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return items

    async def get_conference_record(self, record_name: str) -> dict[str, Any]:
        return await self._get_json(
            f"{MEET_API_BASE_URL}/{CONFERENCE_RECORD_PREFIX}{conference_record_id(record_name)}",
            operation="get_conference_record",
        )

    async def list_transcripts(self, record_name: str) -> list[dict[str, Any]]:
        return await self._list_all(
            f"{CONFERENCE_RECORD_PREFIX}{conference_record_id(record_name)}/transcripts",
            "transcripts",
            "list_transcripts",
        )

    async def list_transcript_entries(self, transcript_name: str) -> list[dict[str, Any]]:
        entries = await self._list_all(f"{transcript_name}/entries", "transcriptEntries", "list_transcript_entries")
        logger.info(
            "Meet transcript entries fetched",
            extra_data={"transcript_name": transcript_name, "entries": len(entries)},
        )
        return entries

    async def list_participants(self, record_name: str) -> list[dict[str, Any]]:
        return await self._list_all(
            f"{CONFERENCE_RECORD_PREFIX}{conference_record_id(record_name)}/participants",
            "participants",
            "list_participants",
        )

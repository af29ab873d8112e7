"""
Zoom — אימות webhook, נרמול UUID והורדת תמלולים.

חתימה: v0=HMAC-SHA256(secret, "v0:{timestamp}:{raw body}") ב-hex.
url_validation: encryptedToken = HMAC-SHA256(secret, plainToken) ב-hex.
"""
from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any
from urllib.parse import quote

from app.core.circuit_breaker import ZOOM_SERVICE
from app.core.exceptions import ZoomAPIError
from app.core.logging import get_logger
from app.domain.services.platforms.http_client import PlatformAPIClient

logger = get_logger(__name__)

ZOOM_API_BASE_URL = "https://api.zoom.us/v2"


def compute_zoom_signature(secret: str, timestamp: str, body: bytes | str) -> str:
    # ה-HMAC על הבתים הגולמיים; גוף שאינו UTF-8 נדחה אחר כך כ-JSON לא תקין
    if isinstance(body, str):
        body = body.encode("utf-8")
    message = b"v0:" + timestamp.encode() + b":" + body
    digest = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
    return f"v0={digest}"


def verify_zoom_signature(
    secret: str,
    signature: str | None,
    timestamp: str | None,
    body: bytes | str,
    *,
    tolerance_seconds: int = 0,
    now: float | None = None,
) -> bool:
    """
    השוואת חתימה בזמן קבוע.

    tolerance_seconds > 0 דוחה גם timestamp ישן/עתידי מדי (replay).
    """
    if not secret or not signature or not timestamp:
        return False

    if tolerance_seconds > 0:
        try:
            ts = int(timestamp)
        except ValueError:
            return False
        current = now if now is not None else time.time()
        if abs(current - ts) > tolerance_seconds:
            return False

    expected = compute_zoom_signature(secret, timestamp, body)
    return hmac.compare_digest(expected, signature)


def build_url_validation_response(plain_token: str, secret: str) -> dict[str, str]:
    encrypted = hmac.new(secret.encode(), plain_token.encode(), hashlib.sha256).hexdigest()
    return {"plainToken": plain_token, "encryptedToken": encrypted}


def normalize_zoom_uuid(meeting_uuid: str) -> str:
    """
    UUID שמתחיל ב-'/' או מכיל '//' חייב double URL-encoding
    לפני שמכניסים אותו לנתיב של Zoom API.
    """
    if meeting_uuid.startswith("/") or "//" in meeting_uuid:
        return quote(quote(meeting_uuid, safe=""), safe="")
    return meeting_uuid


class ZoomClient(PlatformAPIClient):
    service_name = ZOOM_SERVICE
    error_class = ZoomAPIError

    async def download_transcript(self, download_url: str, download_token: str | None = None) -> str:
        """
        הורדת קובץ VTT.

        download_token מה-webhook עדיף; בלעדיו — טוקן Server-to-Server OAuth.
        """
        content = await self._get_text(
            download_url,
            operation="download_transcript",
            bearer_token=download_token,
        )
        logger.info(
            "Zoom transcript downloaded",
            extra_data={"content_length": len(content), "used_download_token": bool(download_token)},
        )
        return content

    async def get_meeting_recordings(self, meeting_uuid: str) -> dict[str, Any]:
        return await self._get_json(
            f"{ZOOM_API_BASE_URL}/meetings/{normalize_zoom_uuid(meeting_uuid)}/recordings",
            operation="get_meeting_recordings",
        )

    async def find_transcript_download_url(self, meeting_uuid: str) -> str | None:
        """
        חיפוש קובץ TRANSCRIPT דרך ה-API כשה-webhook הגיע בלי recording_files.

        מחזיר None אם אין credentials של Server-to-Server או שאין תמלול מוכן.
        """
        if self._token_provider is None or not self._token_provider.is_configured:
            return None
        recordings = await self.get_meeting_recordings(meeting_uuid)
        for recording_file in recordings.get("recording_files") or []:
            if recording_file.get("file_type") == "TRANSCRIPT" and recording_file.get("status") == "completed":
                return recording_file.get("download_url")
        return None

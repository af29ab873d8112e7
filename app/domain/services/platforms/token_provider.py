"""
OAuth token providers — טוקן גישה לכל פלטפורמה עם cache בזיכרון.

- Zoom: Server-to-Server OAuth (account_credentials)
- Microsoft Graph: client_credentials מול ה-tenant
- Google Meet: refresh_token

אם הפלטפורמה לא מוגדרת או שהשרת דוחה את הבקשה — TokenUnavailableError
("No valid token"). השגיאה מתפשטת מה-processor ונרשמת ל-retry ledger.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx

from app.core.config import settings
from app.core.exceptions import TokenUnavailableError
from app.core.logging import get_logger

logger = get_logger(__name__)

# חידוש טוקן דקה לפני התפוגה
_EXPIRY_MARGIN_SECONDS = 60

ZOOM_TOKEN_URL = "https://zoom.us/oauth/token"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"


class OAuthTokenProvider:
    """
    ספק טוקן גנרי: POST ל-token endpoint ושמירת access_token עד התפוגה.

    configured=False כשחסרים credentials — כל בקשה זורקת מיד בלי רשת.
    """

    def __init__(
        self,
        platform: str,
        token_url: str,
        form_data: dict[str, str],
        *,
        params: dict[str, str] | None = None,
        basic_auth: tuple[str, str] | None = None,
        configured: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.platform = platform
        self._token_url = token_url
        self._form_data = form_data
        self._params = params
        self._basic_auth = basic_auth
        self._configured = configured
        self._transport = transport
        self._access_token: str | None = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def is_configured(self) -> bool:
        return self._configured

    def invalidate(self) -> None:
        self._access_token = None
        self._expires_at = 0.0

    async def get_access_token(self) -> str:
        if not self._configured:
            raise TokenUnavailableError(self.platform, reason="credentials not configured")

        if self._access_token and time.time() < self._expires_at - _EXPIRY_MARGIN_SECONDS:
            return self._access_token

        async with self._lock:
            if self._access_token and time.time() < self._expires_at - _EXPIRY_MARGIN_SECONDS:
                return self._access_token
            data = await self._fetch_token()
            self._access_token = data["access_token"]
            self._expires_at = time.time() + int(data.get("expires_in", 3600))
            return self._access_token

    async def _fetch_token(self) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=settings.EXTERNAL_HTTP_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(
                    self._token_url,
                    data=self._form_data,
                    params=self._params,
                    auth=self._basic_auth,
                )
        except httpx.RequestError as e:
            logger.error(
                "Token request failed",
                extra_data={"platform": self.platform, "error": str(e)},
            )
            raise TokenUnavailableError(self.platform, reason=str(e)) from e

        if response.status_code != 200:
            logger.error(
                "Token endpoint rejected request",
                extra_data={
                    "platform": self.platform,
                    "status_code": response.status_code,
                    "response_text": response.text[:200],
                },
            )
            raise TokenUnavailableError(
                self.platform, reason=f"token endpoint returned {response.status_code}"
            )

        data = response.json()
        if not data.get("access_token"):
            raise TokenUnavailableError(self.platform, reason="token response has no access_token")
        return data


def create_zoom_token_provider(transport: httpx.AsyncBaseTransport | None = None) -> OAuthTokenProvider:
    return OAuthTokenProvider(
        platform="zoom",
        token_url=ZOOM_TOKEN_URL,
        form_data={},
        params={"grant_type": "account_credentials", "account_id": settings.ZOOM_ACCOUNT_ID},
        basic_auth=(settings.ZOOM_CLIENT_ID, settings.ZOOM_CLIENT_SECRET),
        configured=bool(settings.ZOOM_ACCOUNT_ID and settings.ZOOM_CLIENT_ID and settings.ZOOM_CLIENT_SECRET),
        transport=transport,
    )


def create_graph_token_provider(transport: httpx.AsyncBaseTransport | None = None) -> OAuthTokenProvider:
    return OAuthTokenProvider(
        platform="microsoft_teams",
        token_url=MICROSOFT_TOKEN_URL.format(tenant_id=settings.MICROSOFT_TEAMS_TENANT_ID),
        form_data={
            "client_id": settings.MICROSOFT_TEAMS_CLIENT_ID,
            "client_secret": settings.MICROSOFT_TEAMS_CLIENT_SECRET,
            "scope": GRAPH_DEFAULT_SCOPE,
            "grant_type": "client_credentials",
        },
        configured=bool(
            settings.MICROSOFT_TEAMS_TENANT_ID
            and settings.MICROSOFT_TEAMS_CLIENT_ID
            and settings.MICROSOFT_TEAMS_CLIENT_SECRET
        ),
        transport=transport,
    )


def create_meet_token_provider(transport: httpx.AsyncBaseTransport | None = None) -> OAuthTokenProvider:
    return OAuthTokenProvider(
        platform="google_meet",
        token_url=GOOGLE_TOKEN_URL,
        form_data={
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "refresh_token": settings.GOOGLE_REFRESH_TOKEN,
            "grant_type": "refresh_token",
        },
        configured=bool(
            settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET and settings.GOOGLE_REFRESH_TOKEN
        ),
        transport=transport,
    )

"""
בסיס משותף ללקוחות HTTP של הפלטפורמות (Zoom / Graph / Meet).

כל קריאה עוברת דרך circuit breaker של השירות, וכל תגובה שאינה 2xx
הופכת לשגיאה מהמחלקה הספציפית של השירות (ZoomAPIError וכו').
טוקן OAuth נשלף לפני הכניסה ל-circuit breaker — כשלון טוקן הוא בעיית
קונפיגורציה ולא תקלה של השירות.
"""
from __future__ import annotations

from typing import Any

import httpx

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import ExternalServiceException, ServiceTimeoutError
from app.core.logging import get_logger
from app.domain.services.platforms.token_provider import OAuthTokenProvider

logger = get_logger(__name__)


class PlatformAPIClient:
    service_name: str = ""
    error_class: type[ExternalServiceException] = ExternalServiceException

    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        token_provider: OAuthTokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker
        self._token_provider = token_provider
        self._transport = transport
        self._timeout = timeout or settings.EXTERNAL_HTTP_TIMEOUT_SECONDS

    async def _authorization_header(self, bearer_token: str | None = None) -> dict[str, str]:
        if bearer_token:
            return {"Authorization": f"Bearer {bearer_token}"}
        if self._token_provider is None:
            return {}
        access_token = await self._token_provider.get_access_token()
        return {"Authorization": f"Bearer {access_token}"}

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        bearer_token: str | None = None,
    ) -> httpx.Response:
        request_headers = await self._authorization_header(bearer_token)
        request_headers.update(headers or {})

        async def _send() -> httpx.Response:
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    response = await client.request(
                        method, url, params=params, json=json, headers=request_headers
                    )
            except httpx.TimeoutException as e:
                raise ServiceTimeoutError(self.service_name, self._timeout) from e
            except httpx.RequestError as e:
                raise self.error_class(
                    message=f"{operation} request failed: {e}",
                    details={"operation": operation},
                ) from e

            if response.status_code >= 400:
                logger.warning(
                    f"{self.service_name} request failed",
                    extra_data={
                        "operation": operation,
                        "status_code": response.status_code,
                    },
                )
                raise self.error_class.from_response(operation, response)
            return response

        return await self._circuit_breaker.execute(_send)

    async def _get_json(self, url: str, *, operation: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request("GET", url, operation=operation, **kwargs)
        return response.json()

    async def _get_text(self, url: str, *, operation: str, **kwargs: Any) -> str:
        response = await self._request("GET", url, operation=operation, **kwargs)
        return response.text

"""
אימות JWT של Google Pub/Sub push.

Pub/Sub שולח Authorization: Bearer <OIDC token> חתום ב-RS256 ע"י Google.
החתימה נבדקת מול ה-JWKS של Google; issuer ו-audience חייבים להתאים.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable

import jwt

from app.core.config import settings
from app.core.exceptions import ErrorCode, WebhookAuthenticationError, WebhookForbiddenError
from app.core.logging import get_logger

logger = get_logger(__name__)

GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUER = "https://accounts.google.com"

_PLATFORM = "google_meet"

SigningKeyResolver = Callable[[str], Any]


def _jwks_resolver(jwks_url: str) -> SigningKeyResolver:
    client = jwt.PyJWKClient(jwks_url, cache_keys=True)

    def resolve(token: str) -> Any:
        return client.get_signing_key_from_jwt(token).key

    return resolve


class PubSubTokenVerifier:
    def __init__(
        self,
        audience: str | None = None,
        issuer: str = GOOGLE_ISSUER,
        key_resolver: SigningKeyResolver | None = None,
    ) -> None:
        self._audience = audience or settings.pubsub_audience
        self._issuer = issuer
        self._key_resolver = key_resolver or _jwks_resolver(GOOGLE_JWKS_URL)

    async def verify(self, authorization: str | None) -> dict[str, Any]:
        """
        מחזיר את ה-claims.

        401 — header חסר/פגום, חתימה לא תקינה, טוקן פג.
        403 — audience או issuer לא תואמים.
        """
        if not authorization or not authorization.startswith("Bearer "):
            raise WebhookAuthenticationError(
                _PLATFORM, "Missing Pub/Sub bearer token", error_code=ErrorCode.INVALID_PUBSUB_TOKEN
            )
        token = authorization[len("Bearer "):].strip()
        if not token:
            raise WebhookAuthenticationError(
                _PLATFORM, "Missing Pub/Sub bearer token", error_code=ErrorCode.INVALID_PUBSUB_TOKEN
            )

        try:
            # PyJWKClient מבצע HTTP סינכרוני כשאין מפתח ב-cache
            signing_key = await asyncio.to_thread(self._key_resolver, token)
            claims = jwt.decode(
                token,
                signing_key,
                algorithms=["RS256"],
                audience=self._audience,
                issuer=self._issuer,
                options={"require": ["exp", "iat", "iss", "aud"]},
            )
        except (jwt.InvalidAudienceError, jwt.InvalidIssuerError) as e:
            logger.warning("Pub/Sub token claim validation failed", extra_data={"error": str(e)})
            raise WebhookForbiddenError(
                _PLATFORM, f"Claim validation failed: {e}", error_code=ErrorCode.INVALID_PUBSUB_TOKEN
            ) from e
        except jwt.PyJWTError as e:
            logger.warning("Pub/Sub token rejected", extra_data={"error": str(e)})
            raise WebhookAuthenticationError(
                _PLATFORM, f"Invalid Pub/Sub token: {e}", error_code=ErrorCode.INVALID_PUBSUB_TOKEN
            ) from e

        return claims

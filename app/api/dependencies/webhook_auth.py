"""
אימות בקשות webhook נכנסות מ-Zoom / Teams / Meet.

שימוש:
    @router.post("/zoom")
    async def zoom_webhook(
        raw_body: bytes = Depends(verify_zoom_signature_header),
    ):
        ...
"""
import hmac

from fastapi import Depends, Header, Request

from app.core.config import settings
from app.core.exceptions import ErrorCode, WebhookAuthenticationError, WebhookForbiddenError
from app.core.logging import get_logger
from app.domain.events import TeamsChangeNotification
from app.domain.services.platforms.pubsub_auth import PubSubTokenVerifier
from app.domain.services.platforms.zoom import verify_zoom_signature

logger = get_logger(__name__)


async def verify_zoom_signature_header(
    request: Request,
    x_zm_signature: str | None = Header(None),
    x_zm_request_timestamp: str | None = Header(None),
) -> bytes:
    """
    אימות x-zm-signature מול הגוף הגולמי. מחזיר את הגוף לפענוח.

    401 אם הסוד לא מוגדר, הכותרות חסרות או החתימה שגויה.
    """
    raw_body = await request.body()
    if not settings.ZOOM_WEBHOOK_SECRET_TOKEN:
        logger.warning("Zoom webhook rejected, ZOOM_WEBHOOK_SECRET_TOKEN is not configured")
        raise WebhookAuthenticationError("zoom", "Zoom webhook secret is not configured")

    if not verify_zoom_signature(
        settings.ZOOM_WEBHOOK_SECRET_TOKEN,
        x_zm_signature,
        x_zm_request_timestamp,
        raw_body,
        tolerance_seconds=settings.ZOOM_SIGNATURE_TOLERANCE_SECONDS,
    ):
        logger.warning(
            "Invalid Zoom webhook signature",
            extra_data={"has_signature": bool(x_zm_signature), "timestamp": x_zm_request_timestamp},
        )
        raise WebhookAuthenticationError("zoom", "Invalid signature")
    return raw_body


def verify_teams_client_state(notification: TeamsChangeNotification) -> None:
    """
    השוואת clientState לסוד שהוגדר ב-subscription — 403 על אי-התאמה.

    אם הסוד לא מוגדר בסביבה כל ההתראות נדחות.
    """
    expected = settings.MICROSOFT_TEAMS_WEBHOOK_SECRET
    received = notification.client_state or ""
    if not expected or not hmac.compare_digest(received.encode(), expected.encode()):
        logger.warning(
            "Teams notification with invalid clientState",
            extra_data={"subscription_id": notification.subscription_id},
        )
        raise WebhookForbiddenError(
            "microsoft_teams", "Invalid clientState", error_code=ErrorCode.INVALID_CLIENT_STATE
        )


def get_pubsub_verifier(request: Request) -> PubSubTokenVerifier:
    """verifier משותף (cache של JWKS) שנבנה ב-startup"""
    verifier = getattr(request.app.state, "pubsub_verifier", None)
    if verifier is None:
        verifier = PubSubTokenVerifier()
        request.app.state.pubsub_verifier = verifier
    return verifier


async def verify_pubsub_token(
    authorization: str | None = Header(None),
    verifier: PubSubTokenVerifier = Depends(get_pubsub_verifier),
) -> dict:
    return await verifier.verify(authorization)

"""
התראת Slack על webhook שעבר ל-dead letter (incoming webhook).

מחזיר True/False ולא זורק על כשלון רשת — ההעברה ל-dead letter כבר נשמרה,
וההתראה רק מתעדת את עצמה ב-alert_sent.
"""
from __future__ import annotations

from typing import Any

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models.dead_letter import DeadLetter

logger = get_logger(__name__)


def build_dead_letter_message(dead_letter: DeadLetter) -> dict[str, Any]:
    final_error = (dead_letter.final_error or "unknown error")[:500]
    return {
        "text": (
            f":rotating_light: Webhook moved to dead letter queue\n"
            f"*Platform:* {dead_letter.platform.value}\n"
            f"*Event:* {dead_letter.event_type}\n"
            f"*Attempts:* {dead_letter.total_attempts}\n"
            f"*Dead letter id:* {dead_letter.id}\n"
            f"*Last error:* {final_error}"
        )
    }


class SlackAlertNotifier:
    def __init__(
        self,
        webhook_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._webhook_url = webhook_url if webhook_url is not None else settings.SLACK_WEBHOOK_URL
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._webhook_url)

    async def send_dead_letter_alert(self, dead_letter: DeadLetter) -> bool:
        if not self._webhook_url:
            logger.info(
                "Slack webhook not configured, dead letter alert skipped",
                extra_data={"dead_letter_id": dead_letter.id},
            )
            return False

        try:
            async with httpx.AsyncClient(
                timeout=settings.EXTERNAL_HTTP_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(self._webhook_url, json=build_dead_letter_message(dead_letter))
        except httpx.RequestError as e:
            logger.warning(
                "Slack alert request failed",
                extra_data={"dead_letter_id": dead_letter.id, "error": str(e)},
            )
            return False

        if response.status_code != 200:
            logger.warning(
                "Slack alert rejected",
                extra_data={
                    "dead_letter_id": dead_letter.id,
                    "status_code": response.status_code,
                    "response_text": response.text[:200],
                },
            )
            return False

        logger.info("Dead letter alert sent", extra_data={"dead_letter_id": dead_letter.id})
        return True

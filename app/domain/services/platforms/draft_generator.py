"""
יצירת טיוטת מייל follow-up מתמלול דרך Anthropic Messages API.

התשובה של המודל מתחילה בשורת "Subject: ..." ואחריה גוף המייל.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from app.core.circuit_breaker import ANTHROPIC_SERVICE, CircuitBreaker
from app.core.config import settings
from app.core.exceptions import DraftGenerationError, ServiceTimeoutError
from app.core.logging import get_logger

logger = get_logger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

# תמלול ארוך מקוצץ לפני השליחה למודל
MAX_TRANSCRIPT_CHARS = 60000

SYSTEM_PROMPT = (
    "You write concise, friendly follow-up emails after sales and discovery calls. "
    "Summarize what was discussed, list agreed next steps, and keep a professional tone. "
    "Start your answer with a single line in the form 'Subject: <subject>', "
    "then a blank line, then the email body."
)


@dataclass
class DraftContext:
    meeting_topic: str
    meeting_date: str
    host_name: str
    transcript: str


@dataclass
class GeneratedDraft:
    subject: str
    body: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class DraftGenerator(Protocol):
    async def generate(self, context: DraftContext) -> GeneratedDraft:
        ...


def build_user_prompt(context: DraftContext) -> str:
    transcript = context.transcript[:MAX_TRANSCRIPT_CHARS]
    return (
        f"Meeting topic: {context.meeting_topic}\n"
        f"Meeting date: {context.meeting_date}\n"
        f"Sender: {context.host_name}\n\n"
        f"Transcript:\n{transcript}"
    )


def parse_email_response(content: str, fallback_subject: str) -> tuple[str, str]:
    lines = content.strip().splitlines()
    subject = ""
    body_start = 0
    for index, line in enumerate(lines):
        if line.strip().lower().startswith("subject:"):
            subject = line.strip()[len("subject:"):].strip()
            body_start = index + 1
            break
    body = "\n".join(lines[body_start:]).strip()
    return subject or fallback_subject, body


class AnthropicDraftGenerator:
    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker
        self._api_key = api_key if api_key is not None else settings.ANTHROPIC_API_KEY
        self._model = model or settings.ANTHROPIC_MODEL
        self._max_tokens = max_tokens or settings.DRAFT_MAX_TOKENS
        self._transport = transport

    async def generate(self, context: DraftContext) -> GeneratedDraft:
        if not self._api_key:
            raise DraftGenerationError("ANTHROPIC_API_KEY is not configured")

        timeout = settings.EXTERNAL_HTTP_TIMEOUT_SECONDS

        async def _call() -> httpx.Response:
            try:
                async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                    response = await client.post(
                        ANTHROPIC_MESSAGES_URL,
                        headers={
                            "x-api-key": self._api_key,
                            "anthropic-version": ANTHROPIC_VERSION,
                            "content-type": "application/json",
                        },
                        json={
                            "model": self._model,
                            "max_tokens": self._max_tokens,
                            "system": SYSTEM_PROMPT,
                            "messages": [{"role": "user", "content": build_user_prompt(context)}],
                        },
                    )
            except httpx.TimeoutException as e:
                raise ServiceTimeoutError(ANTHROPIC_SERVICE, timeout) from e
            except httpx.RequestError as e:
                raise DraftGenerationError(str(e)) from e
            if response.status_code != 200:
                raise DraftGenerationError.from_response("create_message", response)
            return response

        response = await self._circuit_breaker.execute(_call)
        data = response.json()
        text = "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
        if not text.strip():
            raise DraftGenerationError("model returned an empty draft")

        subject, body = parse_email_response(text, f"Follow-up: {context.meeting_topic}")
        usage = data.get("usage") or {}
        logger.info(
            "Draft generated",
            extra_data={
                "model": self._model,
                "input_tokens": usage.get("input_tokens", 0),
                "output_tokens": usage.get("output_tokens", 0),
            },
        )
        return GeneratedDraft(
            subject=subject,
            body=body,
            model=data.get("model", self._model),
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
        )
